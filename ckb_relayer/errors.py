"""
Error types raised by the relayer.

The sync loop classifies these (see retry.py) to decide between retrying
the same height and halting.
"""

from typing import Optional


class RelayerError(Exception):
    """Base class for relayer errors."""


class TransientError(RelayerError):
    """Remote failure that may succeed on retry (timeouts, 5xx, missing data)."""


class CkbRpcError(TransientError):
    """Error object returned by the CKB JSON-RPC endpoint."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"CKB RPC error {code}: {message}")


class SubmissionTimeoutError(TransientError):
    """Chain B did not produce a receipt in time."""


class DataShapeError(RelayerError):
    """Chain data does not have the shape the relayer relies on."""


class SigningError(RelayerError):
    """Relayer key is missing or unusable."""


class SubmissionRejectedError(RelayerError):
    """Chain B refused a submitted transaction."""

    def __init__(self, message: str, code: Optional[int] = None, retryable: bool = True):
        self.code = code
        self.retryable = retryable
        super().__init__(message if code is None else f"{message} (code {code})")


class CursorError(RelayerError):
    """Attempt to move the height cursor other than one block forward."""


class RelayerHalted(RelayerError):
    """Raised out of the sync loop when the retry policy gives up."""

    def __init__(self, height: Optional[int], reason: str):
        self.height = height
        super().__init__(f"relayer halted at height {height}: {reason}")
