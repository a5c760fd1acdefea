"""
CKB node interaction via JSON-RPC.
"""

from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from .errors import CkbRpcError, DataShapeError, TransientError
from .models import Block

logger = structlog.get_logger()


class CkbRpcClient:
    """
    Synchronous client for the CKB node JSON-RPC API.

    Only the calls the relayer needs: tip height and block by number.
    """

    def __init__(self, url: str = "http://127.0.0.1:8114", timeout: float = 30.0):
        self.url = url
        self.client = httpx.Client(timeout=timeout)
        self._request_id = 0

    def _call(self, method: str, params: list[Any] | None = None) -> Any:
        """Make RPC call."""
        self._request_id += 1
        payload = {
            "id": self._request_id,
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
        }

        try:
            response = self.client.post(self.url, json=payload)
            response.raise_for_status()
            result = response.json()
        except httpx.HTTPStatusError as e:
            raise TransientError(
                f"CKB node returned HTTP {e.response.status_code} for {method}"
            ) from e
        except httpx.HTTPError as e:
            raise TransientError(f"CKB node unreachable ({method}): {e}") from e
        except ValueError as e:
            raise DataShapeError(f"CKB node returned non-JSON body for {method}") from e

        if not isinstance(result, dict):
            raise DataShapeError(f"CKB node returned {type(result).__name__} for {method}")

        if result.get("error"):
            error = result["error"]
            raise CkbRpcError(error.get("code", -1), error.get("message", "Unknown error"))

        return result.get("result")

    def get_tip_block_number(self) -> int:
        """Get current tip height."""
        result = self._call("get_tip_block_number")
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise DataShapeError(f"invalid tip block number: {result!r}") from e

    def get_block_by_number(self, height: int) -> Block:
        """
        Get a block with full transactions.

        Raises:
            TransientError: node does not have the block (yet)
            DataShapeError: response does not match the block schema
        """
        result = self._call("get_block_by_number", [hex(height)])
        if result is None:
            raise TransientError(f"block {height} not found on CKB node")

        try:
            block = Block.model_validate(result)
        except ValidationError as e:
            raise DataShapeError(f"malformed block at height {height}: {e}") from e

        logger.debug(
            "ckb_block_fetched",
            height=height,
            txs=len(block.transactions),
            hash=block.header.hash,
        )
        return block

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()
