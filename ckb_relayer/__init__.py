"""
CKB -> Muta Relayer

Follows the CKB chain block by block, picks out sUDT deposits locked to the
crosschain lock script, and submits them as a signed batch mint to the
ckb_handler service on Muta.

Usage:
    # Run the relayer
    ckb-relayer run

    # Relay a single step (for testing)
    ckb-relayer run --once

    # Inspect a block without submitting
    ckb-relayer scan 12345
"""

__version__ = "0.1.0"

from .batch_mint import MintBatch, MintInstruction, build_batch_mint, little_endian_hex_to_int
from .ckb import CkbRpcClient
from .config import RelayerConfig, Settings
from .db import HeaderBuffer, HeightCursorStore, RelayerDatabase
from .detector import find_cross_transactions
from .encoder import decode_batch_mint, encode_batch_mint
from .muta import CkbHandlerService, MutaClient, Receipt
from .relayer import CkbRelayer
from .signer import MessageSigner, SignedMessage, verify_signed_message

__all__ = [
    "__version__",
    "RelayerConfig",
    "Settings",
    "CkbRelayer",
    "CkbRpcClient",
    "MutaClient",
    "CkbHandlerService",
    "Receipt",
    "RelayerDatabase",
    "HeightCursorStore",
    "HeaderBuffer",
    "find_cross_transactions",
    "MintInstruction",
    "MintBatch",
    "build_batch_mint",
    "little_endian_hex_to_int",
    "encode_batch_mint",
    "decode_batch_mint",
    "MessageSigner",
    "SignedMessage",
    "verify_signed_message",
]
