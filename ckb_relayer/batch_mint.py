"""
Conversion of CKB deposit transactions into Muta mint instructions.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator

import structlog

from .errors import DataShapeError
from .models import Transaction, hex_to_bytes

logger = structlog.get_logger()


@dataclass(frozen=True)
class MintInstruction:
    """Credit `amount` of asset `asset_id` to `receiver` on Muta."""

    asset_id: bytes  # Depositing CKB tx hash (32 bytes)
    receiver: bytes  # Muta address carried in the deposit witness
    amount: int  # sUDT amount


@dataclass(frozen=True)
class MintBatch:
    """Mint instructions for one CKB block, in block order."""

    instructions: tuple[MintInstruction, ...] = ()

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self) -> Iterator[MintInstruction]:
        return iter(self.instructions)


def little_endian_hex_to_int(hex_str: str) -> int:
    """
    Decode a little-endian hex byte string into an unsigned integer.

    Byte i (two hex characters at offset 2*i) contributes byte * 256**i,
    so "0x64" is 100 and "0x0100" is 1. sUDT amounts are stored this way
    in cell data.

    Raises:
        DataShapeError: odd-length or non-hex input
    """
    body = hex_str[2:] if hex_str.startswith("0x") else hex_str
    if len(body) % 2:
        raise DataShapeError(f"odd-length hex amount: {hex_str!r}")
    try:
        raw = bytes.fromhex(body)
    except ValueError as e:
        raise DataShapeError(f"invalid hex amount: {hex_str!r}") from e

    total = 0
    for i, byte in enumerate(raw):
        total += byte * 256**i
    return total


def build_mint_instruction(tx: Transaction) -> MintInstruction:
    """
    Build the mint instruction for a single deposit.

    The depositor puts the Muta receiver address in the witness right after
    the input witnesses, i.e. at index len(inputs).
    """
    receiver_index = len(tx.inputs)
    if receiver_index >= len(tx.witnesses):
        raise DataShapeError(
            f"tx {tx.hash}: no receiver witness at index {receiver_index} "
            f"({len(tx.witnesses)} witnesses)"
        )
    if not tx.outputs_data:
        raise DataShapeError(f"tx {tx.hash}: missing outputs_data[0]")

    try:
        receiver = hex_to_bytes(tx.witnesses[receiver_index])
    except ValueError as e:
        raise DataShapeError(f"tx {tx.hash}: receiver witness is not byte-aligned hex") from e
    if not receiver:
        raise DataShapeError(f"tx {tx.hash}: receiver witness is empty")

    return MintInstruction(
        asset_id=hex_to_bytes(tx.hash),
        receiver=receiver,
        amount=little_endian_hex_to_int(tx.outputs_data[0]),
    )


def build_batch_mint(cross_txs: Iterable[Transaction]) -> MintBatch:
    """Build the batch for a block's deposits, keeping their order."""
    instructions = tuple(build_mint_instruction(tx) for tx in cross_txs)

    for instruction in instructions:
        logger.debug(
            "mint_instruction_built",
            asset_id="0x" + instruction.asset_id.hex(),
            receiver="0x" + instruction.receiver.hex(),
            amount=instruction.amount,
        )

    return MintBatch(instructions=instructions)
