"""
Wire encoding of mint batches for ckb_handler.submit_message.

Format (RLP, the only encoding the relayer produces):

    RLP([ [ [asset_id, receiver, amount], ... ] ])

- outer list: singleton wrapping the batch
- batch: one 3-item list per mint instruction, in block order
- asset_id: 32-byte CKB tx hash
- receiver: raw receiver bytes from the deposit witness
- amount: 16 bytes, big-endian, zero-padded (u128)

The encoding is a pure function of the batch, so the payload bytes (and
therefore the signed digest) of a replayed block are identical to the
original attempt.
"""

import rlp
from rlp.exceptions import DecodingError

from .batch_mint import MintBatch, MintInstruction
from .errors import DataShapeError

AMOUNT_WIDTH = 16
ASSET_ID_WIDTH = 32
MAX_AMOUNT = 2 ** (8 * AMOUNT_WIDTH) - 1


def encode_amount(amount: int) -> bytes:
    """Fixed-width big-endian amount field."""
    if amount < 0 or amount > MAX_AMOUNT:
        raise DataShapeError(f"amount {amount} does not fit in {AMOUNT_WIDTH} bytes")
    return amount.to_bytes(AMOUNT_WIDTH, "big")


def encode_batch_mint(batch: MintBatch) -> bytes:
    """Encode a batch into the payload bytes that get signed and submitted."""
    items = [
        [instruction.asset_id, instruction.receiver, encode_amount(instruction.amount)]
        for instruction in batch
    ]
    return rlp.encode([items])


def decode_batch_mint(payload: bytes) -> MintBatch:
    """Inverse of encode_batch_mint, validating the shape."""
    try:
        decoded = rlp.decode(payload)
    except DecodingError as e:
        raise DataShapeError(f"payload is not valid RLP: {e}") from e

    if not isinstance(decoded, list) or len(decoded) != 1 or not isinstance(decoded[0], list):
        raise DataShapeError("payload must be a singleton list wrapping the batch")

    instructions = []
    for index, item in enumerate(decoded[0]):
        if not isinstance(item, list) or len(item) != 3:
            raise DataShapeError(f"instruction {index} must be a 3-item list")
        asset_id, receiver, amount = item
        if not all(isinstance(field, bytes) for field in item):
            raise DataShapeError(f"instruction {index} fields must be byte strings")
        if len(asset_id) != ASSET_ID_WIDTH:
            raise DataShapeError(f"instruction {index}: asset id must be {ASSET_ID_WIDTH} bytes")
        if len(amount) != AMOUNT_WIDTH:
            raise DataShapeError(f"instruction {index}: amount must be {AMOUNT_WIDTH} bytes")
        instructions.append(
            MintInstruction(
                asset_id=asset_id,
                receiver=receiver,
                amount=int.from_bytes(amount, "big"),
            )
        )

    return MintBatch(instructions=tuple(instructions))
