"""
Typed models for CKB JSON-RPC payloads.

CKB serves every number and byte string as a 0x-prefixed hex string. The
models keep that representation (it is also what the Muta ckb_handler
service expects for headers) but validate it, so a malformed response fails
at parse time instead of deep inside the relay step.
"""

import re
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field

_HEX_RE = re.compile(r"[0-9a-fA-F]*")


def _normalize_hex(value: str) -> str:
    """Lowercase and 0x-prefix a hex string, rejecting non-hex input."""
    body = value[2:] if value[:2] in ("0x", "0X") else value
    if not _HEX_RE.fullmatch(body):
        raise ValueError(f"not a hex string: {value!r}")
    return "0x" + body.lower()


def _hex_number(value: str) -> str:
    value = _normalize_hex(value)
    if len(value) == 2:
        raise ValueError("empty hex number")
    return value


def _byte32(value: str) -> str:
    value = _normalize_hex(value)
    if len(value) != 66:
        raise ValueError(f"expected 32 bytes, got {(len(value) - 2) // 2}")
    return value


# Hex byte string, possibly empty ("0x", "0xdeadbeef")
HexStr = Annotated[str, AfterValidator(_normalize_hex)]
# Hex quantity with at least one digit ("0x0", "0x1a")
HexNumber = Annotated[str, AfterValidator(_hex_number)]
# Exactly 32 bytes (hashes, dao field)
Byte32 = Annotated[str, AfterValidator(_byte32)]


def hex_to_bytes(value: str) -> bytes:
    """Decode a 0x-prefixed (or bare) even-length hex string."""
    body = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(body)


class _RpcModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class Script(_RpcModel):
    """Lock or type script."""

    code_hash: Byte32
    hash_type: str
    args: HexStr


class OutPoint(_RpcModel):
    tx_hash: Byte32
    index: HexNumber


class CellInput(_RpcModel):
    previous_output: OutPoint
    since: HexNumber


class CellDep(_RpcModel):
    out_point: OutPoint
    dep_type: str


class CellOutput(_RpcModel):
    capacity: HexNumber
    lock: Script
    type_: Optional[Script] = Field(default=None, alias="type")


class BlockHeader(_RpcModel):
    """CKB block header as served by get_block_by_number."""

    version: HexNumber
    compact_target: HexNumber
    timestamp: HexNumber
    number: HexNumber
    epoch: HexNumber
    parent_hash: Byte32
    transactions_root: Byte32
    proposals_hash: Byte32
    # Renamed to extra_hash in newer CKB nodes
    uncles_hash: Byte32 = Field(validation_alias=AliasChoices("uncles_hash", "extra_hash"))
    dao: Byte32
    nonce: HexNumber
    hash: Optional[Byte32] = None

    @property
    def height(self) -> int:
        return int(self.number, 16)

    def to_service_dict(self) -> dict[str, str]:
        """Header shape accepted by ckb_handler.update_headers."""
        return self.model_dump(exclude={"hash"})


class Transaction(_RpcModel):
    """A CKB transaction (the source-side deposit candidate)."""

    version: HexNumber
    cell_deps: list[CellDep] = Field(default_factory=list)
    header_deps: list[Byte32] = Field(default_factory=list)
    inputs: list[CellInput]
    outputs: list[CellOutput]
    outputs_data: list[HexStr]
    witnesses: list[HexStr]
    hash: Byte32


class Block(_RpcModel):
    header: BlockHeader
    transactions: list[Transaction]


def script_from_config(code_hash: str, hash_type: str, args: str) -> Script:
    """Build the target lock script from flat configuration values."""
    data: dict[str, Any] = {"code_hash": code_hash, "hash_type": hash_type, "args": args}
    return Script.model_validate(data)
