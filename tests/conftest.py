from __future__ import annotations

from typing import Any, Callable, Optional

import pytest

from ckb_relayer.models import Block, BlockHeader, Script, Transaction

CROSS_LOCK: dict[str, str] = {
    "code_hash": "0x" + "aa" * 32,
    "hash_type": "type",
    "args": "0x1234",
}

OTHER_LOCK: dict[str, str] = {
    "code_hash": "0x" + "aa" * 32,
    "hash_type": "type",
    "args": "0x5678",
}

RECEIVER = "0x016cbd9ee47a255a6f68882918dcdd9e14e6bee1"

RELAYER_KEY = "0x" + "11" * 32
OTHER_KEY = "0x" + "22" * 32


def tx_json(
    tx_hash: str,
    lock: Optional[dict[str, str]] = None,
    n_inputs: int = 1,
    n_outputs: int = 1,
    witnesses: Optional[list[str]] = None,
    outputs_data: Optional[list[str]] = None,
) -> dict[str, Any]:
    """Raw get_block_by_number transaction JSON."""
    lock = lock or CROSS_LOCK
    if witnesses is None:
        witnesses = ["0x" + "55" * 85] * n_inputs + [RECEIVER]
    if outputs_data is None:
        outputs_data = ["0x64" + "00" * 15] * n_outputs
    return {
        "version": "0x0",
        "cell_deps": [
            {
                "out_point": {"tx_hash": "0x" + "cd" * 32, "index": "0x0"},
                "dep_type": "dep_group",
            }
        ],
        "header_deps": [],
        "inputs": [
            {
                "previous_output": {"tx_hash": "0x" + "ef" * 32, "index": hex(i)},
                "since": "0x0",
            }
            for i in range(n_inputs)
        ],
        "outputs": [
            {"capacity": "0x2540be400", "lock": lock, "type": None}
            for _ in range(n_outputs)
        ],
        "outputs_data": outputs_data,
        "witnesses": witnesses,
        "hash": tx_hash,
    }


def header_json(number: int) -> dict[str, Any]:
    """Raw get_block_by_number header JSON (newer nodes call uncles_hash extra_hash)."""
    return {
        "version": "0x0",
        "compact_target": "0x1e083126",
        "timestamp": hex(1_600_000_000_000 + number),
        "number": hex(number),
        "epoch": "0x7080018000001",
        "parent_hash": "0x" + f"{number - 1 if number else 0:064x}",
        "transactions_root": "0x" + "01" * 32,
        "proposals_hash": "0x" + "00" * 32,
        "extra_hash": "0x" + "00" * 32,
        "dao": "0x" + "02" * 32,
        "nonce": "0x0",
        "hash": "0x" + f"{number:064x}",
    }


def block_json(number: int, txs: Optional[list[dict[str, Any]]] = None) -> dict[str, Any]:
    cellbase = tx_json("0x" + "00" * 31 + "ff", lock=OTHER_LOCK, n_inputs=1, witnesses=["0x"])
    return {
        "header": header_json(number),
        "transactions": [cellbase] + (txs or []),
        "proposals": [],
        "uncles": [],
    }


@pytest.fixture
def target_lock() -> Script:
    return Script.model_validate(CROSS_LOCK)


@pytest.fixture
def make_tx() -> Callable[..., Transaction]:
    def _make(tx_hash: str = "0x" + "ab" * 32, **kwargs: Any) -> Transaction:
        return Transaction.model_validate(tx_json(tx_hash, **kwargs))

    return _make


@pytest.fixture
def make_header() -> Callable[[int], BlockHeader]:
    def _make(number: int) -> BlockHeader:
        return BlockHeader.model_validate(header_json(number))

    return _make


@pytest.fixture
def make_block() -> Callable[..., Block]:
    def _make(number: int, txs: Optional[list[dict[str, Any]]] = None) -> Block:
        return Block.model_validate(block_json(number, txs))

    return _make
