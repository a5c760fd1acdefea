"""
Cross-chain deposit detection.
"""

from typing import Iterable

from .models import Script, Transaction


def is_cross_transaction(tx: Transaction, target_lock: Script) -> bool:
    """
    A deposit has exactly one output, locked by the crosschain lock script.

    Multi-output transactions never match, even when one of their outputs
    carries the target lock: the batch builder reads outputs_data[0] and
    relies on the deposit cell being the only output.
    """
    return len(tx.outputs) == 1 and tx.outputs[0].lock == target_lock


def find_cross_transactions(
    transactions: Iterable[Transaction], target_lock: Script
) -> list[Transaction]:
    """Return the deposits in a block, in block order."""
    return [tx for tx in transactions if is_cross_transaction(tx, target_lock)]
