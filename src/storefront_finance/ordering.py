"""Canonical ordering of transaction collections.

Both storage paths sort with the same key: ``transaction_date`` descending,
then the digits of ``id`` descending, so that the most recently created entry
comes first among transactions sharing a date.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Iterable, List, Sequence, Tuple

if TYPE_CHECKING:
    from .data_manager import Transaction


_NON_DIGITS = re.compile(r"\D")


def id_sequence(transaction_id: str) -> int:
    """Return the numeric part of an identifier, ``0`` when it has none."""

    digits = _NON_DIGITS.sub("", transaction_id or "")
    return int(digits) if digits else 0


def sort_key(transaction: "Transaction") -> Tuple[str, int]:
    return transaction.transaction_date, id_sequence(transaction.id)


def canonical_sort(transactions: Iterable["Transaction"]) -> List["Transaction"]:
    """Return a new list in canonical order."""

    return sorted(transactions, key=sort_key, reverse=True)


def is_canonical(transactions: Sequence["Transaction"]) -> bool:
    keys = [sort_key(txn) for txn in transactions]
    return all(left >= right for left, right in zip(keys, keys[1:]))


__all__ = ["id_sequence", "sort_key", "canonical_sort", "is_canonical"]
