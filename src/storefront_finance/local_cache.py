"""Durable local mirror of the transaction collection.

The cache keeps the full collection in memory and writes the whole of it to a
single JSON document after every mutation, always in canonical order, so the
file can be reloaded verbatim on the next start. It is both a read-through
copy of the backend and the store of record while the backend is
unreachable.

Document layout::

    {
      "storefront-finance-transactions": [ {...}, {...} ]
    }

Writes target ``<file>.tmp`` first and then ``os.replace`` into place.
"""

from __future__ import annotations

import json
import os
import threading
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from . import log, ordering
from .constants import (
    LOCAL_ID_PREFIX,
    LOCAL_ID_WIDTH,
    STORAGE_KEY,
    LinkedEntityType,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)
from .data_manager import Transaction, deserialize_transaction, serialize_transaction
from .exceptions import CacheCorruption


SEED_TRANSACTIONS: tuple[Transaction, ...] = (
    Transaction(
        id="TRX001",
        description="Sale - Order #V001",
        amount=Decimal("85.90"),
        type=TransactionType.INCOME,
        category="Sales",
        status=TransactionStatus.CONFIRMED,
        transaction_date="2023-04-25",
        payment_date="2023-04-25",
        payment_method=PaymentMethod.CREDIT,
        linked_entity_id="V001",
        linked_entity_type=LinkedEntityType.SALE,
    ),
    Transaction(
        id="TRX002",
        description="Sale - Order #V002",
        amount=Decimal("126.40"),
        type=TransactionType.INCOME,
        category="Sales",
        status=TransactionStatus.CONFIRMED,
        transaction_date="2023-04-25",
        payment_date="2023-04-25",
        payment_method=PaymentMethod.CASH,
        linked_entity_id="V002",
        linked_entity_type=LinkedEntityType.SALE,
    ),
    Transaction(
        id="TRX003",
        description="Sale - Order #V003",
        amount=Decimal("213.75"),
        type=TransactionType.INCOME,
        category="Sales",
        status=TransactionStatus.PENDING,
        transaction_date="2023-04-24",
        due_date="2023-05-01",
        payment_method=PaymentMethod.PIX,
        linked_entity_id="V003",
        linked_entity_type=LinkedEntityType.SALE,
    ),
    Transaction(
        id="TRX004",
        description="Book purchase - Companhia das Letras",
        amount=Decimal("1250.00"),
        type=TransactionType.EXPENSE,
        category="Book Purchases",
        status=TransactionStatus.CONFIRMED,
        transaction_date="2023-04-24",
        payment_date="2023-04-24",
        payment_method=PaymentMethod.TRANSFER,
        notes="Stock replenishment - 50 books",
    ),
    Transaction(
        id="TRX005",
        description="Sale - Order #V004",
        amount=Decimal("45.00"),
        type=TransactionType.INCOME,
        category="Sales",
        status=TransactionStatus.CONFIRMED,
        transaction_date="2023-04-23",
        payment_date="2023-04-23",
        payment_method=PaymentMethod.DEBIT,
        linked_entity_id="V004",
        linked_entity_type=LinkedEntityType.SALE,
    ),
)


def encode_document(collection: Iterable[Transaction], *, storage_key: str = STORAGE_KEY) -> str:
    """Serialize a collection into the cache document text."""

    entries = [serialize_transaction(txn) for txn in collection]
    return json.dumps({storage_key: entries}, indent=2, ensure_ascii=False) + "\n"


def decode_document(text: str, *, storage_key: str = STORAGE_KEY) -> List[Transaction]:
    """Parse cache document text into transactions.

    Raises:
        CacheCorruption: If the text is not a valid cache document.
    """

    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise CacheCorruption(f"Cache document is not valid JSON: {exc}") from exc
    if not isinstance(document, dict) or not isinstance(document.get(storage_key), list):
        raise CacheCorruption(f"Cache document has no '{storage_key}' array")
    try:
        return [deserialize_transaction(entry) for entry in document[storage_key]]
    except (ValueError, TypeError) as exc:
        raise CacheCorruption(f"Cache entry could not be decoded: {exc}") from exc


class LocalCache:
    """Process-wide, lazily loaded transaction collection backed by a JSON file."""

    def __init__(
        self,
        path: Path,
        *,
        seed: Sequence[Transaction] = SEED_TRANSACTIONS,
        storage_key: str = STORAGE_KEY,
    ) -> None:
        self.path = Path(path).expanduser()
        self.storage_key = storage_key
        self._seed = tuple(seed)
        self._items: Optional[List[Transaction]] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def load_or_seed(self) -> List[Transaction]:
        """Return the collection, loading or seeding it on first use.

        A missing or undecodable snapshot is replaced by the seed set, which
        is persisted immediately. Later calls return the in-memory state
        without touching the file.
        """

        with self._lock:
            if self._items is None:
                self._items = self._load_from_disk()
            return list(self._items)

    def reload(self) -> List[Transaction]:
        """Discard the in-memory collection and read the snapshot again."""

        with self._lock:
            self._items = None
            items = self.load_or_seed()
            log.info("Reloaded %d transactions from '%s'", len(items), self.path)
            return items

    def persist(self, collection: Optional[Iterable[Transaction]] = None) -> None:
        """Write the collection to disk in canonical order.

        When ``collection`` is given it replaces the in-memory state first.
        """

        with self._lock:
            source = self._loaded() if collection is None else collection
            self._items = ordering.canonical_sort(source)
            self._write(self._items)

    def _load_from_disk(self) -> List[Transaction]:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            log.info("No cache snapshot at '%s'; seeding %d transactions", self.path, len(self._seed))
            return self._seed_and_write()

        try:
            items = decode_document(text, storage_key=self.storage_key)
        except CacheCorruption as exc:
            log.warning("Discarding corrupt cache '%s' and re-seeding: %s", self.path, exc)
            return self._seed_and_write()

        log.debug("Loaded %d transactions from '%s'", len(items), self.path)
        return ordering.canonical_sort(items)

    def _seed_and_write(self) -> List[Transaction]:
        items = ordering.canonical_sort(self._seed)
        self._write(items)
        return items

    def _write(self, items: Sequence[Transaction]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(encode_document(items, storage_key=self.storage_key), encoding="utf-8")
        os.replace(tmp_path, self.path)
        log.debug("Persisted %d transactions to '%s'", len(items), self.path)

    # ------------------------------------------------------------------
    # Collection operations
    # ------------------------------------------------------------------

    def all(self) -> List[Transaction]:
        return self.load_or_seed()

    def find_by_id(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            for txn in self._loaded():
                if txn.id == transaction_id:
                    return txn
            return None

    def query(self, predicate: Callable[[Transaction], bool]) -> List[Transaction]:
        """Return the transactions satisfying ``predicate``, in canonical order."""

        with self._lock:
            return [txn for txn in self._loaded() if predicate(txn)]

    def upsert(self, transaction: Transaction) -> Transaction:
        """Insert ``transaction`` at the head, or replace the entry with its id."""

        with self._lock:
            items = [txn for txn in self._loaded() if txn.id != transaction.id]
            items.insert(0, transaction)
            self._items = ordering.canonical_sort(items)
            self._write(self._items)
            return transaction

    def upsert_many(self, transactions: Iterable[Transaction]) -> int:
        """Insert or replace several entries with a single write.

        Entries already equal to the cached record are skipped; nothing is
        written when all of them are. Returns the number of entries changed.
        """

        with self._lock:
            current = {txn.id: txn for txn in self._loaded()}
            changed = {txn.id: txn for txn in transactions if current.get(txn.id) != txn}
            if not changed:
                return 0
            current.update(changed)
            self._items = ordering.canonical_sort(current.values())
            self._write(self._items)
            return len(changed)

    def remove(self, transaction_id: str) -> bool:
        """Drop the entry with ``transaction_id``; return whether one existed."""

        with self._lock:
            items = self._loaded()
            remaining = [txn for txn in items if txn.id != transaction_id]
            if len(remaining) == len(items):
                return False
            self._items = remaining
            self._write(self._items)
            return True

    def replace_all(self, collection: Iterable[Transaction]) -> None:
        self.persist(list(collection))

    def next_local_id(self) -> str:
        """Return the next ``TRX`` identifier, one past the highest in use."""

        with self._lock:
            highest = 0
            for txn in self._loaded():
                if txn.id.startswith(LOCAL_ID_PREFIX):
                    highest = max(highest, ordering.id_sequence(txn.id))
            return f"{LOCAL_ID_PREFIX}{highest + 1:0{LOCAL_ID_WIDTH}d}"

    def _loaded(self) -> List[Transaction]:
        if self._items is None:
            self._items = self._load_from_disk()
        return self._items


__all__ = [
    "SEED_TRANSACTIONS",
    "LocalCache",
    "encode_document",
    "decode_document",
]
