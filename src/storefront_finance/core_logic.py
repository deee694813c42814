"""Business logic layer for the storefront finance package.

This module holds :class:`TransactionStore`, the only sanctioned entry point
to persisted transactions. Each operation is attempted against the remote
store first; any :class:`RemoteUnavailable` is logged and the equivalent
operation runs against the local cache with the same filters and ordering,
so callers cannot tell which path served them. Which path did is recorded as
an :class:`Outcome` on the store.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, fields as dataclass_fields, replace
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar

from . import configure_logging, data_manager, log, ordering
from .constants import (
    DEFAULT_PAGE_SIZE,
    DUE_SOON_DAYS,
    EXPECTED_SCHEMA_VERSION,
    TransactionStatus,
    TransactionType,
)
from .data_manager import FIELDS, FIELDS_BY_ATTR, Transaction, TransactionFilters, matches_filters
from .dates import DateNormalizer
from .exceptions import (
    CacheCorruption,
    NotFoundError,
    RemoteUnavailable,
    TransactionStoreError,
    ValidationError,
)
from .local_cache import LocalCache
from .remote_store import RemoteStore


T = TypeVar("T")


class Source(str, Enum):
    """Which path served an operation."""

    REMOTE = "remote"
    FALLBACK = "fallback"
    FAILED = "failed"


@dataclass(frozen=True)
class Outcome:
    """Record of how the most recent operation was served."""

    operation: str
    source: Source
    detail: Optional[str] = None


@dataclass(frozen=True)
class RemoteAttempt(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class Pagination:
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE


@dataclass(frozen=True)
class ListResult:
    """One page of transactions plus the global confirmed balance."""

    items: List[Transaction]
    total: int
    total_pages: int
    current_balance: Decimal


@dataclass(frozen=True)
class Summary:
    """Confirmed income/expense totals for a period, grouped by category."""

    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    income_by_category: Dict[str, Decimal]
    expense_by_category: Dict[str, Decimal]
    pending_income: Decimal = Decimal("0")
    pending_expense: Decimal = Decimal("0")


@dataclass(frozen=True)
class PayablesOverview:
    """Outstanding pending expenses bucketed by due date."""

    total_pending: Decimal
    total_overdue: Decimal
    total_due_soon: Decimal
    items: List[Transaction]


@dataclass(frozen=True)
class TransactionDraft:
    """User intent for creating a transaction; ``id`` is assigned on create."""

    description: Optional[str] = None
    amount: Any = None
    type: Any = None
    category: Optional[str] = None
    status: Any = None
    transaction_date: Any = None
    due_date: Any = None
    payment_date: Any = None
    payment_method: Any = None
    notes: Optional[str] = None
    linked_entity_id: Optional[str] = None
    linked_entity_type: Any = None
    receipt_url: Optional[str] = None
    related_sale_link: Optional[str] = None

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "TransactionDraft":
        known = {f.name for f in dataclass_fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValidationError(f"Unknown transaction fields: {', '.join(unknown)}")
        return cls(**values)


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the store used by the CLI."""

    settings: data_manager.ConfigSettings
    store: "TransactionStore"


def _coerce(attr: str, value: Any) -> Any:
    try:
        return data_manager.coerce_value(FIELDS_BY_ATTR[attr], value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def require_positive_amount(amount: Decimal) -> None:
    """Validate that a monetary amount is strictly positive.

    Direction is carried by the transaction type, never by the sign.

    Raises:
        ValidationError: If ``amount`` is zero or negative.
    """
    if amount <= Decimal("0"):
        log.error("Amount validation failed: %s", amount)
        raise ValidationError("Amount must be greater than zero")


def validate_draft(draft: TransactionDraft) -> Dict[str, Any]:
    """Coerce a draft into typed attribute values ready for persistence.

    Raises:
        ValidationError: If a required field is missing or any value is
            malformed.
    """
    values: Dict[str, Any] = {}
    missing: List[str] = []
    for spec in FIELDS:
        if spec.attr == "id":
            continue
        value = _coerce(spec.attr, getattr(draft, spec.attr))
        if value is None and spec.required:
            missing.append(spec.attr)
        values[spec.attr] = value
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    require_positive_amount(values["amount"])
    return values


def validate_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Coerce a partial update, rejecting unknown, immutable or empty fields.

    Raises:
        ValidationError: If a field is unknown, targets ``id``, clears a
            required field or carries a malformed value.
    """
    if not changes:
        raise ValidationError("No fields supplied for update")
    values: Dict[str, Any] = {}
    for attr, raw in changes.items():
        if attr == "id":
            raise ValidationError("Transaction id cannot be changed")
        spec = FIELDS_BY_ATTR.get(attr)
        if spec is None:
            raise ValidationError(f"Unknown transaction field: {attr}")
        value = _coerce(attr, raw)
        if value is None and spec.required:
            raise ValidationError(f"Field '{attr}' cannot be empty")
        if attr == "amount":
            require_positive_amount(value)
        values[attr] = value
    return values


def validate_filters(filters: TransactionFilters) -> TransactionFilters:
    """Check enum and date filters before they reach either path."""
    try:
        return TransactionFilters(
            type=_coerce("type", filters.type),
            status=_coerce("status", filters.status),
            start_date=DateNormalizer.coerce_date(filters.start_date) if filters.start_date else None,
            end_date=DateNormalizer.coerce_date(filters.end_date) if filters.end_date else None,
            category=filters.category or None,
            search=data_manager.normalize_search(filters.search),
            linked_entity_id=filters.linked_entity_id or None,
            linked_entity_type=_coerce("linked_entity_type", filters.linked_entity_type),
        )
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def validate_pagination(pagination: Pagination) -> Pagination:
    if pagination.page < 1 or pagination.page_size < 1:
        raise ValidationError("Page and page size must be positive")
    return pagination


def calculate_balance(transactions: List[Transaction]) -> Decimal:
    """Confirmed income minus confirmed expense; other statuses are ignored."""
    balance = Decimal("0")
    for txn in transactions:
        if txn.status != TransactionStatus.CONFIRMED:
            continue
        balance += txn.amount if txn.type == TransactionType.INCOME else -txn.amount
    return balance


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if total else 0


class TransactionStore:
    """Orchestrates the remote store and the local cache behind one contract.

    The store is the sole writer of both paths. A re-entrant lock spans each
    "attempt remote, then fall back" sequence so no caller observes a
    half-applied mutation.
    """

    def __init__(
        self,
        remote: RemoteStore,
        cache: LocalCache,
        *,
        normalizer: Optional[DateNormalizer] = None,
        on_outcome: Optional[Callable[[Outcome], None]] = None,
    ) -> None:
        self.remote = remote
        self.cache = cache
        self.normalizer = normalizer or remote.normalizer
        self.on_outcome = on_outcome
        self.last_outcome: Optional[Outcome] = None
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings: data_manager.ConfigSettings, **kwargs: Any) -> "TransactionStore":
        normalizer = DateNormalizer(settings.utc_offset_hours)
        remote = RemoteStore.from_settings(settings, normalizer)
        cache = LocalCache(settings.cache_file)
        return cls(remote, cache, normalizer=normalizer, **kwargs)

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _record(self, operation: str, source: Source, detail: Optional[str] = None) -> Outcome:
        outcome = Outcome(operation=operation, source=source, detail=detail)
        self.last_outcome = outcome
        log.debug("Operation '%s' served by %s", operation, source.value)
        if self.on_outcome is not None:
            self.on_outcome(outcome)
        return outcome

    def _try_remote(self, operation: str, action: Callable[[], T]) -> RemoteAttempt[T]:
        try:
            return RemoteAttempt(ok=True, value=action())
        except RemoteUnavailable as exc:
            log.warning("Remote %s failed, using local cache: %s", operation, exc)
            return RemoteAttempt(ok=False, error=str(exc))

    def _not_found(self, operation: str, transaction_id: str) -> NotFoundError:
        self._record(operation, Source.FAILED, f"{transaction_id} not found")
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        return NotFoundError(f"Transaction not found: {transaction_id}")

    def _mirror(self, transactions: List[Transaction]) -> None:
        """Copy remotely served records into the cache when they differ."""
        changed = self.cache.upsert_many(transactions)
        if changed:
            log.debug("Mirrored %d remote transactions into the cache", changed)

    def _collect(
        self,
        operation: str,
        filters: TransactionFilters,
        *,
        with_confirmed: bool = True,
    ) -> Tuple[List[Transaction], List[Transaction]]:
        """Return every match in canonical order and the confirmed set.

        Both paths gather the full matching set before any slicing, so the
        same ordering decides what lands on each page.
        """
        def fetch() -> Tuple[List[Transaction], List[Transaction]]:
            matching = self.remote.fetch_matching(filters)
            return matching, self.remote.fetch_confirmed() if with_confirmed else []

        attempt = self._try_remote(operation, fetch)
        if attempt.ok:
            matching, confirmed = attempt.value
            matching = ordering.canonical_sort(matching)
            self._mirror(matching)
            self._record(operation, Source.REMOTE)
            return matching, confirmed

        matching = self.cache.query(lambda txn: matches_filters(txn, filters))
        confirmed = (
            self.cache.query(lambda txn: txn.status == TransactionStatus.CONFIRMED) if with_confirmed else []
        )
        self._record(operation, Source.FALLBACK, attempt.error)
        return matching, confirmed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        pagination: Optional[Pagination] = None,
    ) -> ListResult:
        """Return one page of matching transactions in canonical order.

        ``current_balance`` always covers every confirmed transaction, not
        just the filtered page.

        Raises:
            ValidationError: If a filter value or the pagination is invalid.
        """
        filters = validate_filters(filters or TransactionFilters())
        pagination = validate_pagination(pagination or Pagination())
        start = (pagination.page - 1) * pagination.page_size

        with self._lock:
            matching, confirmed = self._collect("list", filters)
        return ListResult(
            items=matching[start:start + pagination.page_size],
            total=len(matching),
            total_pages=total_pages(len(matching), pagination.page_size),
            current_balance=calculate_balance(confirmed),
        )

    def list_all(self, filters: Optional[TransactionFilters] = None) -> List[Transaction]:
        """Return every matching transaction in canonical order."""
        filters = validate_filters(filters or TransactionFilters())
        with self._lock:
            matching, _ = self._collect("list_all", filters, with_confirmed=False)
        return matching

    def get_by_id(self, transaction_id: str) -> Transaction:
        """Return the transaction with ``transaction_id``.

        Raises:
            NotFoundError: If neither path holds the id.
        """
        with self._lock:
            attempt = self._try_remote("get_by_id", lambda: self.remote.fetch_by_id(transaction_id))
            if attempt.ok and attempt.value is not None:
                self._mirror([attempt.value])
                self._record("get_by_id", Source.REMOTE)
                return attempt.value

            cached = self.cache.find_by_id(transaction_id)
            if cached is None:
                raise self._not_found("get_by_id", transaction_id)
            self._record("get_by_id", Source.FALLBACK, attempt.error)
            return cached

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, draft: TransactionDraft) -> Transaction:
        """Validate and persist a new transaction.

        Raises:
            ValidationError: If required fields are missing or malformed.
        """
        try:
            values = validate_draft(draft)
        except ValidationError as exc:
            self._record("create", Source.FAILED, str(exc))
            raise

        with self._lock:
            attempt = self._try_remote("create", lambda: self.remote.insert(values))
            if attempt.ok:
                created = attempt.value
                self.cache.upsert(created)
                self._record("create", Source.REMOTE)
            else:
                created = Transaction(id=self.cache.next_local_id(), **values)
                self.cache.upsert(created)
                self._record("create", Source.FALLBACK, attempt.error)

        log.info(
            "Created %s transaction '%s' (amount=%s, status=%s)",
            created.type.value,
            created.id,
            created.amount,
            created.status.value,
        )
        return created

    def update(self, transaction_id: str, changes: Optional[Mapping[str, Any]] = None, **fields: Any) -> Transaction:
        """Apply a partial update to an existing transaction.

        Raises:
            ValidationError: If a field is unknown or malformed.
            NotFoundError: If the id is absent from the path that served it.
        """
        try:
            values = validate_changes({**(changes or {}), **fields})
        except ValidationError as exc:
            self._record("update", Source.FAILED, str(exc))
            raise

        with self._lock:
            attempt = self._try_remote("update", lambda: self.remote.update(transaction_id, values))
            if attempt.ok and attempt.value is not None:
                updated = attempt.value
                self.cache.upsert(updated)
                self._record("update", Source.REMOTE)
            else:
                cached = self.cache.find_by_id(transaction_id)
                if cached is None:
                    raise self._not_found("update", transaction_id)
                updated = replace(cached, **values)
                self.cache.upsert(updated)
                self._record("update", Source.FALLBACK, attempt.error)

        log.info("Updated transaction '%s' fields: %s", transaction_id, ", ".join(sorted(values)))
        return updated

    def delete(self, transaction_id: str) -> None:
        """Delete a transaction from both paths.

        Raises:
            NotFoundError: If neither path held the id.
        """
        with self._lock:
            attempt = self._try_remote("delete", lambda: self.remote.delete(transaction_id))
            removed_remote = bool(attempt.ok and attempt.value)
            removed_local = self.cache.remove(transaction_id)
            if not removed_remote and not removed_local:
                raise self._not_found("delete", transaction_id)
            self._record("delete", Source.REMOTE if attempt.ok else Source.FALLBACK, attempt.error)

        log.info("Deleted transaction '%s'", transaction_id)

    def confirm_payment(self, transaction_id: str, payment_date: Optional[str] = None) -> Transaction:
        """Mark a transaction confirmed, stamping the payment date (default today)."""
        return self.update(
            transaction_id,
            status=TransactionStatus.CONFIRMED,
            payment_date=payment_date or self.normalizer.today(),
        )

    def cancel(self, transaction_id: str) -> Transaction:
        return self.update(transaction_id, status=TransactionStatus.CANCELED)

    def reload(self) -> int:
        """Re-read the cache snapshot from disk; return the cached count."""
        with self._lock:
            return len(self.cache.reload())

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def summarize(self, start_date: Optional[str] = None, end_date: Optional[str] = None) -> Summary:
        """Aggregate the period's transactions through ``list``.

        Totals, balance and category breakdowns count confirmed transactions
        only; pending amounts are reported separately and canceled ones are
        ignored.
        """
        items = self.list_all(TransactionFilters(start_date=start_date, end_date=end_date))

        totals = {TransactionType.INCOME: Decimal("0"), TransactionType.EXPENSE: Decimal("0")}
        pending = {TransactionType.INCOME: Decimal("0"), TransactionType.EXPENSE: Decimal("0")}
        by_category: Dict[TransactionType, Dict[str, Decimal]] = {
            TransactionType.INCOME: {},
            TransactionType.EXPENSE: {},
        }
        for txn in items:
            if txn.status == TransactionStatus.PENDING:
                pending[txn.type] += txn.amount
                continue
            if txn.status != TransactionStatus.CONFIRMED:
                continue
            totals[txn.type] += txn.amount
            bucket = by_category[txn.type]
            bucket[txn.category] = bucket.get(txn.category, Decimal("0")) + txn.amount

        total_income = totals[TransactionType.INCOME]
        total_expense = totals[TransactionType.EXPENSE]
        log.debug(
            "Calculated summary %s..%s: income=%s expense=%s",
            start_date,
            end_date,
            total_income,
            total_expense,
        )
        return Summary(
            total_income=total_income,
            total_expense=total_expense,
            balance=total_income - total_expense,
            income_by_category=by_category[TransactionType.INCOME],
            expense_by_category=by_category[TransactionType.EXPENSE],
            pending_income=pending[TransactionType.INCOME],
            pending_expense=pending[TransactionType.EXPENSE],
        )

    def payables_overview(self, today: Optional[str] = None) -> PayablesOverview:
        """Bucket pending expenses into overdue and due within the next week."""
        today_date = date.fromisoformat(DateNormalizer.coerce_date(today or self.normalizer.today()))
        horizon = (today_date + timedelta(days=DUE_SOON_DAYS)).isoformat()
        today_text = today_date.isoformat()

        items = self.list_all(
            TransactionFilters(type=TransactionType.EXPENSE, status=TransactionStatus.PENDING)
        )
        total_pending = total_overdue = total_due_soon = Decimal("0")
        for txn in items:
            total_pending += txn.amount
            if not txn.due_date:
                continue
            if txn.due_date < today_text:
                total_overdue += txn.amount
            elif txn.due_date <= horizon:
                total_due_soon += txn.amount

        items.sort(key=lambda txn: (txn.due_date is None, txn.due_date or ""))
        return PayablesOverview(
            total_pending=total_pending,
            total_overdue=total_overdue,
            total_due_soon=total_due_soon,
            items=items,
        )


def ensure_schema_version(settings: data_manager.ConfigSettings) -> None:
    """Validate config compatibility before touching either store.

    Raises:
        RuntimeError: If the schema version declared in the configuration
            does not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Config schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            settings.schema_version,
        )
        raise RuntimeError(
            "Config schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, settings.schema_version)
        )

    log.debug("Schema version '%s' validated", settings.schema_version)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration and assemble a ready-to-use store.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
        RuntimeError: On a schema version mismatch.
        ValueError: If ``[Logging] Level`` is not a logging level name.
    """
    settings = data_manager.load_settings(config_path)
    configure_logging(settings.log_file, settings.log_level)
    ensure_schema_version(settings)
    store = TransactionStore.from_settings(settings)
    log.info("Loaded runtime context with cache '%s'", settings.cache_file)
    return RuntimeContext(settings=settings, store=store)


__all__ = [
    "Source",
    "Outcome",
    "Pagination",
    "ListResult",
    "Summary",
    "PayablesOverview",
    "TransactionDraft",
    "RuntimeContext",
    "TransactionStore",
    "TransactionStoreError",
    "ValidationError",
    "NotFoundError",
    "RemoteUnavailable",
    "CacheCorruption",
    "require_positive_amount",
    "validate_draft",
    "validate_changes",
    "validate_filters",
    "validate_pagination",
    "calculate_balance",
    "total_pages",
    "ensure_schema_version",
    "load_runtime_context",
]
