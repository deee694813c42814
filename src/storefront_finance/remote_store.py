"""Remote persistence path backed by the Supabase/PostgREST table.

Every method builds its queries through the supabase client's query builder,
translates between attribute names and backend columns with the shared field
table from :mod:`storefront_finance.data_manager`, and converts any failure
of the client into :class:`RemoteUnavailable`. The store never falls back on
its own; that decision belongs to the transaction store.

Designed to degrade gracefully when credentials are absent: the store is then
built without a client and every call reports the backend as unavailable.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from supabase import Client, ClientOptions, create_client

from . import log
from .constants import REMOTE_FETCH_SIZE, REMOTE_INSERT_RPC, REMOTE_TABLE, TransactionStatus
from .data_manager import (
    FIELDS,
    FIELDS_BY_ATTR,
    ConfigSettings,
    Transaction,
    TransactionFilters,
    normalize_search,
)
from .dates import DateNormalizer
from .exceptions import RemoteUnavailable


T = TypeVar("T")


def create_remote_client(settings: ConfigSettings) -> Optional[Client]:
    """Build a supabase client from ``settings``, or ``None`` if unusable."""

    if not settings.remote_configured:
        log.info("Remote store not configured; running against the local cache only.")
        return None
    try:
        options = ClientOptions(postgrest_client_timeout=settings.remote_timeout)
        client = create_client(settings.remote_url, settings.remote_key, options=options)
    except Exception as exc:
        log.warning("Failed to initialize Supabase client: %s", exc)
        return None
    log.info("Supabase client initialized for table '%s'.", settings.remote_table)
    return client


def encode_value(attr: str, value: Any, normalizer: DateNormalizer, *, plain_dates: bool = False) -> Any:
    """Translate one attribute value into its wire representation."""

    if value is None:
        return None
    spec = FIELDS_BY_ATTR[attr]
    if spec.kind == "enum":
        return value.remote_code
    if spec.kind == "amount":
        return float(value)
    if spec.kind == "date":
        return value if plain_dates else normalizer.to_storage_instant(value)
    return value


def encode_row(values: Mapping[str, Any], normalizer: DateNormalizer, *, plain_dates: bool = False) -> Dict[str, Any]:
    """Map attribute names to backend columns for an insert or update."""

    return {
        FIELDS_BY_ATTR[attr].column: encode_value(attr, value, normalizer, plain_dates=plain_dates)
        for attr, value in values.items()
        if attr != "id"
    }


def decode_row(row: Mapping[str, Any], normalizer: DateNormalizer) -> Transaction:
    """Map a backend row onto a :class:`Transaction`.

    Columns outside the field table (``created_at``, ``updated_at``) are
    ignored. Dates are brought back to business calendar dates.

    Raises:
        RemoteUnavailable: If the row is malformed.
    """

    values: Dict[str, Any] = {}
    try:
        for spec in FIELDS:
            raw = row.get(spec.column)
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                if spec.required:
                    raise ValueError(f"column '{spec.column}' is empty")
                values[spec.attr] = None
            elif spec.kind == "enum":
                values[spec.attr] = spec.enum_type.from_remote(str(raw))
            elif spec.kind == "amount":
                values[spec.attr] = Decimal(str(raw))
            elif spec.kind == "date":
                values[spec.attr] = normalizer.to_calendar_date(raw)
            else:
                values[spec.attr] = str(raw)
    except (ValueError, ArithmeticError, AttributeError) as exc:
        raise RemoteUnavailable(f"Malformed row from backend: {exc}") from exc
    return Transaction(**values)


class RemoteStore:
    """Thin query/command interface over the ``financial_transactions`` table."""

    def __init__(
        self,
        client: Optional[Any],
        *,
        normalizer: Optional[DateNormalizer] = None,
        table: str = REMOTE_TABLE,
        use_rpc_insert: bool = True,
        fetch_size: int = REMOTE_FETCH_SIZE,
    ) -> None:
        self.client = client
        self.normalizer = normalizer or DateNormalizer()
        self.table = table
        self.use_rpc_insert = use_rpc_insert
        self.fetch_size = fetch_size

    @classmethod
    def from_settings(cls, settings: ConfigSettings, normalizer: DateNormalizer) -> "RemoteStore":
        return cls(
            create_remote_client(settings),
            normalizer=normalizer,
            table=settings.remote_table,
            use_rpc_insert=settings.use_rpc_insert,
        )

    @property
    def available(self) -> bool:
        return self.client is not None

    def _call(self, operation: str, action: Callable[[], T]) -> T:
        if self.client is None:
            raise RemoteUnavailable("Remote store is not configured")
        try:
            return action()
        except RemoteUnavailable:
            raise
        except Exception as exc:
            raise RemoteUnavailable(f"{operation} failed: {exc}") from exc

    def _query(self):
        return self.client.table(self.table)

    def _decode_all(self, rows: Any) -> List[Transaction]:
        if not isinstance(rows, list):
            raise RemoteUnavailable(f"Expected a list of rows, got {type(rows).__name__}")
        return [decode_row(row, self.normalizer) for row in rows]

    def apply_filters(self, query: Any, filters: TransactionFilters) -> Any:
        """Chain the server-side equivalent of ``matches_filters``."""

        if filters.type is not None:
            query = query.eq("tipo", filters.type.remote_code)
        if filters.status is not None:
            query = query.eq("status", filters.status.remote_code)
        if filters.start_date:
            query = query.gte("data", self.normalizer.day_bounds(filters.start_date)[0])
        if filters.end_date:
            query = query.lte("data", self.normalizer.day_bounds(filters.end_date)[1])
        if filters.category:
            query = query.eq("categoria", filters.category)
        if filters.linked_entity_id:
            query = query.eq("vinculoid", filters.linked_entity_id)
        if filters.linked_entity_type is not None:
            query = query.eq("vinculotipo", filters.linked_entity_type.remote_code)
        if filters.search:
            term = normalize_search(filters.search)
            if term:
                query = query.or_(
                    f"descricao.ilike.%{term}%,id.ilike.%{term}%,observacoes.ilike.%{term}%"
                )
        return query

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def fetch_matching(self, filters: TransactionFilters) -> List[Transaction]:
        """Return every row matching ``filters``, newest first.

        The backend caps each response, so rows are read in windows of
        ``fetch_size`` until the exact count reported by the first window has
        been collected. Canonical ordering is left to the caller.
        """

        def action() -> List[Transaction]:
            rows: List[Transaction] = []
            total: Optional[int] = None
            while total is None or len(rows) < total:
                start = len(rows)
                query = self.apply_filters(self._query().select("*", count="exact"), filters)
                response = (
                    query.order("data", desc=True)
                    .order("id", desc=True)
                    .range(start, start + self.fetch_size - 1)
                    .execute()
                )
                batch = self._decode_all(response.data)
                if total is None:
                    total = response.count if response.count is not None else len(batch)
                if not batch:
                    break
                rows.extend(batch)
            return rows

        return self._call("fetch_matching", action)

    def fetch_confirmed(self) -> List[Transaction]:
        """Return every confirmed row regardless of any active filter."""

        return self.fetch_matching(TransactionFilters(status=TransactionStatus.CONFIRMED))

    def fetch_by_id(self, transaction_id: str) -> Optional[Transaction]:
        def action() -> Optional[Transaction]:
            response = self._query().select("*").eq("id", transaction_id).limit(1).execute()
            rows = self._decode_all(response.data)
            return rows[0] if rows else None

        return self._call("fetch_by_id", action)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, values: Mapping[str, Any]) -> Transaction:
        """Create a row and return it as stored by the backend.

        The timezone-aware stored procedure is tried first when enabled; the
        generic insert is the second attempt.
        """

        if self.use_rpc_insert and self.client is not None:
            try:
                return self._insert_via_rpc(values)
            except RemoteUnavailable as exc:
                log.warning("RPC insert unavailable, using generic insert: %s", exc)

        def action() -> Transaction:
            row = encode_row(values, self.normalizer)
            response = self._query().insert(row).execute()
            created = self._decode_all(response.data)
            if not created:
                raise RemoteUnavailable("Insert returned no row")
            return created[0]

        return self._call("insert", action)

    def _insert_via_rpc(self, values: Mapping[str, Any]) -> Transaction:
        def action() -> Transaction:
            params = {
                f"p_{spec.column}": encode_value(spec.attr, values.get(spec.attr), self.normalizer, plain_dates=True)
                for spec in FIELDS
                if spec.attr != "id"
            }
            response = self.client.rpc(REMOTE_INSERT_RPC, params).execute()
            new_id = response.data
            if isinstance(new_id, list):
                new_id = new_id[0] if new_id else None
            if isinstance(new_id, dict):
                new_id = new_id.get("id")
            if not new_id:
                raise RemoteUnavailable("RPC insert returned no id")
            created = self.fetch_by_id(str(new_id))
            if created is None:
                raise RemoteUnavailable(f"Row {new_id} missing after RPC insert")
            return created

        return self._call("insert_rpc", action)

    def update(self, transaction_id: str, changes: Mapping[str, Any]) -> Optional[Transaction]:
        """Apply a partial update; ``None`` when no row has ``transaction_id``."""

        def action() -> Optional[Transaction]:
            row = encode_row(changes, self.normalizer)
            response = self._query().update(row).eq("id", transaction_id).execute()
            updated = self._decode_all(response.data)
            return updated[0] if updated else None

        return self._call("update", action)

    def delete(self, transaction_id: str) -> bool:
        """Delete a row; return whether the backend reported one removed."""

        def action() -> bool:
            response = self._query().delete().eq("id", transaction_id).execute()
            return bool(response.data)

        return self._call("delete", action)


__all__ = [
    "RemoteStore",
    "create_remote_client",
    "encode_value",
    "encode_row",
    "decode_row",
]
