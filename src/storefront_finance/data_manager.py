"""Configuration handling and the transaction record model.

This module provides the low-level pieces every other layer builds on:

1. Configuration handling: finding and parsing ``config.ini``.
2. The :class:`Transaction` record and the declarative field table
   (:data:`FIELDS`) that names each attribute in memory, in the local cache
   document and in the backend table.
3. Value coercion and the cache codec derived from that table.

Business rules belong in :mod:`storefront_finance.core_logic`.
"""


from __future__ import annotations

import configparser
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from . import DEFAULT_LOG_LEVEL
from .constants import (
    DEFAULT_REMOTE_TIMEOUT_SECONDS,
    DEFAULT_UTC_OFFSET_HOURS,
    REMOTE_TABLE,
    CodedEnum,
    LinkedEntityType,
    PaymentMethod,
    TransactionStatus,
    TransactionType,
)
from .dates import DateNormalizer


CONFIG_FILE_NAME = "config.ini"
DEFAULT_CACHE_FILE = "transactions_cache.json"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    cache_file: Path
    schema_version: str
    utc_offset_hours: float = DEFAULT_UTC_OFFSET_HOURS
    remote_url: Optional[str] = None
    remote_key: Optional[str] = None
    remote_table: str = REMOTE_TABLE
    remote_timeout: float = DEFAULT_REMOTE_TIMEOUT_SECONDS
    use_rpc_insert: bool = True
    log_file: Optional[Path] = None
    log_level: str = DEFAULT_LOG_LEVEL

    @property
    def remote_configured(self) -> bool:
        return bool(self.remote_url and self.remote_key)


@dataclass(frozen=True)
class Transaction:
    """In-memory view of one income or expense record."""

    id: str
    description: str
    amount: Decimal
    type: TransactionType
    category: str
    status: TransactionStatus
    transaction_date: str
    due_date: Optional[str] = None
    payment_date: Optional[str] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None
    linked_entity_id: Optional[str] = None
    linked_entity_type: Optional[LinkedEntityType] = None
    receipt_url: Optional[str] = None
    related_sale_link: Optional[str] = None


@dataclass(frozen=True)
class FieldSpec:
    """One row of the field table: the same value under its three names."""

    attr: str
    cache_key: str
    column: str
    kind: str = "text"
    enum: Optional[Type[CodedEnum]] = None
    required: bool = False

    @property
    def enum_type(self) -> Type[CodedEnum]:
        if self.enum is None:
            raise TypeError(f"Field '{self.attr}' has no enum type")
        return self.enum


FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec("id", "id", "id", required=True),
    FieldSpec("description", "description", "descricao", required=True),
    FieldSpec("amount", "amount", "valor", kind="amount", required=True),
    FieldSpec("type", "type", "tipo", kind="enum", enum=TransactionType, required=True),
    FieldSpec("category", "category", "categoria", required=True),
    FieldSpec("status", "status", "status", kind="enum", enum=TransactionStatus, required=True),
    FieldSpec("transaction_date", "transactionDate", "data", kind="date", required=True),
    FieldSpec("due_date", "dueDate", "datavencimento", kind="date"),
    FieldSpec("payment_date", "paymentDate", "datapagamento", kind="date"),
    FieldSpec("payment_method", "paymentMethod", "formapagamento", kind="enum", enum=PaymentMethod),
    FieldSpec("notes", "notes", "observacoes"),
    FieldSpec("linked_entity_id", "linkedEntityId", "vinculoid"),
    FieldSpec("linked_entity_type", "linkedEntityType", "vinculotipo", kind="enum", enum=LinkedEntityType),
    FieldSpec("receipt_url", "receiptUrl", "comprovante"),
    FieldSpec("related_sale_link", "relatedSaleLink", "linkvenda"),
)

FIELDS_BY_ATTR: Dict[str, FieldSpec] = {spec.attr: spec for spec in FIELDS}
FIELDS_BY_COLUMN: Dict[str, FieldSpec] = {spec.column: spec for spec in FIELDS}


@dataclass(frozen=True)
class TransactionFilters:
    """Filter criteria shared by the remote query and the local predicate.

    Date bounds are inclusive business calendar dates; ``search`` is a
    case-insensitive substring matched against description, id and notes.
    """

    type: Optional[TransactionType] = None
    status: Optional[TransactionStatus] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    category: Optional[str] = None
    search: Optional[str] = None
    linked_entity_id: Optional[str] = None
    linked_entity_type: Optional[LinkedEntityType] = None


# Characters that would break out of a PostgREST ``or`` expression.
SEARCH_RESERVED = str.maketrans({",": " ", "(": " ", ")": " "})


def normalize_search(term: Optional[str]) -> Optional[str]:
    """Blank out reserved characters so both paths search for the same text."""

    if term is None:
        return None
    return term.translate(SEARCH_RESERVED).strip() or None


def matches_filters(transaction: Transaction, filters: TransactionFilters) -> bool:
    """In-process twin of the remote query built by ``RemoteStore``."""

    if filters.type is not None and transaction.type != filters.type:
        return False
    if filters.status is not None and transaction.status != filters.status:
        return False
    if filters.start_date and transaction.transaction_date < filters.start_date:
        return False
    if filters.end_date and transaction.transaction_date > filters.end_date:
        return False
    if filters.category and transaction.category != filters.category:
        return False
    if filters.linked_entity_id and transaction.linked_entity_id != filters.linked_entity_id:
        return False
    if filters.linked_entity_type is not None and transaction.linked_entity_type != filters.linked_entity_type:
        return False
    if filters.search:
        term = filters.search.lower()
        haystacks = (transaction.description, transaction.id, transaction.notes or "")
        if not any(term in text.lower() for text in haystacks):
            return False
    return True


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the store behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``; the first match is authoritative.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion
            and resolution.
    """

    config_path = Path(config_path).expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _anchor(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System] SchemaVersion`` is mandatory; everything else falls back to a
    default. A relative ``CacheFile`` is anchored at ``base_path`` (or the
    current working directory). The ``SUPABASE_URL`` and ``SUPABASE_KEY``
    environment variables take precedence over ``[Remote] Url``/``Key``.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric or boolean option cannot be parsed.
    """

    try:
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()
    cache_file = _anchor(parser.get("System", "CacheFile", fallback=DEFAULT_CACHE_FILE), base_path)
    log_file_raw = parser.get("Logging", "File", fallback="").strip()

    remote_url = os.environ.get("SUPABASE_URL") or parser.get("Remote", "Url", fallback="") or None
    remote_key = os.environ.get("SUPABASE_KEY") or parser.get("Remote", "Key", fallback="") or None

    return ConfigSettings(
        cache_file=cache_file,
        schema_version=schema_version,
        utc_offset_hours=parser.getfloat("Business", "UtcOffsetHours", fallback=DEFAULT_UTC_OFFSET_HOURS),
        remote_url=remote_url,
        remote_key=remote_key,
        remote_table=parser.get("Remote", "Table", fallback=REMOTE_TABLE),
        remote_timeout=parser.getfloat("Remote", "TimeoutSeconds", fallback=DEFAULT_REMOTE_TIMEOUT_SECONDS),
        use_rpc_insert=parser.getboolean("Remote", "UseRpcInsert", fallback=True),
        log_file=_anchor(log_file_raw, base_path) if log_file_raw else None,
        log_level=parser.get("Logging", "Level", fallback=DEFAULT_LOG_LEVEL).strip().upper(),
    )


def load_settings(config_path: Optional[Path] = None) -> ConfigSettings:
    """Find, read and parse ``config.ini`` in one call."""

    located = Path(find_config_file(config_path)).expanduser().resolve()
    parser = read_config(located)
    return parse_settings(parser, base_path=located.parent)


def coerce_value(spec: FieldSpec, value: Any) -> Any:
    """Normalize ``value`` into the Python type of the field ``spec``.

    ``None`` and blank strings collapse to ``None`` for every field; callers
    decide whether that is acceptable for required fields.

    Raises:
        ValueError: If the value cannot represent the field.
    """

    if value is None or (isinstance(value, str) and not value.strip()):
        return None

    if spec.kind == "amount":
        if isinstance(value, bool):
            raise ValueError(f"Invalid amount: {value!r}")
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Invalid amount: {value!r}") from exc
        if not amount.is_finite():
            raise ValueError(f"Invalid amount: {value!r}")
        return amount
    if spec.kind == "enum":
        enum_type = spec.enum_type
        if isinstance(value, enum_type):
            return value
        try:
            return enum_type(str(value))
        except ValueError as exc:
            raise ValueError(f"Invalid {spec.attr}: {value!r}") from exc
    if spec.kind == "date":
        return DateNormalizer.coerce_date(value)
    return str(value)


def serialize_transaction(record: Transaction) -> Dict[str, Any]:
    """Convert a transaction into its cache document entry.

    Keys follow :data:`FIELDS` order, optional fields left unset are
    omitted, enums are stored by value and amounts as decimal strings.
    """

    payload: Dict[str, Any] = {}
    for spec in FIELDS:
        value = getattr(record, spec.attr)
        if value is None:
            continue
        if spec.kind == "enum":
            value = value.value
        elif spec.kind == "amount":
            value = str(value)
        payload[spec.cache_key] = value
    return payload


def deserialize_transaction(raw: Mapping[str, Any]) -> Transaction:
    """Convert a cache document entry back into a :class:`Transaction`.

    Raises:
        ValueError: If the entry is not a mapping, misses a required field or
            carries an invalid value.
    """

    if not isinstance(raw, Mapping):
        raise ValueError(f"Cache entry is not an object: {raw!r}")

    values: Dict[str, Any] = {}
    for spec in FIELDS:
        value = coerce_value(spec, raw.get(spec.cache_key))
        if value is None and spec.required:
            raise ValueError(f"Cache entry missing '{spec.cache_key}': {raw!r}")
        values[spec.attr] = value
    return Transaction(**values)


__all__ = [
    "CONFIG_FILE_NAME",
    "DEFAULT_CACHE_FILE",
    "ConfigSettings",
    "Transaction",
    "TransactionFilters",
    "matches_filters",
    "FieldSpec",
    "FIELDS",
    "FIELDS_BY_ATTR",
    "FIELDS_BY_COLUMN",
    "find_config_file",
    "read_config",
    "parse_settings",
    "load_settings",
    "coerce_value",
    "serialize_transaction",
    "deserialize_transaction",
]
