"""Enumerations shared across the storefront finance modules.

Centralises domain constants so that the local cache, the remote store, the
transaction store and the CLI rely on a single source of truth for status
codes, storage identifiers and backend naming.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating config.ini.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Key under which the transaction array lives inside the cache document.
STORAGE_KEY = "storefront-finance-transactions"

# Backend table and the timezone-aware insertion procedure.
REMOTE_TABLE = "financial_transactions"
REMOTE_INSERT_RPC = "insert_financial_transaction_brasilia"

# Prefix and minimum width for locally synthesized identifiers (TRX001...).
LOCAL_ID_PREFIX = "TRX"
LOCAL_ID_WIDTH = 3

# Brasília time; no daylight saving since 2019.
DEFAULT_UTC_OFFSET_HOURS = -3

DEFAULT_REMOTE_TIMEOUT_SECONDS = 10.0
DEFAULT_PAGE_SIZE = 10
# PostgREST answers at most ``max-rows`` (1000 by default on Supabase) per request.
REMOTE_FETCH_SIZE = 1000
DUE_SOON_DAYS = 7


class CodedEnum(str, Enum):
    """String enum that also knows the code used by the remote backend."""

    def __new__(cls, value: str, remote_code: str):
        member = str.__new__(cls, value)
        member._value_ = value
        member.remote_code = remote_code
        return member

    @classmethod
    def from_remote(cls, code: str):
        for member in cls:
            if member.remote_code == code:
                return member
        raise ValueError(f"Unknown {cls.__name__} code: {code!r}")


class TransactionType(CodedEnum):
    """Direction of a transaction; amounts are always positive."""

    INCOME = ("income", "receita")
    EXPENSE = ("expense", "despesa")


class TransactionStatus(CodedEnum):
    """Lifecycle status. Only ``CONFIRMED`` contributes to balances."""

    CONFIRMED = ("confirmed", "confirmada")
    PENDING = ("pending", "pendente")
    CANCELED = ("canceled", "cancelada")


class PaymentMethod(CodedEnum):
    """Supported payment mechanisms."""

    CASH = ("cash", "dinheiro")
    CREDIT = ("credit", "credito")
    DEBIT = ("debit", "debito")
    PIX = ("pix", "pix")
    BANK_SLIP = ("bankSlip", "boleto")
    TRANSFER = ("transfer", "transferencia")


class LinkedEntityType(CodedEnum):
    """Kind of record a transaction back-references."""

    SALE = ("sale", "venda")
    PURCHASE = ("purchase", "compra")
    OTHER = ("other", "outro")


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "STORAGE_KEY",
    "REMOTE_TABLE",
    "REMOTE_INSERT_RPC",
    "LOCAL_ID_PREFIX",
    "LOCAL_ID_WIDTH",
    "DEFAULT_UTC_OFFSET_HOURS",
    "DEFAULT_REMOTE_TIMEOUT_SECONDS",
    "DEFAULT_PAGE_SIZE",
    "REMOTE_FETCH_SIZE",
    "DUE_SOON_DAYS",
    "CodedEnum",
    "TransactionType",
    "TransactionStatus",
    "PaymentMethod",
    "LinkedEntityType",
]
