"""
Exceptions raised by the transaction store.

Only :class:`ValidationError` and :class:`NotFoundError` ever reach callers
of :class:`storefront_finance.core_logic.TransactionStore`; the other two are
recovered inside the store.
"""


class TransactionStoreError(Exception):
    """Base exception for the storefront finance package."""


class ValidationError(TransactionStoreError, ValueError):
    """Raised when a required field is missing or a value is malformed."""


class NotFoundError(TransactionStoreError, LookupError):
    """Raised when a transaction is absent from the path that served the call."""


class RemoteUnavailable(TransactionStoreError):
    """Raised by the remote store for any backend failure, timeouts included."""


class CacheCorruption(TransactionStoreError):
    """Raised when the cache snapshot cannot be decoded."""
