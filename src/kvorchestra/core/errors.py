"""
Custom exceptions for the kvorchestra request layer.
"""

from __future__ import annotations

from typing import Optional


TRANSACTION_EXPIRED_MESSAGE = "This transaction has already expired."


class KVOrchestraError(Exception):
    """Base exception for all kvorchestra errors."""
    pass


class InvalidArgumentError(KVOrchestraError, ValueError):
    """Raised when a call is made with invalid or conflicting arguments."""
    pass


class QueryEncodingError(InvalidArgumentError):
    """Raised when a query cannot be translated into its wire shape."""
    pass


class TransactionExpiredError(KVOrchestraError):
    """Raised when a call is made through a transaction that has expired."""

    def __init__(self, message: str = TRANSACTION_EXPIRED_MESSAGE):
        super().__init__(message)


class RpcError(KVOrchestraError):
    """Raised when the remote service call fails."""

    def __init__(self, method: str, status_code: int, message: str, details: Optional[dict] = None):
        self.method = method
        self.status_code = status_code
        self.details = details or {}
        super().__init__(f"RPC '{method}' failed with {status_code}: {message}")


class EntityDecodeError(KVOrchestraError):
    """Raised when a wire record cannot be decoded into an entity."""
    pass
