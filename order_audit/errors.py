from __future__ import annotations


class OrderAuditError(RuntimeError):
    """Base class for errors raised by the order audit pipelines."""


class ConfigError(OrderAuditError):
    """Raised when configuration cannot be loaded."""


class AuthenticationError(OrderAuditError):
    """Raised when the console session cannot be authenticated."""


class StoreError(OrderAuditError):
    """Raised when a day partition cannot be read or written."""


class ExtractionError(OrderAuditError):
    """Raised inside a single order/page extraction; always downgraded by callers."""


class ReconciliationError(OrderAuditError):
    """Raised when a single month cannot be reconciled."""
