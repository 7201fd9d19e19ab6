"""
Failure taxonomy for the reconciliation core.

ValidationError and StateError are raised locally, before any write, and are
never retried.  NetworkError is transient: the caller may retry, but only
after re-reading the aggregate from the gateway.
"""
from typing import Iterable, Optional

from models.result import Issue


class ReconciliationError(Exception):
    """Base class for every failure surfaced by the engines and gateways."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ReconciliationError):
    """Bad input: over-receipt, non-positive amount, unknown line, empty batch."""

    def __init__(self, message: str, issues: Optional[Iterable[Issue]] = None) -> None:
        self.issues = list(issues or [])
        if self.issues and message.endswith(":"):
            message = f"{message} " + "; ".join(i.message for i in self.issues)
        super().__init__(message)


class StateError(ReconciliationError):
    """The operation is not permitted in the aggregate's current status."""


class NotFoundError(ReconciliationError):
    """Unknown order, invoice, line item, or payment id."""


class NetworkError(ReconciliationError):
    """The gateway was unreachable, timed out, or failed without a verdict."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
