"""
Error Taxonomy

Every provider implementation translates its library-specific failures into
one of the ProviderError kinds below, so the rate-limited client and the
runner can decide between retrying, skipping the item and halting the run
without knowing which provider raised.

    ProviderTransientError       retried inside RateLimitedClient
    ProviderQuotaExceededError   never retried, halts the whole run
    ProviderNotFoundError        expected, the input resolves to NotFound
    ProviderMalformedError       the item is marked Failed, run continues
    PersistenceConflictError     the item is marked PersistError

Author: Khalil_Bannouri
Version: 1.0.0
"""

from enum import Enum
from typing import Optional


class ProviderErrorKind(str, Enum):
    """Classification of a provider failure."""
    TRANSIENT = "transient"
    QUOTA_EXCEEDED = "quota_exceeded"
    NOT_FOUND = "not_found"
    MALFORMED = "malformed"


class ReconciliationError(Exception):
    """Base class for every error raised by the reconciliation pipeline."""


class ProviderError(ReconciliationError):
    """
    A failed call to an external provider.

    Attributes:
        kind: Failure classification driving retry/abort decisions
        provider: Name of the provider that failed (e.g. "google")
        message: Human readable description
    """

    kind: ProviderErrorKind = ProviderErrorKind.MALFORMED

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider

    def __str__(self) -> str:
        if self.provider:
            return f"[{self.provider}] {self.message}"
        return self.message


class ProviderTransientError(ProviderError):
    """Timeouts, connection resets, 5xx responses."""
    kind = ProviderErrorKind.TRANSIENT


class ProviderQuotaExceededError(ProviderError):
    """The provider refused the request because the quota is spent."""
    kind = ProviderErrorKind.QUOTA_EXCEEDED


class ProviderNotFoundError(ProviderError):
    """The provider has no record for the requested query or id."""
    kind = ProviderErrorKind.NOT_FOUND


class ProviderMalformedError(ProviderError):
    """The provider answered with something we cannot interpret."""
    kind = ProviderErrorKind.MALFORMED


class PersistenceError(ReconciliationError):
    """A database write failed."""


class PersistenceConflictError(PersistenceError):
    """A write violated a uniqueness constraint (e.g. a concurrent insert)."""
