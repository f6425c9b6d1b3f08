"""Error types shared across diffscope.

Provider failures are a small closed set of classes so callers can decide
between fail-open and fail-fast by type instead of by message text.
"""


class DiffscopeError(Exception):
    """Base class for all diffscope errors."""


# ---------------------------------------------------------------------------
# Provider (LLM / embedding / platform) errors
# ---------------------------------------------------------------------------
class ProviderError(DiffscopeError):
    """A call to an external provider failed."""


class QuotaExceeded(ProviderError):
    """The provider signalled a quota or rate limit (HTTP 429)."""


class TransportError(ProviderError):
    """Any other non-success response or transport failure."""


class MissingCredential(ProviderError):
    """A required API key or token is not configured."""


# ---------------------------------------------------------------------------
# Run-level errors
# ---------------------------------------------------------------------------
class MissingReviewContext(DiffscopeError):
    """No identifiable pull request to operate on."""


class FixConflictError(DiffscopeError):
    """Two fix plans for the same file overlap when they reach the applier."""
