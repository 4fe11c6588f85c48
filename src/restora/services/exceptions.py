"""Service error hierarchy for provider calls and orchestration.

This module defines the exception taxonomy shared by every component:
- ServiceError: Base for all service errors
- ValidationError: Malformed/incomplete request or provider response (never retried)
- RefusalError: Provider declined to produce output (never subject to fallback)
- TransportError: Network/availability failure (eligible for one fallback hop)
- JobTimeoutError: Polling exceeded its hard bound (terminal for that job)
- RateLimitError: Caller quota exceeded (carries structured quota metadata)

Provider adapters translate SDK exceptions into these types at their boundary;
no SDK exception type crosses a component boundary.
"""

from datetime import datetime
from typing import Any


class ServiceError(Exception):
    """Base exception for all service errors."""

    kind: str = "service"
    fallback_eligible: bool = False


class ValidationError(ServiceError):
    """Malformed or incomplete request or provider response.

    Examples:
    - Missing request fields
    - Provider response missing a required schema field
    - Unsupported eye color or language
    """

    kind = "validation"


class AnalysisError(ValidationError):
    """Analysis provider returned a malformed or refused response."""

    pass


class IncompleteAnalysisError(AnalysisError):
    """Structured analysis response is missing required fields or is unparseable.

    The only analysis failure retried by the pipeline controller.
    """

    pass


class RefusalError(ServiceError):
    """Provider explicitly declined to produce output (content policy)."""

    kind = "refusal"


class EditRefused(RefusalError):
    """Edit provider returned no image part (content-safety refusal)."""

    pass


class TransportError(ServiceError):
    """Network, availability or provider-side rate limit failure.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    - Provider credentials missing or rejected
    """

    kind = "transport"
    fallback_eligible = True


class EditTransportError(TransportError):
    """Edit provider could not be reached or failed to respond."""

    pass


class JobTimeoutError(ServiceError):
    """Polling exceeded its hard wall-clock or attempt bound."""

    kind = "timeout"


class VideoGenerationError(ServiceError):
    """A provider video job reached a failed or canceled terminal state."""

    kind = "video_failed"
    fallback_eligible = True

    def __init__(self, message: str, provider: str | None = None, status: str | None = None):
        super().__init__(message)
        self.provider = provider
        self.status = status


class FallbackExhaustedError(ServiceError):
    """Both the primary and the fallback attempt failed.

    The message concatenates both failure descriptions; the original
    errors are kept on the instance.
    """

    kind = "fallback_exhausted"

    def __init__(self, primary: Exception, fallback: Exception, operation: str = "operation"):
        message = (
            f"Primary {operation} failed: {primary}. Fallback also failed: {fallback}"
        )
        super().__init__(message)
        self.primary = primary
        self.fallback = fallback
        self.operation = operation


class RateLimitError(ServiceError):
    """Caller-level quota exceeded."""

    kind = "rate_limit"

    def __init__(self, limit: int, remaining: int, reset_time: datetime, country: str):
        super().__init__(
            f"Daily limit of {limit} restorations reached. Resets at {reset_time.isoformat()}"
        )
        self.limit = limit
        self.remaining = remaining
        self.reset_time = reset_time
        self.country = country

    def to_dict(self) -> dict[str, Any]:
        """Structured quota metadata for API responses."""
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "resetTime": self.reset_time.isoformat(),
            "country": self.country,
        }


class SessionBusyError(ServiceError):
    """A request was rejected because another one is in flight for the session."""

    kind = "busy"


def describe_error(error: BaseException) -> str:
    """Return a human-readable description, falling back to the type name."""
    return str(error) or type(error).__name__
