"""Attempt-with-fallback combinator shared by restoration and video orchestration.

The retry/fallback policy lives here once: run the primary attempt, and only
when its error is classified as fallback-eligible (and a fallback exists),
run the fallback exactly once. Both failures are aggregated, never dropped.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, TypeVar

import structlog

from restora.services.exceptions import FallbackExhaustedError, ServiceError, describe_error

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Attempt = Callable[[], Awaitable[T]]


def is_fallback_eligible(error: BaseException) -> bool:
    """Default classifier: only errors flagged fallback-eligible hop providers.

    Transport failures and failed video jobs are eligible; refusals,
    validation errors and timeouts are not.
    """
    return isinstance(error, ServiceError) and error.fallback_eligible


@dataclass(slots=True)
class FallbackOutcome(Generic[T]):
    value: T
    provider: str
    used_fallback: bool
    primary_error: BaseException | None = None
    errors: list[BaseException] = field(default_factory=list)


async def attempt_with_fallback(
    primary: Attempt[T],
    fallback: Attempt[T] | None,
    *,
    primary_name: str,
    fallback_name: str | None = None,
    operation: str = "operation",
    classify: Callable[[BaseException], bool] = is_fallback_eligible,
    on_error: Callable[[str, BaseException], None] | None = None,
) -> FallbackOutcome[T]:
    """Run primary, falling back once on a classified-eligible failure.

    Args:
        primary: Zero-argument coroutine factory for the primary attempt
        fallback: Coroutine factory for the fallback attempt, or None
        primary_name: Provider name used for logging and the outcome
        fallback_name: Provider name of the fallback
        operation: Operation label used in aggregated error messages
        classify: Decides whether a primary error may trigger the fallback
        on_error: Callback invoked with (provider, error) for every failure

    Returns:
        FallbackOutcome with the value and which provider produced it

    Raises:
        The primary error when it is not eligible or no fallback exists
        FallbackExhaustedError: When both attempts fail
    """
    try:
        value = await primary()
        return FallbackOutcome(value=value, provider=primary_name, used_fallback=False)
    except Exception as primary_error:
        if on_error is not None:
            on_error(primary_name, primary_error)
        if fallback is None or not classify(primary_error):
            logger.warning(
                "fallback.not_attempted",
                operation=operation,
                provider=primary_name,
                error_type=type(primary_error).__name__,
                error_message=describe_error(primary_error),
                fallback_configured=fallback is not None,
            )
            raise

        logger.warning(
            "fallback.switching",
            operation=operation,
            from_provider=primary_name,
            to_provider=fallback_name,
            error_message=describe_error(primary_error),
        )
        try:
            value = await fallback()
        except Exception as fallback_error:
            if on_error is not None:
                on_error(fallback_name or "fallback", fallback_error)
            logger.error(
                "fallback.exhausted",
                operation=operation,
                primary_error=describe_error(primary_error),
                fallback_error=describe_error(fallback_error),
            )
            raise FallbackExhaustedError(
                primary_error, fallback_error, operation
            ) from fallback_error

        return FallbackOutcome(
            value=value,
            provider=fallback_name or "fallback",
            used_fallback=True,
            primary_error=primary_error,
            errors=[primary_error],
        )
