"""RestorationJob value - one restoration request and its provider attempts."""

from dataclasses import dataclass, field
from enum import Enum

from restora.models.image import ImageAsset


class RestorationStrategy(str, Enum):
    SINGLE_PASS = "single_pass"
    DOUBLE_PASS = "double_pass"


@dataclass(slots=True)
class ProviderAttempt:
    """Outcome of a single provider invocation."""

    provider: str
    stage: str
    succeeded: bool
    error: str | None = None
    error_kind: str | None = None


@dataclass(slots=True)
class RestorationJob:
    """Transient record of one restoration request.

    Discarded once the result is returned to the caller; never persisted.
    """

    image: ImageAsset
    instruction: str
    strategy: RestorationStrategy
    reference_image: ImageAsset | None = None
    attempts: list[ProviderAttempt] = field(default_factory=list)
    output: ImageAsset | None = None
    error: str | None = None
    partial: bool = False

    def record(
        self,
        provider: str,
        stage: str,
        error: Exception | None = None,
    ) -> None:
        self.attempts.append(
            ProviderAttempt(
                provider=provider,
                stage=stage,
                succeeded=error is None,
                error=str(error) if error is not None else None,
                error_kind=getattr(error, "kind", type(error).__name__) if error else None,
            )
        )

    @property
    def providers_used(self) -> list[str]:
        return [a.provider for a in self.attempts if a.succeeded]
