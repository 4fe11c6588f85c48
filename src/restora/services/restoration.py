"""Restoration orchestrator: single-pass and double-pass restoration with provider fallback.

Flow:
- Input stage: normalize the upload (resolution and size bound)
- Single-pass: prompt-driven provider once; on a transport failure the
  fallback provider once
- Double-pass: structural (blind) provider for pass 1, falling back to the
  prompt-driven provider with the full instruction; pass 2 refines pass 1's
  output with the prompt-driven provider. A failed pass 2 returns pass 1.
- Output stage: re-encode to the canonical delivery format, always

Refusals are surfaced immediately and never trigger a fallback.
"""

import asyncio
from typing import Callable

import structlog

from restora.models.image import ImageAsset
from restora.models.restoration import RestorationJob, RestorationStrategy
from restora.services.exceptions import describe_error
from restora.services.fallback import attempt_with_fallback
from restora.services.providers.base import EditProvider

logger = structlog.get_logger(__name__)

ImageTransform = Callable[[ImageAsset], ImageAsset]

STRUCTURAL_INSTRUCTION = ""


def _identity(image: ImageAsset) -> ImageAsset:
    return image


def _available(provider: EditProvider | None) -> EditProvider | None:
    if provider is not None and provider.is_available():
        return provider
    return None


class RestorationOrchestrator:
    """Decides the restoration strategy and drives the edit providers.

    Args:
        primary: Prompt-driven edit provider
        structural: Blind structural restorer used for double-pass pass 1
        fallback: Prompt-driven provider used when the primary fails in transport
        normalize: Input-stage transform (size/resolution bound)
        finalize: Output-stage transform (delivery format)
    """

    def __init__(
        self,
        primary: EditProvider,
        structural: EditProvider | None = None,
        fallback: EditProvider | None = None,
        normalize: ImageTransform | None = None,
        finalize: ImageTransform | None = None,
    ):
        self.primary = primary
        self.structural = structural
        self.fallback = fallback
        self._normalize = normalize or _identity
        self._finalize = finalize or _identity

    @property
    def fallback_available(self) -> bool:
        return _available(self.fallback) is not None

    async def restore(
        self,
        image: ImageAsset,
        instruction: str,
        *,
        use_double_pass: bool = False,
        reference_image: ImageAsset | None = None,
        normalize_input: bool = True,
    ) -> RestorationJob:
        """Restore an image.

        Args:
            image: Source image
            instruction: Full restoration instruction
            use_double_pass: Run the structural pass before the prompt-driven pass
            reference_image: Optional reference sent to prompt-driven providers
            normalize_input: Apply the input-stage normalizer (off for already restored images)

        Returns:
            RestorationJob with output set and every provider attempt recorded

        Raises:
            RefusalError: A provider refused (never retried)
            ValidationError: Request rejected by the provider
            TransportError: Primary failed and no fallback is available
            FallbackExhaustedError: Primary and fallback both failed
        """
        strategy = (
            RestorationStrategy.DOUBLE_PASS if use_double_pass else RestorationStrategy.SINGLE_PASS
        )
        normalized = image
        if normalize_input:
            normalized = await asyncio.to_thread(self._normalize, image)
        job = RestorationJob(
            image=normalized,
            instruction=instruction,
            strategy=strategy,
            reference_image=reference_image,
        )

        logger.info(
            "restoration.started",
            strategy=strategy.value,
            fingerprint=normalized.fingerprint[:12],
            size_bytes=normalized.size,
            fallback_available=self.fallback_available,
        )

        try:
            if strategy == RestorationStrategy.DOUBLE_PASS:
                output = await self._double_pass(job)
            else:
                output = await self._single_pass(job)
        except Exception as e:
            job.error = describe_error(e)
            logger.error(
                "restoration.failed",
                strategy=strategy.value,
                error_type=type(e).__name__,
                error_message=job.error,
                attempts=len(job.attempts),
            )
            raise

        job.output = await asyncio.to_thread(self._finalize, output)
        logger.info(
            "restoration.completed",
            strategy=strategy.value,
            providers=job.providers_used,
            partial=job.partial,
            output_bytes=job.output.size,
        )
        return job

    async def _run(
        self,
        job: RestorationJob,
        stage: str,
        primary: tuple[EditProvider, str],
        fallback: tuple[EditProvider, str] | None,
    ) -> ImageAsset:
        """Run one stage through attempt_with_fallback, recording attempts."""
        primary_provider, primary_instruction = primary

        async def run_primary() -> ImageAsset:
            return await primary_provider.edit(
                job.image, primary_instruction, self._reference_for(primary_instruction, job)
            )

        run_fallback = None
        fallback_name = None
        if fallback is not None:
            fallback_provider, fallback_instruction = fallback
            fallback_name = fallback_provider.name

            async def run_fallback() -> ImageAsset:
                return await fallback_provider.edit(
                    job.image, fallback_instruction, self._reference_for(fallback_instruction, job)
                )

        outcome = await attempt_with_fallback(
            run_primary,
            run_fallback,
            primary_name=primary_provider.name,
            fallback_name=fallback_name,
            operation="restoration",
            on_error=lambda provider, error: job.record(provider, stage, error),
        )
        job.record(outcome.provider, stage)
        return outcome.value

    @staticmethod
    def _reference_for(instruction: str, job: RestorationJob) -> ImageAsset | None:
        # Blind structural passes take no instruction and no reference.
        return job.reference_image if instruction else None

    async def _single_pass(self, job: RestorationJob) -> ImageAsset:
        fallback = _available(self.fallback)
        return await self._run(
            job,
            "single",
            (self.primary, job.instruction),
            (fallback, job.instruction) if fallback else None,
        )

    async def _double_pass(self, job: RestorationJob) -> ImageAsset:
        structural = _available(self.structural)
        if structural is not None:
            pass1 = await self._run(
                job,
                "pass1",
                (structural, STRUCTURAL_INSTRUCTION),
                (self.primary, job.instruction),
            )
        else:
            logger.warning("restoration.structural_unavailable")
            fallback = _available(self.fallback)
            pass1 = await self._run(
                job,
                "pass1",
                (self.primary, job.instruction),
                (fallback, job.instruction) if fallback else None,
            )

        try:
            pass2 = await self.primary.edit(pass1, job.instruction, job.reference_image)
        except Exception as e:
            job.record(self.primary.name, "pass2", e)
            job.partial = True
            logger.warning(
                "restoration.pass2.failed",
                provider=self.primary.name,
                error_type=type(e).__name__,
                error_message=describe_error(e),
            )
            return pass1

        job.record(self.primary.name, "pass2")
        return pass2
