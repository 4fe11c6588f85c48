"""Pipeline controller: one restore-and-animate session.

Sequences analysis -> (perspective correction) -> restoration ->
(translation) -> ready for video -> video generation, owning the session
state machine. Every unrecovered failure returns the machine to idle and is
re-raised for the caller to surface; restored artifacts already produced are
kept so they can still be displayed.

The eye-color flow runs independently of the main state once a restored
image exists, one request at a time per session.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Callable

import structlog

from restora.models.analysis import AnalysisResult, should_use_double_pass
from restora.models.image import ImageAsset
from restora.models.state import (
    RESTORED_STATES,
    InvalidStateTransition,
    PipelineState,
    PipelineStateMachine,
)
from restora.services import prompts
from restora.services.cache import ResultCache
from restora.services.exceptions import (
    IncompleteAnalysisError,
    RateLimitError,
    SessionBusyError,
    ValidationError,
    describe_error,
)
from restora.services.providers.base import AnalysisProvider, TranslationProvider
from restora.services.rate_limiter import RateLimiter
from restora.services.restoration import RestorationOrchestrator
from restora.services.scheduler import AsyncioScheduler, Scheduler
from restora.services.video import VideoJobOrchestrator, VideoRequest

logger = structlog.get_logger(__name__)

SOURCE_LANGUAGE = "en"
DEFAULT_HINT = (
    "The person slowly blinks and breathes, a gentle smile forms, soft ambient sound, "
    "static camera."
)


async def analyze_with_retry(
    provider: AnalysisProvider,
    image: ImageAsset,
    language: str,
    hint: str,
    *,
    scheduler: Scheduler,
    max_attempts: int = 3,
    backoff_seconds: float = 1.0,
) -> AnalysisResult:
    """Analyze with linear backoff, retrying only structurally incomplete responses.

    A definitive provider error (refusal, transport, rejected request) is
    raised on the first attempt.

    Raises:
        IncompleteAnalysisError: Still incomplete after max_attempts
        ServiceError: Any other provider failure
    """
    max_attempts = max(1, max_attempts)
    for attempt in range(1, max_attempts + 1):
        try:
            analysis = await provider.analyze(image, language, hint)
        except IncompleteAnalysisError as e:
            if attempt == max_attempts:
                raise
            delay = backoff_seconds * attempt
            logger.warning(
                "pipeline.analysis.incomplete",
                attempt=attempt,
                max_attempts=max_attempts,
                retry_in=delay,
                error=describe_error(e),
            )
            await scheduler.sleep(delay)
            continue

        logger.info(
            "pipeline.analysis.completed",
            attempt=attempt,
            person_count=analysis.person_count,
            needs_correction=analysis.needs_perspective_correction,
            double_pass_reasons=analysis.double_pass_reasons(),
        )
        return analysis

    raise AssertionError("unreachable")


class PipelineController:
    """Drives one session through the restoration pipeline.

    Args:
        analysis: Analysis provider
        restoration: Restoration orchestrator
        video: Video job orchestrator
        translator: Translation provider for the displayed video prompt
        rate_limiter: Quota consulted before the main restoration
        cache: Per-session result cache for eye-color variants
        scheduler: Timer abstraction used for analysis backoff
        analysis_max_attempts: Attempts while the analysis is incomplete
        analysis_backoff_seconds: Linear backoff unit between attempts
    """

    def __init__(
        self,
        analysis: AnalysisProvider,
        restoration: RestorationOrchestrator,
        video: VideoJobOrchestrator,
        translator: TranslationProvider | None = None,
        rate_limiter: RateLimiter | None = None,
        cache: ResultCache | None = None,
        scheduler: Scheduler | None = None,
        analysis_max_attempts: int = 3,
        analysis_backoff_seconds: float = 1.0,
    ):
        self.analysis_provider = analysis
        self.restoration = restoration
        self.video = video
        self.translator = translator
        self.rate_limiter = rate_limiter
        self.cache = cache or ResultCache()
        self.scheduler = scheduler or AsyncioScheduler()
        self.analysis_max_attempts = max(1, analysis_max_attempts)
        self.analysis_backoff_seconds = analysis_backoff_seconds

        self.machine = PipelineStateMachine()
        self.generation = 0
        self._eye_color_in_flight = False
        self._video_task: asyncio.Task | None = None
        self._clear_results()

    def _clear_results(self) -> None:
        self.source_image: ImageAsset | None = None
        self.analysis: AnalysisResult | None = None
        self.corrected_image: ImageAsset | None = None
        self.restored_image: ImageAsset | None = None
        self.display_image: ImageAsset | None = None
        self.eye_color: str | None = None
        self.language = SOURCE_LANGUAGE
        self.display_video_prompt: str | None = None
        self.video_request: VideoRequest | None = None
        self.error: str | None = None
        self.rate_limit: RateLimitError | None = None

    @property
    def state(self) -> PipelineState:
        return self.machine.state

    @property
    def eye_color_in_flight(self) -> bool:
        return self._eye_color_in_flight

    def _fail(self, error: Exception) -> None:
        if isinstance(error, RateLimitError):
            self.rate_limit = error
            self.error = None
        else:
            self.error = describe_error(error)
        failed_state = self.machine.state
        if failed_state != PipelineState.IDLE:
            self.machine.fail()
        logger.warning(
            "pipeline.failed",
            state=failed_state.value,
            error_type=type(error).__name__,
            error_message=describe_error(error),
        )

    async def process(
        self,
        image: ImageAsset,
        *,
        language: str = SOURCE_LANGUAGE,
        hint: str = DEFAULT_HINT,
        enhanced: bool = False,
        eye_color: str | None = None,
        identity: str | None = None,
        client_ip: str = "127.0.0.1",
    ) -> AnalysisResult:
        """Run analysis through restoration (and translation) for a new photo.

        Args:
            image: Uploaded photo
            language: UI language; a non-source language triggers translation
            hint: Example video prompt passed to the analysis
            enhanced: Caller opted into double-pass restoration
            eye_color: Optional eye color applied during the main restoration
            identity: Rate limit identity; None skips the quota check
            client_ip: Client address used for quota geolocation

        Returns:
            The analysis result; restored artifacts are on the controller

        Raises:
            InvalidStateTransition: If the session is not idle
            RateLimitError: Quota exhausted (state returns to idle)
            ServiceError: Any unrecovered stage failure (state returns to idle)
        """
        if self.machine.state != PipelineState.IDLE:
            raise InvalidStateTransition(
                f"A photo can only be submitted from idle (current: {self.machine.state.value})."
            )
        prompts.language_name(language)

        self._clear_results()
        self.language = language
        self.source_image = image
        generation = self.generation

        try:
            self.machine.advance(PipelineState.ANALYZING)
            analysis = await self._analyze(image, language, hint)
            self._ensure_current(generation)
            self.analysis = analysis

            to_restore = image
            if analysis.needs_perspective_correction:
                self.machine.advance(PipelineState.CORRECTING)
                to_restore = await self._correct(image, analysis)
                self._ensure_current(generation)
                self.corrected_image = to_restore

            self.machine.advance(PipelineState.RESTORING)
            await self._check_quota(identity, client_ip)
            restored = await self._restore(to_restore, analysis, enhanced, eye_color)
            self._ensure_current(generation)
            if identity is not None and self.rate_limiter is not None:
                self.rate_limiter.increment(identity)
            self.restored_image = restored
            self.display_image = restored
            if eye_color and analysis.has_eye_color_potential:
                self.eye_color = prompts.validate_eye_color(eye_color)

            if language != SOURCE_LANGUAGE:
                self.machine.advance(PipelineState.TRANSLATING)
                self.display_video_prompt = await self._translate(analysis.video_prompt, language)
                self._ensure_current(generation)
            else:
                self.display_video_prompt = analysis.video_prompt

            self.machine.advance(PipelineState.READY_FOR_VIDEO)
        except _StaleSession:
            logger.info("pipeline.stale_result_ignored", generation=generation)
            raise InvalidStateTransition(
                "Session was reset while the photo was processing."
            ) from None
        except Exception as e:
            if generation == self.generation:
                self._fail(e)
            raise

        logger.info(
            "pipeline.ready_for_video",
            fingerprint=self.restored_image.fingerprint[:12],
            corrected=self.corrected_image is not None,
            language=language,
        )
        return analysis

    def _ensure_current(self, generation: int) -> None:
        if generation != self.generation:
            raise _StaleSession()

    async def _analyze(self, image: ImageAsset, language: str, hint: str) -> AnalysisResult:
        return await analyze_with_retry(
            self.analysis_provider,
            image,
            language,
            hint,
            scheduler=self.scheduler,
            max_attempts=self.analysis_max_attempts,
            backoff_seconds=self.analysis_backoff_seconds,
        )

    async def _correct(self, image: ImageAsset, analysis: AnalysisResult) -> ImageAsset:
        instruction = prompts.build_restoration_instruction(
            prompts.PERSPECTIVE_CORRECTION_INSTRUCTION,
            person_count=analysis.person_count,
        )
        job = await self.restoration.restore(image, instruction)
        return job.output

    async def _check_quota(self, identity: str | None, client_ip: str) -> None:
        if identity is None or self.rate_limiter is None:
            return
        result = await self.rate_limiter.check(identity, client_ip)
        if not result.allowed:
            raise RateLimitError(
                limit=result.limit,
                remaining=result.remaining,
                reset_time=result.reset_time,
                country=result.country,
            )

    async def _restore(
        self,
        image: ImageAsset,
        analysis: AnalysisResult,
        enhanced: bool,
        eye_color: str | None,
    ) -> ImageAsset:
        instruction = prompts.build_restoration_instruction(
            analysis.restoration_prompt,
            is_black_and_white=analysis.is_black_and_white,
            person_count=analysis.person_count,
            eye_color=eye_color,
            has_eye_color_potential=analysis.has_eye_color_potential,
        )
        job = await self.restoration.restore(
            image,
            instruction,
            use_double_pass=should_use_double_pass(analysis, enhanced),
        )
        return job.output

    async def _translate(self, text: str, language: str) -> str:
        if self.translator is None or not self.translator.is_available():
            raise ValidationError(f"No translation provider available for '{language}'")
        return await self.translator.translate(text, language)

    def start_video(self) -> VideoRequest:
        """Start video generation in the background and return its record.

        Raises:
            InvalidStateTransition: If no restored image is ready
        """
        if self.restored_image is None or self.analysis is None:
            raise InvalidStateTransition("No restored image is ready for video generation.")
        self.machine.advance(PipelineState.GENERATING_VIDEO)

        request = VideoRequest()
        self.video_request = request
        self.error = None
        self._video_task = asyncio.create_task(
            self._generate_video(request, self.generation),
            name=f"session-video-{request.request_id}",
        )
        self._video_task.add_done_callback(_retrieve_failure)
        return request

    async def generate_video(self) -> VideoRequest:
        """Start video generation and wait for it to finish.

        Raises:
            InvalidStateTransition: If no restored image is ready
            ServiceError: Video generation failed or timed out
        """
        self.start_video()
        task = self._video_task
        return await task

    async def _generate_video(self, request: VideoRequest, generation: int) -> VideoRequest:
        try:
            await self.video.run(
                self.analysis.video_prompt,
                self.display_image,
                contains_children=self.analysis.contains_children,
                request=request,
            )
        except Exception as e:
            if generation == self.generation:
                self._fail(e)
            else:
                logger.info("pipeline.stale_result_ignored", generation=generation)
            raise

        if generation != self.generation:
            logger.info("pipeline.stale_result_ignored", generation=generation)
            return request
        self.machine.advance(PipelineState.DONE)
        return request

    async def wait_for_video(self) -> VideoRequest | None:
        """Await the background video task, if any, propagating its failure."""
        if self._video_task is None:
            return None
        return await self._video_task

    async def select_eye_color(self, eye_color: str | None) -> ImageAsset:
        """Apply an eye color to the restored image, reusing cached variants.

        Passing None reverts to the restored image.

        Raises:
            InvalidStateTransition: If no restored image exists yet
            SessionBusyError: Another eye-color request is in flight
            ValidationError: Unknown color or the photo has no eye-color potential
        """
        if self.machine.state not in RESTORED_STATES or self.restored_image is None:
            raise InvalidStateTransition("Eye color can only be changed after restoration.")
        if self._eye_color_in_flight:
            raise SessionBusyError("An eye color change is already in progress.")

        if eye_color is None:
            self.eye_color = None
            self.display_image = self.restored_image
            return self.restored_image

        color = prompts.validate_eye_color(eye_color)
        if not self.analysis.has_eye_color_potential:
            raise ValidationError("This photo is not eligible for eye color enhancement.")

        base = self.restored_image
        generation = self.generation

        async def generate() -> ImageAsset:
            job = await self.restoration.restore(
                base, prompts.build_eye_color_instruction(color), normalize_input=False
            )
            return job.output

        self._eye_color_in_flight = True
        try:
            image, was_cached = await self.cache.get_or_generate(base.fingerprint, color, generate)
        finally:
            self._eye_color_in_flight = False

        if generation != self.generation:
            logger.info("pipeline.stale_result_ignored", generation=generation)
            raise InvalidStateTransition("Session was reset while the eye color was applied.")

        self.eye_color = color
        self.display_image = image
        logger.info("pipeline.eye_color_applied", eye_color=color, cached=was_cached)
        return image

    def cached_eye_colors(self) -> list[str]:
        if self.restored_image is None:
            return []
        return self.cache.cached_variants(self.restored_image.fingerprint)

    def reset(self) -> None:
        """Restore another photo: invalidate in-flight work and drop session results."""
        self.generation += 1
        if self._video_task is not None and not self._video_task.done():
            self._video_task.cancel()
        self._video_task = None
        self._eye_color_in_flight = False
        self.cache.clear_all()
        self._clear_results()
        self.machine.reset()
        logger.info("pipeline.reset", generation=self.generation)


def _retrieve_failure(task: asyncio.Task) -> None:
    # The failure is already recorded on the session; retrieving it silences asyncio.
    if not task.cancelled():
        task.exception()


class _StaleSession(Exception):
    """Raised internally when a result arrives after the session was reset."""


@dataclass(slots=True)
class _SessionEntry:
    controller: PipelineController
    created_at: float
    last_access: float


class SessionRegistry:
    """Server-side pipeline sessions with idle expiry and capacity eviction."""

    def __init__(
        self,
        factory: Callable[[], PipelineController],
        ttl_seconds: float = 3600.0,
        max_sessions: int = 500,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.factory = factory
        self.ttl_seconds = ttl_seconds
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: dict[str, _SessionEntry] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> tuple[str, PipelineController]:
        self.purge()
        while len(self._sessions) >= self.max_sessions:
            oldest = min(self._sessions, key=lambda sid: self._sessions[sid].last_access)
            self._drop(oldest)
            logger.info("session.evicted", session_id=oldest)

        session_id = uuid.uuid4().hex
        now = self._clock()
        controller = self.factory()
        self._sessions[session_id] = _SessionEntry(controller, created_at=now, last_access=now)
        logger.info("session.created", session_id=session_id, sessions=len(self._sessions))
        return session_id, controller

    def get(self, session_id: str) -> PipelineController | None:
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        entry.last_access = self._clock()
        return entry.controller

    def remove(self, session_id: str) -> bool:
        if session_id not in self._sessions:
            return False
        self._drop(session_id)
        return True

    def _drop(self, session_id: str) -> None:
        entry = self._sessions.pop(session_id)
        entry.controller.reset()

    def purge(self) -> int:
        """Drop sessions idle for longer than the TTL.

        Returns:
            Number of sessions removed
        """
        cutoff = self._clock() - self.ttl_seconds
        stale = [sid for sid, e in self._sessions.items() if e.last_access < cutoff]
        for sid in stale:
            self._drop(sid)
        if stale:
            logger.info("session.purged", count=len(stale))
        return len(stale)

    def shutdown(self) -> None:
        for sid in list(self._sessions):
            self._drop(sid)
