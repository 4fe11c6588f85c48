"""Video job orchestration: start, poll, single provider switch, timeout.

One logical video request runs as:

    select providers -> start job -> poll every interval
        -> succeeded: done
        -> failed/canceled: switch to the alternate provider once, restart
        -> attempt or wall-clock bound exceeded: timed_out (never switched)

Polling is driven by an injected Scheduler so tests advance a virtual clock.
The VideoRequestRegistry runs each request as a background task so starting a
video returns immediately and status is read from the registry.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, NoReturn, TypeVar

import structlog

from restora.models.image import ImageAsset
from restora.models.video_job import VideoJob, VideoJobStatus
from restora.services.exceptions import (
    JobTimeoutError,
    ServiceError,
    TransportError,
    ValidationError,
    VideoGenerationError,
    describe_error,
)
from restora.services.fallback import attempt_with_fallback
from restora.services.providers.base import VideoProvider
from restora.services.scheduler import AsyncioScheduler, Scheduler

logger = structlog.get_logger(__name__)

T = TypeVar("T")

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_POLL_ATTEMPTS = 120
DEFAULT_TIMEOUT_SECONDS = 600.0


@dataclass(slots=True)
class VideoRequest:
    """One logical video request and the provider jobs it went through.

    At most two jobs: the initial one and, after a failure, the alternate.
    """

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    jobs: list[VideoJob] = field(default_factory=list)
    status: VideoJobStatus = VideoJobStatus.PENDING
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def current(self) -> VideoJob | None:
        return self.jobs[-1] if self.jobs else None

    @property
    def switched(self) -> bool:
        return len(self.jobs) > 1

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def sync_status(self) -> None:
        if self.current is not None:
            self.status = self.current.status


class VideoJobOrchestrator:
    """Drives provider video jobs to a terminal state.

    Args:
        providers: Video providers by name
        primary: Name of the preferred provider
        fallback_enabled: Allow one switch to an alternate provider
        strict_providers: Providers avoided when the analysis reports minors
        scheduler: Timer abstraction for polling
        poll_interval: Seconds between polls
        max_poll_attempts: Polls per provider job before timing out
        timeout_seconds: Wall-clock bound per provider job
    """

    def __init__(
        self,
        providers: dict[str, VideoProvider],
        primary: str,
        fallback_enabled: bool = True,
        strict_providers: tuple[str, ...] | list[str] = (),
        scheduler: Scheduler | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.providers = providers
        self.primary = primary
        self.fallback_enabled = fallback_enabled
        self.strict_providers = frozenset(strict_providers)
        self.scheduler = scheduler or AsyncioScheduler()
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.timeout_seconds = timeout_seconds

    def select_providers(self, contains_children: bool = False) -> list[str]:
        """Ordered provider names to try: the initial provider and at most one alternate.

        Unavailable providers are skipped. When the analysis reports minors,
        strict providers are excluded as long as another provider remains.

        Raises:
            ValidationError: If no video provider is available
        """
        names = [n for n, p in self.providers.items() if p.is_available()]
        if self.primary in names:
            names.remove(self.primary)
            names.insert(0, self.primary)

        if contains_children:
            permitted = [n for n in names if n not in self.strict_providers]
            if permitted and permitted != names:
                logger.info(
                    "video.safety_routing",
                    avoided=[n for n in names if n in self.strict_providers],
                    selected=permitted[0],
                )
                names = permitted

        if not names:
            raise ValidationError("No video provider is configured")
        return names[:2] if self.fallback_enabled else names[:1]

    async def run(
        self,
        prompt: str,
        image: ImageAsset,
        *,
        contains_children: bool = False,
        request: VideoRequest | None = None,
    ) -> VideoRequest:
        """Generate a video, switching provider at most once.

        Args:
            prompt: Animation prompt
            image: Restored image to animate
            contains_children: Safety-routing signal from the analysis
            request: Record updated in place as jobs progress

        Returns:
            The request with its final job succeeded

        Raises:
            JobTimeoutError: Polling bound exceeded (no provider switch)
            VideoGenerationError: Job failed and no alternate was available
            TransportError: Job could not be started and no alternate was available
            FallbackExhaustedError: Both providers failed
        """
        request = request or VideoRequest()
        names = self.select_providers(contains_children)

        logger.info(
            "video.request_started",
            request_id=request.request_id,
            providers=names,
            contains_children=contains_children,
        )

        def attempt(name: str):
            async def run_provider() -> VideoJob:
                provider = self.providers[name]
                try:
                    return await self._run_job(provider, prompt, image, request)
                except ServiceError:
                    raise
                except Exception as e:
                    # Anything outside the taxonomy is an availability failure of this provider
                    error = TransportError(f"Unexpected {name} video error: {describe_error(e)}")
                    job = request.current
                    if job is not None and job.provider == name and not job.is_terminal:
                        job.mark_failed(str(error))
                        request.sync_status()
                    logger.error(
                        "video.unexpected_error",
                        provider=name,
                        error_type=type(e).__name__,
                        error_message=describe_error(e),
                    )
                    raise error from e

            return run_provider

        try:
            outcome = await attempt_with_fallback(
                attempt(names[0]),
                attempt(names[1]) if len(names) > 1 else None,
                primary_name=names[0],
                fallback_name=names[1] if len(names) > 1 else None,
                operation="video generation",
            )
        except asyncio.CancelledError:
            request.sync_status()
            if not request.is_terminal:
                request.status = VideoJobStatus.CANCELED
            raise
        except Exception as e:
            request.sync_status()
            if not request.is_terminal:
                if isinstance(e, JobTimeoutError):
                    request.status = VideoJobStatus.TIMED_OUT
                else:
                    request.status = VideoJobStatus.FAILED
            request.error = describe_error(e)
            raise

        if outcome.used_fallback:
            logger.info(
                "video.provider_switched",
                request_id=request.request_id,
                from_provider=names[0],
                to_provider=outcome.provider,
            )
        request.sync_status()
        logger.info(
            "video.request_succeeded",
            request_id=request.request_id,
            provider=outcome.provider,
            polls=outcome.value.poll_count,
        )
        return request

    async def _bounded(self, awaitable: Awaitable[T], deadline: float) -> T:
        """Await a provider call within the job's remaining wall-clock budget.

        A result that arrives after the deadline is discarded.

        Raises:
            asyncio.TimeoutError: The budget ran out before or during the call
        """
        remaining = deadline - self.scheduler.monotonic()
        if remaining <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise asyncio.TimeoutError()
        result = await self.scheduler.wait_for(awaitable, remaining)
        if self.scheduler.monotonic() >= deadline:
            raise asyncio.TimeoutError()
        return result

    def _timeout_message(self) -> str:
        return (
            f"Video generation did not finish within {self.max_poll_attempts} "
            f"polls ({self.timeout_seconds:.0f}s)"
        )

    async def _run_job(
        self,
        provider: VideoProvider,
        prompt: str,
        image: ImageAsset,
        request: VideoRequest,
    ) -> VideoJob:
        """Start one provider job and poll it to a terminal state.

        The wall-clock bound covers the start call and every poll call, so a
        provider call that hangs past the deadline yields timed_out.
        """
        deadline = self.scheduler.monotonic() + self.timeout_seconds
        try:
            handle = await self._bounded(provider.start_video(prompt, image), deadline)
        except asyncio.TimeoutError:
            logger.warning("video.start_timed_out", provider=provider.name)
            raise JobTimeoutError(self._timeout_message()) from None

        job = VideoJob(handle=handle.job_id, provider=provider.name)
        request.jobs.append(job)
        request.sync_status()

        attempts = 0
        try:
            while True:
                if attempts >= self.max_poll_attempts or self.scheduler.monotonic() >= deadline:
                    self._time_out(job, request, attempts)

                await self.scheduler.sleep(self.poll_interval)
                attempts += 1
                job.poll_count = attempts
                if self.scheduler.monotonic() >= deadline:
                    self._time_out(job, request, attempts)

                try:
                    observed = await self._bounded(provider.poll_video(handle), deadline)
                except asyncio.TimeoutError:
                    self._time_out(job, request, attempts)
                except TransportError as e:
                    logger.warning(
                        "video.poll_failed",
                        provider=provider.name,
                        handle=handle.job_id,
                        attempt=attempts,
                        error=describe_error(e),
                    )
                    continue

                job.apply(observed)
                request.sync_status()
                logger.debug(
                    "video.poll",
                    provider=provider.name,
                    handle=handle.job_id,
                    attempt=attempts,
                    status=job.status.value,
                )

                if job.status == VideoJobStatus.SUCCEEDED:
                    return job
                if job.status in (VideoJobStatus.FAILED, VideoJobStatus.CANCELED):
                    raise VideoGenerationError(
                        job.error or f"Video generation {job.status.value}",
                        provider=provider.name,
                        status=job.status.value,
                    )
        except asyncio.CancelledError:
            if not job.is_terminal:
                job.mark_canceled("Video request was cancelled")
                request.sync_status()
                logger.info("video.cancelled", provider=provider.name, handle=handle.job_id)
                try:
                    await provider.cancel_video(handle)
                except ServiceError as e:
                    logger.warning("video.cancel_failed", handle=handle.job_id, error=str(e))
            raise

    def _time_out(self, job: VideoJob, request: VideoRequest, polls: int) -> NoReturn:
        message = self._timeout_message()
        job.mark_timed_out(message)
        request.sync_status()
        logger.warning(
            "video.timed_out",
            provider=job.provider,
            handle=job.handle,
            polls=polls,
        )
        raise JobTimeoutError(message)


@dataclass(slots=True)
class _RegistryEntry:
    request: VideoRequest
    task: asyncio.Task
    created_at: float


class VideoRequestRegistry:
    """Server-side record of in-progress and recent video requests.

    Bounded and expiring: finished requests older than the TTL are dropped,
    and when full the oldest request is evicted (cancelled if still running).
    """

    def __init__(
        self,
        orchestrator: VideoJobOrchestrator,
        max_requests: int = 100,
        ttl_seconds: float = 3600.0,
    ):
        self.orchestrator = orchestrator
        self.max_requests = max_requests
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, _RegistryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def start(
        self, prompt: str, image: ImageAsset, contains_children: bool = False
    ) -> VideoRequest:
        """Spawn a background video request and return its record immediately."""
        self._purge()
        request = VideoRequest()
        task = asyncio.create_task(
            self._run(request, prompt, image, contains_children),
            name=f"video-{request.request_id}",
        )
        self._entries[request.request_id] = _RegistryEntry(
            request=request,
            task=task,
            created_at=self.orchestrator.scheduler.monotonic(),
        )
        logger.info("video.registry.started", request_id=request.request_id)
        return request

    async def _run(
        self, request: VideoRequest, prompt: str, image: ImageAsset, contains_children: bool
    ) -> None:
        try:
            await self.orchestrator.run(
                prompt, image, contains_children=contains_children, request=request
            )
        except ServiceError as e:
            logger.warning(
                "video.registry.request_failed",
                request_id=request.request_id,
                status=request.status.value,
                error=describe_error(e),
            )
        except Exception as e:
            if not request.is_terminal:
                request.status = VideoJobStatus.FAILED
                request.error = describe_error(e)
            logger.exception(
                "video.registry.request_crashed",
                request_id=request.request_id,
                error_type=type(e).__name__,
            )

    def get(self, request_id: str) -> VideoRequest | None:
        entry = self._entries.get(request_id)
        return entry.request if entry else None

    def cancel(self, request_id: str) -> bool:
        entry = self._entries.get(request_id)
        if entry is None or entry.task.done():
            return False
        entry.task.cancel()
        return True

    def _purge(self) -> None:
        now = self.orchestrator.scheduler.monotonic()
        expired = [
            rid
            for rid, e in self._entries.items()
            if e.task.done() and now - e.created_at > self.ttl_seconds
        ]
        for rid in expired:
            del self._entries[rid]

        while len(self._entries) >= self.max_requests:
            oldest = min(self._entries, key=lambda rid: self._entries[rid].created_at)
            entry = self._entries.pop(oldest)
            if not entry.task.done():
                entry.task.cancel()
            logger.info("video.registry.evicted", request_id=oldest)

    async def shutdown(self) -> None:
        """Cancel every running request and wait for the tasks to finish."""
        tasks = [e.task for e in self._entries.values() if not e.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("video.registry.shutdown", cancelled=len(tasks))
