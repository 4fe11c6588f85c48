"""In-memory provider fakes and a virtual-clock scheduler for tests.

No fake performs network access. Outcomes are scripted per call: an
ImageAsset/str/VideoJob is returned, an Exception instance is raised.
"""

import asyncio
from typing import Any

from restora.models.analysis import AnalysisResult
from restora.models.image import ImageAsset
from restora.models.video_job import VideoJob, VideoJobStatus
from restora.services.providers.base import JobHandle


def make_image(tag: str = "source", mime_type: str = "image/jpeg") -> ImageAsset:
    return ImageAsset(data=f"image:{tag}".encode(), mime_type=mime_type)


def make_analysis(**overrides: Any) -> AnalysisResult:
    payload = {
        "containsChildren": False,
        "needsPerspectiveCorrection": False,
        "hasManyPeople": False,
        "isBlackAndWhite": False,
        "isVeryOld": False,
        "personCount": 1,
        "hasEyeColorPotential": False,
        "lightingInfo": {
            "primaryDirection": "left",
            "quality": "soft",
            "type": "window",
            "shadowStrength": "moderate",
            "description": "Soft window light from the left",
        },
        "restorationPrompt": "Restore and colorize this photo preserving the lighting",
        "videoPrompt": "The woman slowly blinks and smiles, static camera",
        "suggestedFilename": "grandmother-portrait",
    }
    payload.update(overrides)
    return AnalysisResult.model_validate(payload)


class VirtualScheduler:
    """Scheduler whose clock only advances when something sleeps."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []
        self.bounds: list[float] = []

    def monotonic(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        # Yield so cancellation and other tasks can run.
        await asyncio.sleep(0)

    async def wait_for(self, awaitable, timeout: float):
        # Virtual time cannot preempt a call; callers re-check the clock afterwards.
        self.bounds.append(timeout)
        return await awaitable


class FakeEditProvider:
    def __init__(self, name: str, outcomes: list[Any] | None = None, available: bool = True):
        self.name = name
        self.outcomes = list(outcomes or [])
        self.available = available
        self.calls: list[tuple[ImageAsset, str, ImageAsset | None]] = []

    def is_available(self) -> bool:
        return self.available

    async def edit(
        self,
        image: ImageAsset,
        instruction: str,
        reference_image: ImageAsset | None = None,
    ) -> ImageAsset:
        self.calls.append((image, instruction, reference_image))
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return make_image(f"{self.name}-{len(self.calls)}")
        return outcome


class FakeAnalysisProvider:
    name = "fake-analysis"

    def __init__(self, outcomes: list[Any] | None = None):
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[ImageAsset, str, str]] = []

    def is_available(self) -> bool:
        return True

    async def analyze(self, image: ImageAsset, language: str, hint: str) -> AnalysisResult:
        self.calls.append((image, language, hint))
        outcome = self.outcomes.pop(0) if self.outcomes else make_analysis()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeTranslator:
    name = "fake-translator"

    def __init__(self, outcome: Any = None):
        self.outcome = outcome
        self.calls: list[tuple[str, str]] = []

    def is_available(self) -> bool:
        return True

    async def translate(self, text: str, target_language: str) -> str:
        self.calls.append((text, target_language))
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome or f"[{target_language}] {text}"


class FakeVideoProvider:
    """Scripted video provider.

    Each started job consumes the next script: a list of statuses returned by
    successive polls (the last one repeats). A start outcome that is an
    Exception is raised by start_video instead.
    """

    def __init__(
        self,
        name: str,
        scripts: list[Any] | None = None,
        available: bool = True,
        output_url: str | None = None,
    ):
        self.name = name
        self.scripts = list(scripts or [])
        self.available = available
        self.output_url = output_url or f"https://cdn.example/{name}.mp4"
        self.started: list[JobHandle] = []
        self.polls: list[str] = []
        self.cancelled: list[str] = []
        self._current: dict[str, list[VideoJobStatus]] = {}

    def is_available(self) -> bool:
        return self.available

    async def start_video(self, prompt: str, image: ImageAsset) -> JobHandle:
        script = self.scripts.pop(0) if self.scripts else [VideoJobStatus.SUCCEEDED]
        if isinstance(script, Exception):
            raise script
        handle = JobHandle(provider=self.name, job_id=f"{self.name}-job-{len(self.started) + 1}")
        self.started.append(handle)
        self._current[handle.job_id] = list(script)
        return handle

    async def poll_video(self, handle: JobHandle) -> VideoJob:
        self.polls.append(handle.job_id)
        statuses = self._current[handle.job_id]
        status = statuses.pop(0) if len(statuses) > 1 else statuses[0]
        if isinstance(status, Exception):
            raise status
        job = VideoJob(handle=handle.job_id, provider=self.name, status=status)
        if status == VideoJobStatus.SUCCEEDED:
            job.output_url = self.output_url
        elif status in (VideoJobStatus.FAILED, VideoJobStatus.CANCELED):
            job.error = f"{self.name} job {status.value}"
        return job

    async def cancel_video(self, handle: JobHandle) -> None:
        self.cancelled.append(handle.job_id)
