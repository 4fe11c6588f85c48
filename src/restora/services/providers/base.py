"""Capability contracts implemented by every provider adapter.

Orchestrators depend only on these protocols and on the normalized error
taxonomy in restora.services.exceptions, never on a provider SDK.
"""

from dataclasses import dataclass
from typing import Protocol

from restora.models.analysis import AnalysisResult
from restora.models.image import ImageAsset
from restora.models.video_job import VideoJob


@dataclass(slots=True, frozen=True)
class JobHandle:
    """Opaque identifier of an in-progress provider generation task."""

    provider: str
    job_id: str


class AnalysisProvider(Protocol):
    name: str

    def is_available(self) -> bool: ...

    async def analyze(self, image: ImageAsset, language: str, hint: str) -> AnalysisResult:
        """Raises AnalysisError (IncompleteAnalysisError when fields are missing)."""
        ...


class EditProvider(Protocol):
    name: str

    def is_available(self) -> bool: ...

    async def edit(
        self,
        image: ImageAsset,
        instruction: str,
        reference_image: ImageAsset | None = None,
    ) -> ImageAsset:
        """Raises EditRefused on content refusal, EditTransportError otherwise."""
        ...


class VideoProvider(Protocol):
    name: str

    def is_available(self) -> bool: ...

    async def start_video(self, prompt: str, image: ImageAsset) -> JobHandle:
        """Create a job and return immediately with its handle."""
        ...

    async def poll_video(self, handle: JobHandle) -> VideoJob:
        """Return a snapshot of the job's current provider status."""
        ...

    async def cancel_video(self, handle: JobHandle) -> None: ...


class TranslationProvider(Protocol):
    name: str

    def is_available(self) -> bool: ...

    async def translate(self, text: str, target_language: str) -> str: ...
