"""Domain value types and state machines.

Nothing here is persisted: sessions, jobs and caches live in memory for the
lifetime of the process.
"""

from restora.models.analysis import AnalysisResult, LightingInfo, should_use_double_pass
from restora.models.image import ImageAsset
from restora.models.rate_limit import GeoLocation, RateLimitEntry, RateLimitResult
from restora.models.restoration import ProviderAttempt, RestorationJob, RestorationStrategy
from restora.models.state import InvalidStateTransition, PipelineState, PipelineStateMachine
from restora.models.video_job import VideoJob, VideoJobStatus

__all__ = [
    "AnalysisResult",
    "LightingInfo",
    "should_use_double_pass",
    "ImageAsset",
    "GeoLocation",
    "RateLimitEntry",
    "RateLimitResult",
    "ProviderAttempt",
    "RestorationJob",
    "RestorationStrategy",
    "InvalidStateTransition",
    "PipelineState",
    "PipelineStateMachine",
    "VideoJob",
    "VideoJobStatus",
]
