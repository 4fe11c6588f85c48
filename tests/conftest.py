"""pytest fixtures for restora backend tests.

Provides:
- settings: Test Settings (APP_ENV=test skips startup validation)
- scheduler: Virtual-clock scheduler
- edit/video/analysis fakes wired into orchestrators
- services: Services container built from fakes (no network access)
"""

import os

# Must be set before restora.app is imported by any test module.
os.environ.setdefault("APP_ENV", "test")

import pytest  # noqa: E402

from fakes import (  # noqa: E402
    FakeAnalysisProvider,
    FakeEditProvider,
    FakeTranslator,
    FakeVideoProvider,
    VirtualScheduler,
)
from restora.core.config import Settings  # noqa: E402
from restora.core.dependencies import Services  # noqa: E402
from restora.services.rate_limiter import GeoLocator, RateLimiter  # noqa: E402
from restora.services.restoration import RestorationOrchestrator  # noqa: E402
from restora.services.video import VideoJobOrchestrator, VideoRequestRegistry  # noqa: E402


@pytest.fixture
def settings() -> Settings:
    return Settings(
        APP_ENV="test",
        GOOGLE_GENAI_API_KEY="",
        REPLICATE_API_TOKEN="",
        ANALYSIS_BACKOFF_SECONDS=1.0,
        VIDEO_POLL_INTERVAL_SECONDS=5.0,
        VIDEO_MAX_POLL_ATTEMPTS=120,
        VIDEO_TIMEOUT_SECONDS=600.0,
    )


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def primary_editor() -> FakeEditProvider:
    return FakeEditProvider("gemini")


@pytest.fixture
def structural_editor() -> FakeEditProvider:
    return FakeEditProvider("codeformer")


@pytest.fixture
def fallback_editor() -> FakeEditProvider:
    return FakeEditProvider("seedream")


@pytest.fixture
def restoration(primary_editor, structural_editor, fallback_editor) -> RestorationOrchestrator:
    return RestorationOrchestrator(
        primary=primary_editor,
        structural=structural_editor,
        fallback=fallback_editor,
    )


@pytest.fixture
def replicate_video() -> FakeVideoProvider:
    return FakeVideoProvider("replicate")


@pytest.fixture
def gemini_video() -> FakeVideoProvider:
    return FakeVideoProvider("gemini")


@pytest.fixture
def video_orchestrator(replicate_video, gemini_video, scheduler) -> VideoJobOrchestrator:
    return VideoJobOrchestrator(
        providers={"replicate": replicate_video, "gemini": gemini_video},
        primary="replicate",
        strict_providers=["gemini"],
        scheduler=scheduler,
        poll_interval=5.0,
        max_poll_attempts=120,
        timeout_seconds=600.0,
    )


@pytest.fixture
def analysis_provider() -> FakeAnalysisProvider:
    return FakeAnalysisProvider()


@pytest.fixture
def translator() -> FakeTranslator:
    return FakeTranslator()


@pytest.fixture
def rate_limiter() -> RateLimiter:
    # Loopback callers resolve to the home country without any HTTP lookup.
    return RateLimiter(locator=GeoLocator(home_country="CL"), home_daily_limit=2)


@pytest.fixture
def services(
    settings,
    analysis_provider,
    translator,
    primary_editor,
    structural_editor,
    fallback_editor,
    restoration,
    replicate_video,
    gemini_video,
    video_orchestrator,
    rate_limiter,
    scheduler,
) -> Services:
    return Services(
        settings=settings,
        analysis=analysis_provider,
        translator=translator,
        edit_providers={
            primary_editor.name: primary_editor,
            structural_editor.name: structural_editor,
            fallback_editor.name: fallback_editor,
        },
        video_providers={"replicate": replicate_video, "gemini": gemini_video},
        restoration=restoration,
        video=video_orchestrator,
        video_requests=VideoRequestRegistry(video_orchestrator),
        rate_limiter=rate_limiter,
        scheduler=scheduler,
    )
