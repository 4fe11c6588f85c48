"""Service wiring: builds providers, orchestrators and stores from settings.

Shared by the FastAPI lifespan and the command-line restore. Every store is
created here and injected; nothing is a module-level singleton.
"""

from dataclasses import dataclass, field

import structlog

from restora.core.config import Settings
from restora.models.image import ImageAsset
from restora.services.cache import ResultCache
from restora.services.imaging import normalize_image, to_delivery_format
from restora.services.pipeline import PipelineController, SessionRegistry
from restora.services.providers.base import (
    AnalysisProvider,
    EditProvider,
    TranslationProvider,
    VideoProvider,
)
from restora.services.providers.gemini_client import GeminiProvider
from restora.services.providers.replicate_client import (
    ReplicateEditProvider,
    ReplicateVideoProvider,
    codeformer_input,
    seedream_input,
)
from restora.services.rate_limiter import GeoLocator, RateLimiter
from restora.services.restoration import RestorationOrchestrator
from restora.services.scheduler import AsyncioScheduler, Scheduler
from restora.services.video import VideoJobOrchestrator, VideoRequestRegistry

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Everything the HTTP layer and the CLI need, built once per process."""

    settings: Settings
    analysis: AnalysisProvider
    translator: TranslationProvider
    edit_providers: dict[str, EditProvider]
    video_providers: dict[str, VideoProvider]
    restoration: RestorationOrchestrator
    video: VideoJobOrchestrator
    video_requests: VideoRequestRegistry
    rate_limiter: RateLimiter | None
    scheduler: Scheduler
    sessions: SessionRegistry = field(init=False)

    def __post_init__(self) -> None:
        self.sessions = SessionRegistry(
            factory=self.new_pipeline,
            ttl_seconds=self.settings.session_ttl_seconds,
            max_sessions=self.settings.max_sessions,
        )

    def new_cache(self) -> ResultCache:
        return ResultCache(
            ttl_seconds=self.settings.result_cache_ttl_seconds,
            max_images=self.settings.result_cache_max_images,
            max_variants=self.settings.result_cache_max_variants,
        )

    def new_pipeline(self) -> PipelineController:
        return PipelineController(
            analysis=self.analysis,
            restoration=self.restoration,
            video=self.video,
            translator=self.translator,
            rate_limiter=self.rate_limiter,
            cache=self.new_cache(),
            scheduler=self.scheduler,
            analysis_max_attempts=self.settings.analysis_max_attempts,
            analysis_backoff_seconds=self.settings.analysis_backoff_seconds,
        )

    def provider_status(self) -> dict[str, dict[str, bool]]:
        """Which providers are configured, by capability."""
        return {
            "analysis": {self.analysis.name: self.analysis.is_available()},
            "edit": {n: p.is_available() for n, p in self.edit_providers.items()},
            "video": {n: p.is_available() for n, p in self.video_providers.items()},
        }


def build_services(settings: Settings, scheduler: Scheduler | None = None) -> Services:
    """Create every provider adapter, orchestrator and store from settings.

    Args:
        settings: Application settings
        scheduler: Timer abstraction (real-time asyncio scheduler by default)

    Returns:
        Fully wired Services container
    """
    scheduler = scheduler or AsyncioScheduler()

    gemini = GeminiProvider(
        api_key=settings.google_genai_api_key,
        analysis_model=settings.gemini_analysis_model,
        edit_model=settings.gemini_edit_model,
        video_model=settings.gemini_video_model,
        translation_model=settings.translation_model,
    )
    structural = ReplicateEditProvider(
        api_token=settings.replicate_api_token,
        model=settings.replicate_restoration_model,
        build_input=codeformer_input,
        name="codeformer",
    )
    seedream = ReplicateEditProvider(
        api_token=settings.replicate_api_token,
        model=settings.replicate_edit_model,
        build_input=seedream_input,
        name="seedream",
    )
    replicate_video = ReplicateVideoProvider(
        api_token=settings.replicate_api_token,
        model=settings.replicate_video_model,
        name="replicate",
    )

    def normalize(image: ImageAsset) -> ImageAsset:
        normalized, _ = normalize_image(
            image,
            max_dimension=settings.image_max_dimension,
            max_size_kb=settings.image_max_size_kb,
            quality=settings.image_quality,
        )
        return normalized

    def finalize(image: ImageAsset) -> ImageAsset:
        return to_delivery_format(image, quality=settings.delivery_quality)

    restoration = RestorationOrchestrator(
        primary=gemini,
        structural=structural,
        fallback=seedream if settings.use_replicate_fallback else None,
        normalize=normalize,
        finalize=finalize,
    )

    video_providers: dict[str, VideoProvider] = {
        "replicate": replicate_video,
        "gemini": gemini,
    }
    video = VideoJobOrchestrator(
        providers=video_providers,
        primary=settings.video_provider,
        fallback_enabled=settings.video_fallback_enabled,
        strict_providers=settings.video_strict_providers_list,
        scheduler=scheduler,
        poll_interval=settings.video_poll_interval_seconds,
        max_poll_attempts=settings.video_max_poll_attempts,
        timeout_seconds=settings.video_timeout_seconds,
    )

    rate_limiter = None
    if settings.rate_limit_enabled:
        rate_limiter = RateLimiter(
            locator=GeoLocator(
                home_country=settings.rate_limit_home_country,
                url_template=settings.geolocation_url,
                timeout=settings.geolocation_timeout_seconds,
            ),
            home_daily_limit=settings.rate_limit_home_daily,
            default_daily_limit=settings.rate_limit_default_daily,
        )

    services = Services(
        settings=settings,
        analysis=gemini,
        translator=gemini,
        edit_providers={gemini.name: gemini, structural.name: structural, seedream.name: seedream},
        video_providers=video_providers,
        restoration=restoration,
        video=video,
        video_requests=VideoRequestRegistry(video),
        rate_limiter=rate_limiter,
        scheduler=scheduler,
    )

    logger.info(
        "services.built",
        replicate_configured=bool(settings.replicate_api_token),
        video_provider=settings.video_provider,
        rate_limit_enabled=settings.rate_limit_enabled,
    )
    return services
