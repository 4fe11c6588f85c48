"""Application configuration using Pydantic BaseSettings."""

import logging

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Google Gemini (analysis, prompt-driven edit, translation, Veo video)
    google_genai_api_key: str = Field(default="", alias="GOOGLE_GENAI_API_KEY")
    gemini_analysis_model: str = Field(default="gemini-2.5-pro", alias="GEMINI_ANALYSIS_MODEL")
    gemini_edit_model: str = Field(
        default="gemini-2.5-flash-image-preview", alias="GEMINI_EDIT_MODEL"
    )
    gemini_video_model: str = Field(default="veo-3.0-fast-generate-001", alias="GEMINI_VIDEO_MODEL")
    gemini_translation_model: str = Field(default="", alias="GEMINI_TRANSLATION_MODEL")

    # Replicate (structural restoration, fallback edit, video)
    replicate_api_token: str = Field(default="", alias="REPLICATE_API_TOKEN")
    replicate_restoration_model: str = Field(
        default=(
            "sczhou/codeformer:"
            "7de2ea26c616d5bf2245ad0d5e24f0ff9a6204578a5c876db53142edd9d2cd56"
        ),
        alias="REPLICATE_RESTORATION_MODEL",
    )
    replicate_edit_model: str = Field(default="bytedance/seedream-4", alias="REPLICATE_EDIT_MODEL")
    replicate_video_model: str = Field(
        default="bytedance/seedance-1-pro", alias="REPLICATE_VIDEO_MODEL"
    )

    # Provider fallback policy
    use_replicate_fallback: bool = Field(default=True, alias="USE_REPLICATE_FALLBACK")
    video_provider: str = Field(default="replicate", alias="VIDEO_PROVIDER")
    video_fallback_enabled: bool = Field(default=True, alias="VIDEO_FALLBACK_ENABLED")
    video_strict_providers: str = Field(default="gemini", alias="VIDEO_STRICT_PROVIDERS")

    # Video polling
    video_poll_interval_seconds: float = Field(default=5.0, alias="VIDEO_POLL_INTERVAL_SECONDS")
    video_max_poll_attempts: int = Field(default=120, alias="VIDEO_MAX_POLL_ATTEMPTS")
    video_timeout_seconds: float = Field(default=600.0, alias="VIDEO_TIMEOUT_SECONDS")

    # Analysis retry (only for structurally incomplete responses)
    analysis_max_attempts: int = Field(default=3, alias="ANALYSIS_MAX_ATTEMPTS")
    analysis_backoff_seconds: float = Field(default=1.0, alias="ANALYSIS_BACKOFF_SECONDS")

    # Result cache
    result_cache_ttl_seconds: float = Field(default=3600.0, alias="RESULT_CACHE_TTL_SECONDS")
    result_cache_max_images: int = Field(default=10, alias="RESULT_CACHE_MAX_IMAGES")
    result_cache_max_variants: int = Field(default=6, alias="RESULT_CACHE_MAX_VARIANTS")

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, alias="RATE_LIMIT_ENABLED")
    rate_limit_home_country: str = Field(default="CL", alias="RATE_LIMIT_HOME_COUNTRY")
    rate_limit_home_daily: int = Field(default=10, alias="RATE_LIMIT_HOME_DAILY")
    rate_limit_default_daily: int = Field(default=5, alias="RATE_LIMIT_DEFAULT_DAILY")
    geolocation_url: str = Field(default="https://ipapi.co/{ip}/json/", alias="GEOLOCATION_URL")
    geolocation_timeout_seconds: float = Field(default=5.0, alias="GEOLOCATION_TIMEOUT_SECONDS")

    # Image normalization and delivery
    image_max_dimension: int = Field(default=1200, alias="IMAGE_MAX_DIMENSION")
    image_max_size_kb: int = Field(default=400, alias="IMAGE_MAX_SIZE_KB")
    image_quality: int = Field(default=85, alias="IMAGE_QUALITY")
    delivery_quality: int = Field(default=92, alias="DELIVERY_QUALITY")

    # Pipeline sessions
    session_ttl_seconds: float = Field(default=3600.0, alias="SESSION_TTL_SECONDS")
    max_sessions: int = Field(default=500, alias="MAX_SESSIONS")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def video_strict_providers_list(self) -> list[str]:
        """Parse the providers avoided for content involving minors."""
        return [p.strip().lower() for p in self.video_strict_providers.split(",") if p.strip()]

    @property
    def translation_model(self) -> str:
        """Model used for prompt translation (defaults to the analysis model)."""
        return self.gemini_translation_model or self.gemini_analysis_model

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        Fails fast with clear error messages if configuration is incomplete.
        Replicate credentials are optional: without them the structural
        restoration pass and every Replicate fallback are simply unavailable.

        Validation is skipped in test environments to avoid breaking tests.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        # GOOGLE_GENAI_API_KEY drives analysis, restoration and translation
        if not self.google_genai_api_key:
            missing.append(
                "GOOGLE_GENAI_API_KEY: Create an API key at https://aistudio.google.com/apikey"
            )

        if self.video_provider not in ("replicate", "gemini"):
            missing.append("VIDEO_PROVIDER: must be 'replicate' or 'gemini'")

        if missing:
            error_msg = "CRITICAL: Missing or invalid environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nThe application cannot start without these variables."
            error_msg += "\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level_filter = structlog.make_filtering_bound_logger(
        getattr(logging, settings.log_level.upper(), logging.INFO)
    )

    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=level_filter,
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=level_filter,
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
