"""Stateless restoration API endpoints.

This module implements the endpoints the frontend drives step by step:
- POST /api/analyze-image - Structured analysis of an uploaded photo
- POST /api/edit-image - Restoration (single or double pass), perspective
  correction and eye-color edits, with provider fallback and rate limiting
- POST /api/translate - Translate a prompt for display

Restorations are counted against the caller's daily quota; eye-color-only
edits are not.
"""

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import Field

from restora.api.dependencies import get_client_ip, get_services
from restora.api.schemas import CamelModel, ImageResponse, decode_image, image_response
from restora.core.dependencies import Services
from restora.models.analysis import AnalysisResult
from restora.services import prompts
from restora.services.exceptions import RateLimitError
from restora.services.pipeline import DEFAULT_HINT, analyze_with_retry

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api", tags=["restoration"])


# Request/Response Models


class AnalyzeImageRequest(CamelModel):
    base64_image_data: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)
    language: str = Field(..., min_length=2, description="UI language (en, es)")
    example_prompt: str = Field(default=DEFAULT_HINT, description="Example video prompt")


class EditImageRequest(CamelModel):
    base64_image_data: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)
    prompt: str = Field(..., min_length=1, max_length=prompts.MAX_INSTRUCTION_LENGTH)
    use_double_pass: bool = False
    fingerprint: str | None = Field(default=None, description="Client identity for rate limits")
    eye_color: str | None = None
    has_eye_color_potential: bool = False
    person_count: int | None = Field(default=None, ge=0)
    is_black_and_white: bool = False
    is_eye_color_change_only: bool = False


class TranslateRequest(CamelModel):
    text: str = Field(..., min_length=1)
    target_language: str = Field(..., min_length=2)


class TranslateResponse(CamelModel):
    translated_text: str


# Endpoints


@router.post("/analyze-image", response_model=AnalysisResult, response_model_by_alias=True)
async def analyze_image(
    body: AnalyzeImageRequest,
    services: Services = Depends(get_services),
) -> AnalysisResult:
    """Analyze a photo against the strict analysis schema.

    Incomplete responses are retried with linear backoff; any other provider
    failure is returned immediately.
    """
    prompts.language_name(body.language)
    image = decode_image(body.base64_image_data, body.mime_type)
    return await analyze_with_retry(
        services.analysis,
        image,
        body.language,
        body.example_prompt,
        scheduler=services.scheduler,
        max_attempts=services.settings.analysis_max_attempts,
        backoff_seconds=services.settings.analysis_backoff_seconds,
    )


@router.post("/edit-image", response_model=ImageResponse, response_model_by_alias=True)
async def edit_image(
    body: EditImageRequest,
    request: Request,
    services: Services = Depends(get_services),
) -> ImageResponse:
    """Restore or edit a photo.

    Returns:
        {"image": base64, "mimeType": "image/jpeg"}

    Raises:
        RateLimitError: 429 with {limit, remaining, resetTime, country}
        FallbackExhaustedError: 500 with both provider errors aggregated
    """
    image = decode_image(body.base64_image_data, body.mime_type)
    counted = not body.is_eye_color_change_only
    limiter = services.rate_limiter
    identity = body.fingerprint or get_client_ip(request)

    if counted and limiter is not None:
        result = await limiter.check(identity, get_client_ip(request))
        if not result.allowed:
            raise RateLimitError(
                limit=result.limit,
                remaining=result.remaining,
                reset_time=result.reset_time,
                country=result.country,
            )

    if body.is_eye_color_change_only:
        if not body.eye_color:
            instruction = prompts.validate_instruction(body.prompt)
        else:
            instruction = prompts.build_eye_color_instruction(body.eye_color)
    else:
        instruction = prompts.build_restoration_instruction(
            body.prompt,
            is_black_and_white=body.is_black_and_white,
            person_count=body.person_count,
            eye_color=body.eye_color,
            has_eye_color_potential=body.has_eye_color_potential,
        )

    job = await services.restoration.restore(
        image,
        instruction,
        use_double_pass=body.use_double_pass and not body.is_eye_color_change_only,
        normalize_input=counted,
    )

    if counted and limiter is not None:
        limiter.increment(identity)

    logger.info(
        "api.edit_image.completed",
        strategy=job.strategy.value,
        providers=job.providers_used,
        eye_color_only=body.is_eye_color_change_only,
    )
    return image_response(job.output)


@router.post("/translate", response_model=TranslateResponse, response_model_by_alias=True)
async def translate(
    body: TranslateRequest,
    services: Services = Depends(get_services),
) -> TranslateResponse:
    prompts.language_name(body.target_language)
    translated = await services.translator.translate(body.text, body.target_language)
    return TranslateResponse(translated_text=translated)
