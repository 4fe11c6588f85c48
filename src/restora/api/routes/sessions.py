"""Pipeline session API endpoints.

A session hosts one PipelineController server-side:
- POST /api/sessions - Create a session
- GET /api/sessions/{session_id} - Read the session state
- POST /api/sessions/{session_id}/photo - Analyze, correct, restore and translate
- POST /api/sessions/{session_id}/video - Start video generation (background)
- POST /api/sessions/{session_id}/eye-color - Apply or revert an eye color
- POST /api/sessions/{session_id}/reset - Restore another photo
- DELETE /api/sessions/{session_id} - Drop the session
"""

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import Field

from restora.api.dependencies import get_client_ip, get_services, get_session
from restora.api.routes.video import VideoStatusResponse, status_response
from restora.api.schemas import CamelModel, ImageResponse, decode_image, image_response
from restora.core.dependencies import Services
from restora.models.analysis import AnalysisResult
from restora.models.state import PipelineState
from restora.services.pipeline import DEFAULT_HINT, PipelineController

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["sessions"])


class RateLimitInfo(CamelModel):
    limit: int
    remaining: int
    reset_time: str
    country: str


class SessionResponse(CamelModel):
    session_id: str
    state: PipelineState
    analysis: AnalysisResult | None = None
    restored_image: ImageResponse | None = None
    display_image: ImageResponse | None = None
    corrected: bool = False
    display_video_prompt: str | None = None
    eye_color: str | None = None
    cached_eye_colors: list[str] = Field(default_factory=list)
    eye_color_in_flight: bool = False
    video: VideoStatusResponse | None = None
    error: str | None = None
    rate_limit: RateLimitInfo | None = None


class SubmitPhotoRequest(CamelModel):
    base64_image_data: str = Field(..., min_length=1)
    mime_type: str = Field(..., min_length=1)
    language: str = Field(default="en", min_length=2)
    example_prompt: str = DEFAULT_HINT
    enhanced: bool = Field(default=False, description="Opt into double-pass restoration")
    eye_color: str | None = None
    fingerprint: str | None = None


class EyeColorRequest(CamelModel):
    eye_color: str | None = Field(default=None, description="Palette color, or null to revert")


def session_response(session_id: str, controller: PipelineController) -> SessionResponse:
    rate_limit = None
    if controller.rate_limit is not None:
        rate_limit = RateLimitInfo.model_validate(controller.rate_limit.to_dict())
    return SessionResponse(
        session_id=session_id,
        state=controller.state,
        analysis=controller.analysis,
        restored_image=image_response(controller.restored_image)
        if controller.restored_image
        else None,
        display_image=image_response(controller.display_image)
        if controller.display_image
        else None,
        corrected=controller.corrected_image is not None,
        display_video_prompt=controller.display_video_prompt,
        eye_color=controller.eye_color,
        cached_eye_colors=controller.cached_eye_colors(),
        eye_color_in_flight=controller.eye_color_in_flight,
        video=status_response(controller.video_request) if controller.video_request else None,
        error=controller.error,
        rate_limit=rate_limit,
    )


@router.post(
    "",
    response_model=SessionResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def create_session(services: Services = Depends(get_services)) -> SessionResponse:
    session_id, controller = services.sessions.create()
    return session_response(session_id, controller)


@router.get("/{session_id}", response_model=SessionResponse, response_model_by_alias=True)
async def get_session_state(
    session_id: str,
    controller: PipelineController = Depends(get_session),
) -> SessionResponse:
    return session_response(session_id, controller)


@router.post("/{session_id}/photo", response_model=SessionResponse, response_model_by_alias=True)
async def submit_photo(
    session_id: str,
    body: SubmitPhotoRequest,
    request: Request,
    controller: PipelineController = Depends(get_session),
) -> SessionResponse:
    """Run the pipeline up to readyForVideo.

    Failures return the session to idle and are surfaced with the mapped
    status code (429 with quota metadata when rate limited).
    """
    image = decode_image(body.base64_image_data, body.mime_type)
    client_ip = get_client_ip(request)
    await controller.process(
        image,
        language=body.language,
        hint=body.example_prompt,
        enhanced=body.enhanced,
        eye_color=body.eye_color,
        identity=body.fingerprint or client_ip,
        client_ip=client_ip,
    )
    return session_response(session_id, controller)


@router.post(
    "/{session_id}/video",
    response_model=SessionResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_session_video(
    session_id: str,
    controller: PipelineController = Depends(get_session),
) -> SessionResponse:
    controller.start_video()
    return session_response(session_id, controller)


@router.post(
    "/{session_id}/eye-color", response_model=SessionResponse, response_model_by_alias=True
)
async def select_eye_color(
    session_id: str,
    body: EyeColorRequest,
    controller: PipelineController = Depends(get_session),
) -> SessionResponse:
    await controller.select_eye_color(body.eye_color)
    return session_response(session_id, controller)


@router.post("/{session_id}/reset", response_model=SessionResponse, response_model_by_alias=True)
async def reset_session(
    session_id: str,
    controller: PipelineController = Depends(get_session),
) -> SessionResponse:
    controller.reset()
    return session_response(session_id, controller)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    services: Services = Depends(get_services),
) -> Response:
    services.sessions.remove(session_id)
    logger.info("session.deleted", session_id=session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
