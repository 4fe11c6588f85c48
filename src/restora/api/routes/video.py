"""Video generation API endpoints.

- POST /api/video/start - Start a video request, returns a handle immediately
- POST /api/video/status - Read the status of a video request
- POST /api/video/cancel - Cancel a running video request

The request runs as a background task in the VideoRequestRegistry; provider
polling and the single provider switch happen server-side.
"""

import base64

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field

from restora.api.dependencies import get_services
from restora.api.schemas import CamelModel, ImagePayload
from restora.core.dependencies import Services
from restora.models.video_job import VideoJob, VideoJobStatus
from restora.services.video import VideoRequest

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/video", tags=["video"])


class StartVideoRequest(CamelModel):
    prompt: str = Field(..., min_length=1)
    image_data: ImagePayload
    contains_children: bool = Field(
        default=False, description="Safety-routing signal from the analysis"
    )


class VideoHandleRequest(CamelModel):
    job_handle: str = Field(..., min_length=1)


class VideoStatusResponse(CamelModel):
    job_handle: str
    status: VideoJobStatus
    provider: str | None = None
    output_ref: str | None = Field(default=None, description="Video URL or data URI")
    error: str | None = None
    switched_provider: bool = False
    poll_count: int = 0


def output_ref(job: VideoJob | None) -> str | None:
    """Playable reference for a succeeded job: provider URL, or a data URI for raw bytes."""
    if job is None or job.status != VideoJobStatus.SUCCEEDED:
        return None
    if job.output_url:
        return job.output_url
    if job.output_data is not None:
        encoded = base64.b64encode(job.output_data).decode("ascii")
        return f"data:{job.output_mime_type};base64,{encoded}"
    return None


def status_response(request: VideoRequest) -> VideoStatusResponse:
    job = request.current
    return VideoStatusResponse(
        job_handle=request.request_id,
        status=request.status,
        provider=job.provider if job else None,
        output_ref=output_ref(job),
        error=request.error or (job.error if job else None),
        switched_provider=request.switched,
        poll_count=job.poll_count if job else 0,
    )


def _get_request(services: Services, job_handle: str) -> VideoRequest:
    request = services.video_requests.get(job_handle)
    if request is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Video job {job_handle} not found"
        )
    return request


@router.post("/start", response_model=VideoStatusResponse, response_model_by_alias=True)
async def start_video(
    body: StartVideoRequest,
    services: Services = Depends(get_services),
) -> VideoStatusResponse:
    """Start a video request without waiting for generation.

    Returns:
        {"jobHandle": ..., "status": "pending"}
    """
    image = body.image_data.to_asset()
    services.video.select_providers(body.contains_children)
    request = services.video_requests.start(body.prompt, image, body.contains_children)
    return status_response(request)


@router.post("/status", response_model=VideoStatusResponse, response_model_by_alias=True)
async def video_status(
    body: VideoHandleRequest,
    services: Services = Depends(get_services),
) -> VideoStatusResponse:
    return status_response(_get_request(services, body.job_handle))


@router.post("/cancel", response_model=VideoStatusResponse, response_model_by_alias=True)
async def cancel_video(
    body: VideoHandleRequest,
    services: Services = Depends(get_services),
) -> VideoStatusResponse:
    request = _get_request(services, body.job_handle)
    cancelled = services.video_requests.cancel(body.job_handle)
    logger.info("api.video.cancel", job_handle=body.job_handle, cancelled=cancelled)
    return status_response(request)
