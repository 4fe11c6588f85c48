"""Replicate adapters for blind restoration, fallback editing and video generation.

Replicate model outputs come back in several shapes (file objects with a
``read()`` method, URL strings, lists of either, raw bytes). They are
coerced here, once, into ImageAsset/VideoJob values.
"""

import asyncio
from typing import Any, Callable

import httpx
import replicate
import structlog
from replicate.exceptions import ModelError
from replicate.exceptions import ReplicateError as ReplicateAPIError

from restora.models.image import ImageAsset
from restora.models.video_job import VideoJob, VideoJobStatus
from restora.services.exceptions import (
    EditRefused,
    EditTransportError,
    RefusalError,
    ServiceError,
    TransportError,
    ValidationError,
)
from restora.services.providers.base import JobHandle

logger = structlog.get_logger(__name__)

IDENTITY_SUFFIX = (
    ". CRITICAL: Maintain exact facial identity and features from source image. "
    "Preserve exact hairstyle, clothing, and appearance. Ensure photorealistic "
    "consistency with subtle, natural movements only."
)

# Replicate prediction status -> normalized VideoJob status
PREDICTION_STATUS_MAP = {
    "starting": VideoJobStatus.PENDING,
    "processing": VideoJobStatus.PROCESSING,
    "succeeded": VideoJobStatus.SUCCEEDED,
    "failed": VideoJobStatus.FAILED,
    "canceled": VideoJobStatus.CANCELED,
}


def classify_error(exception: Exception) -> ServiceError:
    """Classify a Replicate SDK or network exception into the service taxonomy.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified ServiceError subclass instance

    Classification rules:
        - Timeout errors → TransportError
        - 429 (rate limit) → TransportError
        - 5xx (service unavailable) → TransportError
        - 401/403 (authentication) → TransportError (provider unavailable)
        - Content policy violations → RefusalError
        - 400/422 (invalid input) → ValidationError
        - Connection errors → TransportError
        - Anything else → TransportError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()
    status = getattr(exception, "status", None)

    if (
        "content policy" in error_message_lower
        or "nsfw" in error_message_lower
        or "safety" in error_message_lower
        or "sensitive" in error_message_lower
        or "inappropriate" in error_message_lower
    ):
        return RefusalError(f"Content policy violation: {error_message}")

    if "timeout" in error_message_lower or isinstance(
        exception, (TimeoutError, httpx.TimeoutException)
    ):
        return TransportError(f"Network timeout: {error_message}")

    if status == 429 or "429" in error_message or "rate limit" in error_message_lower:
        return TransportError(f"Rate limit exceeded: {error_message}")

    if (isinstance(status, int) and status >= 500) or "503" in error_message:
        return TransportError(f"Service unavailable: {error_message}")

    if (
        status in (401, 403)
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return TransportError(f"Authentication failed: {error_message}")

    if status in (400, 422):
        return ValidationError(f"Invalid request: {error_message}")

    if isinstance(exception, (ConnectionError, OSError, httpx.TransportError)):
        return TransportError(f"Connection error: {error_message}")

    return TransportError(f"Replicate error: {error_message}")


def codeformer_input(image: ImageAsset, instruction: str) -> dict[str, Any]:
    """CodeFormer does blind face restoration: the instruction is ignored."""
    return {
        "image": image.to_data_uri(),
        "upscale": 2,
        "face_upsample": True,
        "background_enhance": True,
        "codeformer_fidelity": 0.8,
    }


def seedream_input(image: ImageAsset, instruction: str) -> dict[str, Any]:
    """Seedream-4 is prompt-driven and keeps the input aspect ratio."""
    return {
        "prompt": instruction,
        "image_input": [image.to_data_uri()],
        "size": "2K",
        "aspect_ratio": "match_input_image",
        "max_images": 1,
    }


def seedance_input(prompt: str, image: ImageAsset) -> dict[str, Any]:
    return {
        "fps": 24,
        "image": image.to_data_uri(),
        "prompt": f"{prompt}{IDENTITY_SUFFIX}",
        "duration": 5,
        "resolution": "480p",
        "camera_fixed": True,
        "aspect_ratio": "16:9",
    }


async def download(url: str, timeout: float = 60.0) -> tuple[bytes, str | None]:
    """Download a generated artifact.

    Raises:
        TransportError: On network failure or non-2xx response
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            content_type = response.headers.get("content-type")
            return response.content, content_type.split(";")[0] if content_type else None
    except httpx.HTTPStatusError as e:
        raise TransportError(
            f"Failed to download artifact ({e.response.status_code}): {url}"
        ) from e
    except httpx.HTTPError as e:
        raise TransportError(f"Failed to download artifact: {e}") from e


def _first(output: Any) -> Any:
    if isinstance(output, (list, tuple)):
        return output[0] if output else None
    return output


def _url_of(output: Any) -> str | None:
    """URL of a prediction output when it exposes one."""
    item = _first(output)
    if isinstance(item, str):
        return item
    url = getattr(item, "url", None)
    if callable(url):
        url = url()
    return str(url) if url else None


class ReplicateBase:
    """Shared Replicate client handling."""

    def __init__(self, api_token: str, client: Any | None = None):
        self.api_token = api_token
        self._client = client

    def is_available(self) -> bool:
        return bool(self.api_token) or self._client is not None

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.api_token:
                raise TransportError("REPLICATE_API_TOKEN not configured")
            self._client = replicate.Client(api_token=self.api_token)
        return self._client

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a synchronous SDK call in a worker thread and classify its errors."""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except ServiceError:
            raise
        except (ReplicateAPIError, ModelError) as e:
            raise classify_error(e) from e
        except (ConnectionError, OSError, TimeoutError, httpx.HTTPError) as e:
            raise classify_error(e) from e
        except Exception as e:
            # Unexpected SDK failure: treat as availability problem of this provider
            raise TransportError(f"Unexpected Replicate error: {e}") from e


class ReplicateEditProvider(ReplicateBase):
    """Image edit/restoration via a Replicate model.

    The input builder decides whether the model is prompt-driven
    (Seedream-4) or performs blind restoration (CodeFormer).
    """

    def __init__(
        self,
        api_token: str,
        model: str,
        build_input: Callable[[ImageAsset, str], dict[str, Any]],
        name: str = "replicate",
        client: Any | None = None,
    ):
        super().__init__(api_token, client)
        self.model = model
        self.build_input = build_input
        self.name = name

    async def edit(
        self,
        image: ImageAsset,
        instruction: str,
        reference_image: ImageAsset | None = None,
    ) -> ImageAsset:
        """Run the model on the image and return the produced image.

        Raises:
            EditRefused: Content policy refusal
            EditTransportError: Network/availability failure or unusable output
            ValidationError: Input rejected by the model
        """
        logger.info("replicate.edit.started", provider=self.name, model=self.model)
        try:
            output = await self._call(
                self.client.run, self.model, input=self.build_input(image, instruction)
            )
        except RefusalError as e:
            raise EditRefused(str(e)) from e
        except TransportError as e:
            raise EditTransportError(str(e)) from e

        if not output:
            raise EditTransportError(f"No output returned from {self.model}")

        data, mime_type = await self._read_image(_first(output))
        logger.info("replicate.edit.succeeded", provider=self.name, size=len(data))
        return ImageAsset(data=data, mime_type=mime_type or "image/png")

    async def _read_image(self, item: Any) -> tuple[bytes, str | None]:
        """Coerce a model output item into bytes."""
        try:
            if isinstance(item, (bytes, bytearray)):
                return bytes(item), None
            if isinstance(item, str):
                return await download(item)
            if hasattr(item, "read"):
                data = await asyncio.to_thread(item.read)
                return bytes(data), None
        except TransportError as e:
            raise EditTransportError(str(e)) from e
        raise EditTransportError(
            f"Unable to process Replicate output of type {type(item).__name__}"
        )


class ReplicateVideoProvider(ReplicateBase):
    """Asynchronous video generation via Replicate predictions."""

    def __init__(
        self,
        api_token: str,
        model: str,
        build_input: Callable[[str, ImageAsset], dict[str, Any]] = seedance_input,
        name: str = "replicate",
        client: Any | None = None,
    ):
        super().__init__(api_token, client)
        self.model = model
        self.build_input = build_input
        self.name = name

    async def start_video(self, prompt: str, image: ImageAsset) -> JobHandle:
        """Create a prediction and return its id without waiting for completion."""
        payload = self.build_input(prompt, image)
        if ":" in self.model:
            version = self.model.split(":", 1)[1]
            prediction = await self._call(
                self.client.predictions.create, version=version, input=payload
            )
        else:
            prediction = await self._call(
                self.client.models.predictions.create, model=self.model, input=payload
            )
        logger.info("replicate.video.started", model=self.model, prediction_id=prediction.id)
        return JobHandle(provider=self.name, job_id=prediction.id)

    async def poll_video(self, handle: JobHandle) -> VideoJob:
        prediction = await self._call(self.client.predictions.get, handle.job_id)
        status = PREDICTION_STATUS_MAP.get(prediction.status, VideoJobStatus.PROCESSING)
        job = VideoJob(handle=handle.job_id, provider=self.name, status=status)

        if status == VideoJobStatus.SUCCEEDED:
            url = _url_of(prediction.output)
            if not url:
                job.status = VideoJobStatus.FAILED
                job.error = "Prediction succeeded without a video URL"
            else:
                job.output_url = url
        elif status in (VideoJobStatus.FAILED, VideoJobStatus.CANCELED):
            job.error = str(prediction.error) if prediction.error else None
        return job

    async def cancel_video(self, handle: JobHandle) -> None:
        await self._call(self.client.predictions.cancel, handle.job_id)
