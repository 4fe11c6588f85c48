"""Google Gemini adapter: analysis, prompt-driven editing, translation and Veo video."""

import asyncio
import json
from typing import Any, Callable

import httpx
import structlog
from google import genai
from google.genai import errors, types
from pydantic import ValidationError as SchemaValidationError

from restora.models.analysis import AnalysisResult
from restora.models.image import ImageAsset
from restora.models.video_job import VideoJob, VideoJobStatus
from restora.services import prompts
from restora.services.exceptions import (
    AnalysisError,
    EditRefused,
    EditTransportError,
    IncompleteAnalysisError,
    RefusalError,
    ServiceError,
    TransportError,
    ValidationError,
)
from restora.services.providers.base import JobHandle

logger = structlog.get_logger(__name__)


def _string(description: str) -> types.Schema:
    return types.Schema(type=types.Type.STRING, description=description)


def _boolean(description: str) -> types.Schema:
    return types.Schema(type=types.Type.BOOLEAN, description=description)


LIGHTING_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    description="Detailed analysis of the lighting in the photograph",
    properties={
        "primaryDirection": _string(
            "Primary light source direction: left, right, top, bottom, front, back-left, "
            "back-right, above-left or above-right."
        ),
        "quality": _string("Quality of the light: soft, harsh, diffused or direct."),
        "type": _string("Lighting type: natural, window, studio, flash, mixed or ambient."),
        "shadowStrength": _string("Shadow strength: strong, moderate, subtle or minimal."),
        "description": _string("Natural language description of the lighting setup."),
    },
    required=["primaryDirection", "quality", "type", "shadowStrength", "description"],
)

ANALYSIS_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "containsChildren": _boolean("True if any individual appears to be under 18."),
        "needsPerspectiveCorrection": _boolean(
            "True if the image shows a physical photograph within another scene that must "
            "be extracted and isolated."
        ),
        "hasManyPeople": _boolean("True if the image contains 7 or more people."),
        "isBlackAndWhite": _boolean(
            "True if the photograph is black and white or has very faded colors."
        ),
        "isVeryOld": _boolean("True if the photograph appears to be pre-1960s."),
        "personCount": types.Schema(
            type=types.Type.INTEGER, description="Exact count of people visible."
        ),
        "hasEyeColorPotential": _boolean(
            "True only if exactly one person is visible AND the image lacks natural colors."
        ),
        "lightingInfo": LIGHTING_SCHEMA,
        "restorationPrompt": _string(
            "Realistic colorization instruction preserving lighting, under 40 words."
        ),
        "videoPrompt": _string("Cinematic English prompt for a short, subtle animation."),
        "suggestedFilename": _string("Short URL-safe filename without extension."),
    },
    required=[
        "containsChildren",
        "needsPerspectiveCorrection",
        "hasManyPeople",
        "isBlackAndWhite",
        "isVeryOld",
        "personCount",
        "hasEyeColorPotential",
        "lightingInfo",
        "restorationPrompt",
        "videoPrompt",
        "suggestedFilename",
    ],
)


def classify_error(exception: Exception) -> ServiceError:
    """Classify a google-genai SDK or network exception into the service taxonomy.

    Classification rules:
        - 429 / 5xx / timeouts / connection errors → TransportError
        - 401/403 → TransportError (provider unavailable)
        - Safety blocks → RefusalError
        - Other 4xx → ValidationError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()
    code = getattr(exception, "code", None)

    if "safety" in error_message_lower or "blocked" in error_message_lower:
        return RefusalError(f"Content blocked by provider: {error_message}")

    if code == 429 or "resource_exhausted" in error_message_lower:
        return TransportError(f"Rate limit exceeded: {error_message}")

    if isinstance(code, int) and code >= 500:
        return TransportError(f"Service unavailable: {error_message}")

    if code in (401, 403):
        return TransportError(f"Authentication failed: {error_message}")

    if isinstance(code, int) and 400 <= code < 500:
        return ValidationError(f"Invalid request: {error_message}")

    if isinstance(exception, (TimeoutError, ConnectionError, OSError, httpx.HTTPError)):
        return TransportError(f"Connection error: {error_message}")

    return TransportError(f"Gemini error: {error_message}")


def parse_analysis(text: str | None) -> AnalysisResult:
    """Parse the structured analysis response.

    Raises:
        IncompleteAnalysisError: Empty, non-JSON, or missing required fields
    """
    if not text or not text.strip():
        raise IncompleteAnalysisError("AI analysis returned empty response.")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise IncompleteAnalysisError(f"AI analysis returned invalid JSON: {e}") from e
    try:
        return AnalysisResult.model_validate(payload)
    except SchemaValidationError as e:
        missing = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise IncompleteAnalysisError(
            f"AI analysis response is incomplete or invalid (fields: {', '.join(missing)})"
        ) from e


def _image_part(image: ImageAsset) -> types.Part:
    return types.Part.from_bytes(data=image.data, mime_type=image.mime_type)


class GeminiProvider:
    """Adapter over the google-genai client.

    Implements the analysis, edit, translation and video contracts.
    """

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        analysis_model: str = "gemini-2.5-pro",
        edit_model: str = "gemini-2.5-flash-image-preview",
        video_model: str = "veo-3.0-fast-generate-001",
        translation_model: str | None = None,
        client: Any | None = None,
    ):
        self.api_key = api_key
        self.analysis_model = analysis_model
        self.edit_model = edit_model
        self.video_model = video_model
        self.translation_model = translation_model or analysis_model
        self._client = client

    def is_available(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise TransportError("GOOGLE_GENAI_API_KEY not configured")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _call(self, func: Callable[..., Any], **kwargs: Any) -> Any:
        """Run a synchronous SDK call in a worker thread and classify its errors."""
        try:
            return await asyncio.to_thread(func, **kwargs)
        except ServiceError:
            raise
        except errors.APIError as e:
            raise classify_error(e) from e
        except (ConnectionError, OSError, TimeoutError, httpx.HTTPError) as e:
            raise classify_error(e) from e
        except Exception as e:
            # Unexpected SDK failure: treat as availability problem of this provider
            raise TransportError(f"Unexpected Gemini error: {e}") from e

    async def analyze(self, image: ImageAsset, language: str, hint: str) -> AnalysisResult:
        """Analyze an image against the strict analysis schema.

        Raises:
            IncompleteAnalysisError: Response missing required fields
            AnalysisError: Provider refused or rejected the request
            TransportError: Network/availability failure
        """
        prompt = prompts.build_analysis_prompt(language, hint)
        try:
            response = await self._call(
                self.client.models.generate_content,
                model=self.analysis_model,
                contents=[_image_part(image), prompt],
                config=types.GenerateContentConfig(
                    temperature=0.5,
                    response_mime_type="application/json",
                    response_schema=ANALYSIS_SCHEMA,
                ),
            )
        except (RefusalError, ValidationError) as e:
            raise AnalysisError(f"AI analysis was rejected: {e}") from e

        feedback = getattr(response, "prompt_feedback", None)
        if feedback is not None and getattr(feedback, "block_reason", None):
            raise AnalysisError(f"AI analysis was blocked: {feedback.block_reason}")

        return parse_analysis(response.text)

    async def edit(
        self,
        image: ImageAsset,
        instruction: str,
        reference_image: ImageAsset | None = None,
    ) -> ImageAsset:
        """Apply an instruction to an image.

        The optional reference image is sent first, the image to edit last,
        followed by the instruction.

        Raises:
            EditRefused: Response contained no image part
            EditTransportError: Network/availability failure
        """
        parts: list[Any] = []
        if reference_image is not None:
            parts.append(_image_part(reference_image))
        parts.append(_image_part(image))
        parts.append(instruction)

        try:
            response = await self._call(
                self.client.models.generate_content,
                model=self.edit_model,
                contents=parts,
                config=types.GenerateContentConfig(response_modalities=["IMAGE", "TEXT"]),
            )
        except RefusalError as e:
            raise EditRefused(str(e)) from e
        except TransportError as e:
            raise EditTransportError(str(e)) from e

        candidates = getattr(response, "candidates", None) or []
        content = getattr(candidates[0], "content", None) if candidates else None
        for part in getattr(content, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is not None and inline.data and inline.mime_type:
                return ImageAsset(data=inline.data, mime_type=inline.mime_type)

        raise EditRefused(
            "The AI did not return an edited image. It might have refused the request."
        )

    async def translate(self, text: str, target_language: str) -> str:
        """Translate a prompt for display.

        Raises:
            ValidationError: Unsupported language or empty translation
            TransportError: Network/availability failure
        """
        response = await self._call(
            self.client.models.generate_content,
            model=self.translation_model,
            contents=prompts.build_translation_prompt(text, target_language),
        )
        translated = (response.text or "").strip()
        if not translated:
            raise ValidationError("No translation received from provider")
        return translated

    async def start_video(self, prompt: str, image: ImageAsset) -> JobHandle:
        operation = await self._call(
            self.client.models.generate_videos,
            model=self.video_model,
            prompt=prompt,
            image=types.Image(image_bytes=image.data, mime_type=image.mime_type),
            config=types.GenerateVideosConfig(number_of_videos=1),
        )
        logger.info("gemini.video.started", operation=operation.name)
        return JobHandle(provider=self.name, job_id=operation.name)

    async def poll_video(self, handle: JobHandle) -> VideoJob:
        operation = await self._call(
            self.client.operations.get,
            operation=types.GenerateVideosOperation(name=handle.job_id),
        )
        job = VideoJob(handle=handle.job_id, provider=self.name, status=VideoJobStatus.PROCESSING)
        if not operation.done:
            return job

        if operation.error:
            message = operation.error.get("message") if isinstance(operation.error, dict) else None
            job.status = VideoJobStatus.FAILED
            job.error = f"Video generation failed during processing: {message or operation.error}"
            return job

        videos = getattr(operation.response, "generated_videos", None) or []
        video = videos[0].video if videos else None
        if video is None:
            job.status = VideoJobStatus.FAILED
            job.error = "Video generation completed, but no video was returned."
            return job

        if video.video_bytes:
            job.output_data = video.video_bytes
        elif video.uri:
            job.output_data = await self._download(video.uri)
        else:
            job.status = VideoJobStatus.FAILED
            job.error = "Video generation completed, but no download link was found."
            return job

        job.status = VideoJobStatus.SUCCEEDED
        return job

    async def cancel_video(self, handle: JobHandle) -> None:
        # Veo operations cannot be cancelled; the orchestrator stops polling instead.
        logger.debug("gemini.video.cancel_unsupported", operation=handle.job_id)

    async def _download(self, uri: str) -> bytes:
        try:
            async with httpx.AsyncClient(timeout=120.0, follow_redirects=True) as client:
                response = await client.get(uri, headers={"x-goog-api-key": self.api_key})
                response.raise_for_status()
                return response.content
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to download video: {e}") from e
        except Exception as e:
            raise TransportError(f"Unexpected error downloading video: {e}") from e
