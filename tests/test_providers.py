"""Tests for provider adapters and prompt builders.

Provider SDK clients are replaced with in-memory fakes, so no test touches
the network. Tests:
- Error classification into the service taxonomy (Replicate and Gemini)
- Strict analysis parsing
- Replicate output coercion (file objects, bytes, empty output)
- Replicate prediction status normalization
- Gemini edit image extraction and refusal detection
- Gemini Veo operation polling
- Instruction builders and validation
"""

from types import SimpleNamespace

import pytest

from fakes import make_image
from restora.models.video_job import VideoJobStatus
from restora.services import prompts
from restora.services.exceptions import (
    EditRefused,
    EditTransportError,
    IncompleteAnalysisError,
    RefusalError,
    TransportError,
    ValidationError,
)
from restora.services.providers import gemini_client, replicate_client
from restora.services.providers.base import JobHandle
from restora.services.providers.gemini_client import GeminiProvider, parse_analysis
from restora.services.providers.replicate_client import (
    ReplicateEditProvider,
    ReplicateVideoProvider,
    codeformer_input,
    seedream_input,
)

VALID_ANALYSIS_JSON = """{
    "containsChildren": false,
    "needsPerspectiveCorrection": true,
    "hasManyPeople": false,
    "isBlackAndWhite": true,
    "isVeryOld": true,
    "personCount": 2,
    "hasEyeColorPotential": false,
    "lightingInfo": {
        "primaryDirection": "above-left",
        "quality": "harsh",
        "type": "natural",
        "shadowStrength": "strong",
        "description": "Midday sun from the upper left"
    },
    "restorationPrompt": "Restore and colorize with warm daylight",
    "videoPrompt": "Two friends laugh softly, static camera",
    "suggestedFilename": "friends-at-the-beach"
}"""


class StatusError(Exception):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class CodeError(Exception):
    def __init__(self, message: str, code: int | None = None):
        super().__init__(message)
        self.code = code


class FakeFileOutput:
    def __init__(self, data: bytes):
        self.data = data

    def read(self) -> bytes:
        return self.data


class FakeReplicateClient:
    def __init__(self, run_result=None, run_error=None, predictions=None):
        self.run_result = run_result
        self.run_error = run_error
        self.run_calls = []
        self.created = []
        self.cancelled = []
        self._predictions = predictions or {}
        self.predictions = SimpleNamespace(
            create=self._create, get=self._get, cancel=self.cancelled.append
        )
        self.models = SimpleNamespace(predictions=SimpleNamespace(create=self._create))

    def run(self, model, input):
        self.run_calls.append((model, input))
        if self.run_error is not None:
            raise self.run_error
        return self.run_result

    def _create(self, input, version=None, model=None):
        self.created.append({"version": version, "model": model, "input": input})
        return SimpleNamespace(id="pred-123")

    def _get(self, prediction_id):
        return self._predictions[prediction_id]


class FakeGeminiClient:
    def __init__(self, response=None, operation=None):
        self.response = response
        self.operation = operation
        self.calls = []
        self.models = SimpleNamespace(generate_content=self._generate_content)
        self.operations = SimpleNamespace(get=lambda operation: self.operation)

    def _generate_content(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


def image_response(parts):
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=parts))])


class TestReplicateClassification:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (StatusError("Request timeout"), TransportError),
            (StatusError("Too many requests", status=429), TransportError),
            (StatusError("Internal error", status=502), TransportError),
            (StatusError("Unauthorized", status=401), TransportError),
            (StatusError("Input image is invalid", status=422), ValidationError),
            (StatusError("NSFW content detected"), RefusalError),
            (ConnectionError("connection reset"), TransportError),
        ],
    )
    def test_classify_error(self, error, expected):
        classified = replicate_client.classify_error(error)

        assert type(classified) is expected
        assert str(error) in str(classified)


class TestGeminiClassification:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (CodeError("RESOURCE_EXHAUSTED", code=429), TransportError),
            (CodeError("Internal", code=500), TransportError),
            (CodeError("API key not valid", code=403), TransportError),
            (CodeError("Invalid argument", code=400), ValidationError),
            (CodeError("Response blocked by safety filters", code=400), RefusalError),
            (TimeoutError("deadline exceeded"), TransportError),
        ],
    )
    def test_classify_error(self, error, expected):
        assert type(gemini_client.classify_error(error)) is expected


class TestParseAnalysis:
    def test_valid_response(self):
        analysis = parse_analysis(VALID_ANALYSIS_JSON)

        assert analysis.person_count == 2
        assert analysis.needs_perspective_correction is True
        assert analysis.lighting_info.primary_direction == "above-left"
        assert analysis.double_pass_reasons() == ["black_and_white", "very_old"]

    @pytest.mark.parametrize("text", [None, "", "   ", "not json", "[]"])
    def test_unparseable_response_is_incomplete(self, text):
        with pytest.raises(IncompleteAnalysisError):
            parse_analysis(text)

    def test_missing_field_is_incomplete(self):
        text = VALID_ANALYSIS_JSON.replace(
            '"videoPrompt": "Two friends laugh softly, static camera",', ""
        )

        with pytest.raises(IncompleteAnalysisError, match="videoPrompt"):
            parse_analysis(text)


@pytest.mark.asyncio
class TestReplicateEditProvider:
    async def test_file_output_is_read(self):
        client = FakeReplicateClient(run_result=[FakeFileOutput(b"restored-bytes")])
        provider = ReplicateEditProvider(
            api_token="",
            model="bytedance/seedream-4",
            build_input=seedream_input,
            name="seedream",
            client=client,
        )

        result = await provider.edit(make_image(), "Restore this photo")

        assert result.data == b"restored-bytes"
        model, payload = client.run_calls[0]
        assert model == "bytedance/seedream-4"
        assert payload["prompt"] == "Restore this photo"
        assert payload["image_input"][0].startswith("data:image/jpeg;base64,")

    async def test_raw_bytes_output(self):
        client = FakeReplicateClient(run_result=b"raw")
        provider = ReplicateEditProvider(
            api_token="", model="sczhou/codeformer", build_input=codeformer_input, client=client
        )

        result = await provider.edit(make_image(), "")

        assert result.data == b"raw"
        assert "prompt" not in client.run_calls[0][1]

    async def test_empty_output_is_transport_error(self):
        client = FakeReplicateClient(run_result=[])
        provider = ReplicateEditProvider(
            api_token="", model="m", build_input=seedream_input, client=client
        )

        with pytest.raises(EditTransportError, match="No output"):
            await provider.edit(make_image(), "Restore")

    async def test_connection_failure_is_transport_error(self):
        client = FakeReplicateClient(run_error=ConnectionError("connection refused"))
        provider = ReplicateEditProvider(
            api_token="", model="m", build_input=seedream_input, client=client
        )

        with pytest.raises(EditTransportError, match="connection refused"):
            await provider.edit(make_image(), "Restore")

    async def test_unexpected_sdk_failure_is_transport_error(self):
        client = FakeReplicateClient(run_error=RuntimeError("malformed prediction payload"))
        provider = ReplicateEditProvider(
            api_token="", model="m", build_input=seedream_input, client=client
        )

        with pytest.raises(EditTransportError, match="Unexpected Replicate error"):
            await provider.edit(make_image(), "Restore")

    async def test_missing_token_is_unavailable(self):
        provider = ReplicateEditProvider(api_token="", model="m", build_input=seedream_input)

        assert provider.is_available() is False
        with pytest.raises(EditTransportError, match="REPLICATE_API_TOKEN"):
            await provider.edit(make_image(), "Restore")


@pytest.mark.asyncio
class TestReplicateVideoProvider:
    async def test_start_with_model_name(self):
        client = FakeReplicateClient()
        provider = ReplicateVideoProvider(
            api_token="", model="bytedance/seedance-1-pro", client=client
        )

        handle = await provider.start_video("A gentle smile", make_image())

        assert handle == JobHandle(provider="replicate", job_id="pred-123")
        created = client.created[0]
        assert created["model"] == "bytedance/seedance-1-pro"
        assert created["input"]["prompt"].startswith("A gentle smile")
        assert "facial identity" in created["input"]["prompt"]

    async def test_start_with_pinned_version(self):
        client = FakeReplicateClient()
        provider = ReplicateVideoProvider(api_token="", model="owner/model:abc123", client=client)

        await provider.start_video("prompt", make_image())

        assert client.created[0]["version"] == "abc123"

    @pytest.mark.parametrize(
        "prediction_status, expected",
        [
            ("starting", VideoJobStatus.PENDING),
            ("processing", VideoJobStatus.PROCESSING),
            ("failed", VideoJobStatus.FAILED),
            ("canceled", VideoJobStatus.CANCELED),
        ],
    )
    async def test_status_mapping(self, prediction_status, expected):
        prediction = SimpleNamespace(status=prediction_status, output=None, error="boom")
        client = FakeReplicateClient(predictions={"pred-123": prediction})
        provider = ReplicateVideoProvider(api_token="", model="m", client=client)

        job = await provider.poll_video(JobHandle("replicate", "pred-123"))

        assert job.status == expected

    async def test_succeeded_prediction_exposes_url(self):
        prediction = SimpleNamespace(
            status="succeeded", output="https://replicate.delivery/video.mp4", error=None
        )
        client = FakeReplicateClient(predictions={"pred-123": prediction})
        provider = ReplicateVideoProvider(api_token="", model="m", client=client)

        job = await provider.poll_video(JobHandle("replicate", "pred-123"))

        assert job.status == VideoJobStatus.SUCCEEDED
        assert job.output_url == "https://replicate.delivery/video.mp4"

    async def test_succeeded_without_output_is_failed(self):
        prediction = SimpleNamespace(status="succeeded", output=None, error=None)
        client = FakeReplicateClient(predictions={"pred-123": prediction})
        provider = ReplicateVideoProvider(api_token="", model="m", client=client)

        job = await provider.poll_video(JobHandle("replicate", "pred-123"))

        assert job.status == VideoJobStatus.FAILED

    async def test_cancel(self):
        client = FakeReplicateClient()
        provider = ReplicateVideoProvider(api_token="", model="m", client=client)

        await provider.cancel_video(JobHandle("replicate", "pred-123"))

        assert client.cancelled == ["pred-123"]


@pytest.mark.asyncio
class TestGeminiProvider:
    async def test_analyze(self):
        client = FakeGeminiClient(SimpleNamespace(text=VALID_ANALYSIS_JSON, prompt_feedback=None))
        provider = GeminiProvider(api_key="", client=client)

        analysis = await provider.analyze(make_image(), "es", "A gentle smile")

        assert analysis.suggested_filename == "friends-at-the-beach"
        assert client.calls[0]["model"] == "gemini-2.5-pro"

    async def test_analyze_incomplete(self):
        client = FakeGeminiClient(SimpleNamespace(text="{}", prompt_feedback=None))
        provider = GeminiProvider(api_key="", client=client)

        with pytest.raises(IncompleteAnalysisError):
            await provider.analyze(make_image(), "en", "hint")

    async def test_edit_returns_inline_image(self):
        part = SimpleNamespace(inline_data=SimpleNamespace(data=b"edited", mime_type="image/png"))
        client = FakeGeminiClient(image_response([SimpleNamespace(inline_data=None), part]))
        provider = GeminiProvider(api_key="", client=client)
        reference = make_image("reference")

        result = await provider.edit(make_image(), "Restore", reference_image=reference)

        assert result.data == b"edited"
        assert result.mime_type == "image/png"
        contents = client.calls[0]["contents"]
        assert len(contents) == 3
        assert contents[-1] == "Restore"

    async def test_edit_without_image_is_refusal(self):
        text_part = SimpleNamespace(inline_data=None, text="I can't help with that.")
        client = FakeGeminiClient(image_response([text_part]))
        provider = GeminiProvider(api_key="", client=client)

        with pytest.raises(EditRefused, match="might have refused"):
            await provider.edit(make_image(), "Restore")

    async def test_translate(self):
        client = FakeGeminiClient(SimpleNamespace(text="  Una sonrisa suave  "))
        provider = GeminiProvider(api_key="", client=client)

        assert await provider.translate("A gentle smile", "es") == "Una sonrisa suave"

    async def test_empty_translation_is_rejected(self):
        client = FakeGeminiClient(SimpleNamespace(text=""))
        provider = GeminiProvider(api_key="", client=client)

        with pytest.raises(ValidationError):
            await provider.translate("A gentle smile", "es")

    async def test_poll_running_operation(self):
        client = FakeGeminiClient(operation=SimpleNamespace(done=False))
        provider = GeminiProvider(api_key="", client=client)

        job = await provider.poll_video(JobHandle("gemini", "operations/abc"))

        assert job.status == VideoJobStatus.PROCESSING

    async def test_poll_finished_operation_with_bytes(self):
        video = SimpleNamespace(video_bytes=b"mp4-bytes", uri=None)
        operation = SimpleNamespace(
            done=True,
            error=None,
            response=SimpleNamespace(generated_videos=[SimpleNamespace(video=video)]),
        )
        provider = GeminiProvider(api_key="", client=FakeGeminiClient(operation=operation))

        job = await provider.poll_video(JobHandle("gemini", "operations/abc"))

        assert job.status == VideoJobStatus.SUCCEEDED
        assert job.output_data == b"mp4-bytes"

    async def test_poll_failed_operation(self):
        operation = SimpleNamespace(done=True, error={"message": "quota"}, response=None)
        provider = GeminiProvider(api_key="", client=FakeGeminiClient(operation=operation))

        job = await provider.poll_video(JobHandle("gemini", "operations/abc"))

        assert job.status == VideoJobStatus.FAILED
        assert "quota" in job.error

    async def test_unexpected_sdk_error_is_transport_error(self):
        def broken_get(operation):
            raise ValueError("unexpected operation payload")

        client = FakeGeminiClient()
        client.operations = SimpleNamespace(get=broken_get)
        provider = GeminiProvider(api_key="", client=client)

        with pytest.raises(TransportError, match="Unexpected Gemini error"):
            await provider.poll_video(JobHandle("gemini", "operations/abc"))

    async def test_missing_key_is_unavailable(self):
        provider = GeminiProvider(api_key="")

        assert provider.is_available() is False
        with pytest.raises(TransportError, match="GOOGLE_GENAI_API_KEY"):
            await provider.translate("text", "es")


class TestPrompts:
    def test_restoration_instruction_flags(self):
        instruction = prompts.build_restoration_instruction(
            "Restore this photo",
            is_black_and_white=True,
            person_count=3,
            eye_color="green",
            has_eye_color_potential=False,
        )

        assert instruction.startswith("Restore this photo")
        assert "exactly 3 people" in instruction
        assert "green" not in instruction
        assert instruction.endswith(prompts.REALISTIC_COLOR_GUIDANCE)

    def test_empty_instruction_is_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            prompts.build_restoration_instruction("   ")

    def test_overlong_instruction_is_rejected(self):
        with pytest.raises(ValidationError, match="maximum length"):
            prompts.validate_instruction("x" * (prompts.MAX_INSTRUCTION_LENGTH + 1))

    def test_eye_color_instruction(self):
        instruction = prompts.build_eye_color_instruction(" Hazel ")

        assert instruction.startswith("ONLY change the eye color to natural hazel")

    def test_analysis_prompt_names_language(self):
        prompt = prompts.build_analysis_prompt("es", "A gentle smile")

        assert "Spanish" in prompt
        assert "A gentle smile" in prompt

    def test_unknown_language(self):
        with pytest.raises(ValidationError):
            prompts.language_name("de")
