"""
Video Generation Client Tests

HTTP is served by httpx.MockTransport; no network access.

Run with:
    python -m pytest tests/test_video_client.py -v
"""

import asyncio
import json
import os
import sys

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import APIConfig, Config, GenerationConfig
from core.key_rotation import AllCredentialsFailed, NoCredentialsConfigured
from services.video_generation import (
    GenerationRequest,
    OperationStatus,
    VideoGenerationClient,
    VideoGenerationError,
    save_video,
    strip_data_url,
)

BASE = "https://veo.test/v1beta"
KEY_A = "key-alpha-1111"
KEY_B = "key-bravo-2222"


def make_config(keys=None, request_timeout=5.0) -> Config:
    return Config(
        api=APIConfig(
            gemini_api_keys=[KEY_A, KEY_B] if keys is None else keys,
            gemini_api_base=BASE,
            veo_model="veo-test",
        ),
        generation=GenerationConfig(request_timeout=request_timeout),
    )


def make_client(handler, **config_kwargs) -> VideoGenerationClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return VideoGenerationClient(config=make_config(**config_kwargs), http_client=http_client)


def done_payload(uri="https://veo.test/files/video.mp4"):
    return {
        "name": "operations/op-1",
        "done": True,
        "response": {
            "generateVideoResponse": {
                "generatedSamples": [{"video": {"uri": uri}}],
            },
        },
    }


class TestGenerationRequest:
    """Test payload construction."""

    def test_payload_without_image(self):
        payload = GenerationRequest(prompt="A fox in snow").build_payload()

        assert payload == {
            "instances": [
                {
                    "prompt": "A fox in snow",
                    "parameters": {"aspectRatio": "16:9", "resolution": "720p"},
                },
            ],
        }

    def test_payload_strips_data_url(self):
        request = GenerationRequest(
            prompt="Animate",
            image="data:image/png;base64,iVBORw0KGgo=",
            resolution="1080p",
            aspect_ratio="9:16",
        )

        instance = request.build_payload()["instances"][0]

        assert instance["image"] == {"bytesBase64Encoded": "iVBORw0KGgo="}
        assert instance["parameters"] == {"aspectRatio": "9:16", "resolution": "1080p"}

    def test_strip_data_url_leaves_raw_base64(self):
        assert strip_data_url("aGVsbG8=") == "aGVsbG8="


class TestStartGeneration:
    """Test generation start with key failover."""

    @pytest.mark.asyncio
    async def test_fails_over_to_second_key(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            key = request.headers["x-goog-api-key"]
            seen.append(key)
            assert request.url == f"{BASE}/models/veo-test:predictLongRunning"
            assert json.loads(request.content)["instances"][0]["prompt"] == "Waves"
            if key == KEY_A:
                return httpx.Response(429, text="quota exceeded")
            return httpx.Response(200, json={"name": "operations/op-1"})

        client = make_client(handler)
        started = await client.start_generation(GenerationRequest(prompt="Waves"))

        assert started.operation_name == "operations/op-1"
        assert seen == [KEY_A, KEY_B]
        assert started.key_status["usage_count"] == {"...2222": 1}
        assert started.key_status["error_count"]["...1111"] == 1

    @pytest.mark.asyncio
    async def test_explicit_keys_override_config(self):
        seen = []

        def handler(request):
            seen.append(request.headers["x-goog-api-key"])
            return httpx.Response(200, json={"name": "operations/op-2"})

        client = make_client(handler)
        started = await client.start_generation(
            GenerationRequest(prompt="Clouds"), api_keys=["", "request-key-9999"]
        )

        assert started.operation_name == "operations/op-2"
        assert seen == ["request-key-9999"]

    @pytest.mark.asyncio
    async def test_all_keys_fail(self):
        def handler(request):
            return httpx.Response(500, text="backend unavailable")

        client = make_client(handler)

        with pytest.raises(AllCredentialsFailed) as exc_info:
            await client.start_generation(GenerationRequest(prompt="Rain"))

        assert exc_info.value.attempts == 2
        assert "500" in exc_info.value.details
        assert isinstance(exc_info.value.last_error, VideoGenerationError)
        assert exc_info.value.last_error.status_code == 500

    @pytest.mark.asyncio
    async def test_missing_operation_name_is_failure(self):
        def handler(request):
            return httpx.Response(200, json={"metadata": {}})

        client = make_client(handler, keys=[KEY_A])

        with pytest.raises(AllCredentialsFailed) as exc_info:
            await client.start_generation(GenerationRequest(prompt="Sun"))

        assert "No operation name" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_no_keys_configured(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"name": "operations/x"})

        client = make_client(handler, keys=[])

        with pytest.raises(NoCredentialsConfigured):
            await client.start_generation(GenerationRequest(prompt="Moon"))

        assert calls == []

    @pytest.mark.asyncio
    async def test_slow_key_times_out_and_fails_over(self):
        async def handler(request):
            if request.headers["x-goog-api-key"] == KEY_A:
                await asyncio.sleep(5)
            return httpx.Response(200, json={"name": "operations/fast"})

        client = make_client(handler, request_timeout=0.05)
        started = await client.start_generation(GenerationRequest(prompt="Stars"))

        assert started.operation_name == "operations/fast"
        assert started.key_status["error_count"]["...1111"] == 1

    @pytest.mark.asyncio
    async def test_network_error_fails_over(self):
        def handler(request):
            if request.headers["x-goog-api-key"] == KEY_A:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"name": "operations/op-3"})

        client = make_client(handler)
        started = await client.start_generation(GenerationRequest(prompt="Snow"))

        assert started.operation_name == "operations/op-3"


class TestStatusAndDownload:
    """Test one-shot status and download calls."""

    @pytest.mark.asyncio
    async def test_status_in_progress(self):
        def handler(request):
            assert request.url == f"{BASE}/operations/op-1"
            assert request.headers["x-goog-api-key"] == KEY_A
            return httpx.Response(
                200,
                json={"name": "operations/op-1", "metadata": {"progressPercentage": 42}},
            )

        progress = []
        client = make_client(handler)
        client.on_progress = lambda name, percent: progress.append((name, percent))

        status = await client.check_status("operations/op-1", KEY_A)

        assert status == OperationStatus("operations/op-1", done=False, progress=42)
        assert progress == [("operations/op-1", 42)]

    @pytest.mark.asyncio
    async def test_status_done_with_video(self):
        client = make_client(lambda request: httpx.Response(200, json=done_payload()))

        status = await client.check_status("operations/op-1", KEY_A)

        assert status.done
        assert status.video_url == "https://veo.test/files/video.mp4"
        assert status.error is None

    @pytest.mark.asyncio
    async def test_status_done_without_video(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"done": True, "response": {}})
        )

        status = await client.check_status("operations/op-1", KEY_A)

        assert status.done
        assert status.video_url is None
        assert status.error == "Video generation completed but no video URL found"

    @pytest.mark.parametrize("response", [
        {"generateVideoResponse": None},
        {"generateVideoResponse": {"generatedSamples": None}},
        {"generateVideoResponse": {"generatedSamples": [None]}},
        {"generateVideoResponse": {"generatedSamples": [{"video": None}]}},
    ])
    def test_status_null_fields_mean_no_video(self, response):
        status = OperationStatus.from_response("op", {"done": True, "response": response})

        assert status.done
        assert status.video_url is None
        assert status.error == "Video generation completed but no video URL found"

    @pytest.mark.asyncio
    async def test_status_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(VideoGenerationError) as exc_info:
            await client.check_status("operations/op-1", KEY_A)

        assert exc_info.value.status_code is None
        assert exc_info.value.operation_name == "operations/op-1"
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["<html>proxy</html>", "[1, 2]"])
    async def test_status_malformed_body(self, body):
        client = make_client(lambda request: httpx.Response(200, text=body))

        with pytest.raises(VideoGenerationError, match="Malformed API response"):
            await client.check_status("operations/op-1", KEY_A)

    @pytest.mark.asyncio
    async def test_download_network_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        client = make_client(handler)

        with pytest.raises(VideoGenerationError, match="ReadTimeout"):
            await client.download_video("https://veo.test/files/video.mp4", KEY_A)

    @pytest.mark.asyncio
    async def test_status_done_with_error(self):
        client = make_client(
            lambda request: httpx.Response(
                200, json={"done": True, "error": {"code": 3, "message": "Unsafe prompt"}}
            )
        )

        status = await client.check_status("operations/op-1", KEY_A)

        assert status.error == "Unsafe prompt"

    @pytest.mark.asyncio
    async def test_status_http_error(self):
        client = make_client(lambda request: httpx.Response(404, text="not found"))

        with pytest.raises(VideoGenerationError) as exc_info:
            await client.check_status("operations/missing", KEY_A)

        assert exc_info.value.status_code == 404
        assert exc_info.value.operation_name == "operations/missing"

    @pytest.mark.asyncio
    async def test_download_video(self):
        def handler(request):
            assert request.headers["x-goog-api-key"] == KEY_A
            return httpx.Response(200, content=b"\x00\x00mp4-bytes")

        client = make_client(handler)

        content = await client.download_video("https://veo.test/files/video.mp4", KEY_A)

        assert content == b"\x00\x00mp4-bytes"

    @pytest.mark.asyncio
    async def test_download_failure(self):
        client = make_client(lambda request: httpx.Response(403))

        with pytest.raises(VideoGenerationError) as exc_info:
            await client.download_video("https://veo.test/files/video.mp4", KEY_A)

        assert exc_info.value.status_code == 403

    def test_first_key(self):
        client = make_client(lambda request: httpx.Response(200))

        assert client.first_key() == KEY_A
        assert client.first_key("  explicit  ") == "explicit"
        assert make_client(lambda r: httpx.Response(200), keys=[]).first_key() is None


class TestWaitForCompletion:
    """Test operation polling."""

    @pytest.mark.asyncio
    async def test_polls_until_done(self):
        responses = [
            httpx.Response(200, json={"metadata": {"progressPercentage": 10}}),
            httpx.Response(200, json={"metadata": {"progressPercentage": 60}}),
            httpx.Response(200, json=done_payload()),
        ]

        def handler(request):
            return responses.pop(0)

        client = make_client(handler)
        status = await client.wait_for_completion("operations/op-1", KEY_A, poll_interval=0)

        assert status.video_url == "https://veo.test/files/video.mp4"
        assert responses == []

    @pytest.mark.asyncio
    async def test_gives_up_after_max_polls(self):
        client = make_client(lambda request: httpx.Response(200, json={"done": False}))

        with pytest.raises(VideoGenerationError, match="did not complete"):
            await client.wait_for_completion(
                "operations/op-1", KEY_A, poll_interval=0, max_polls=2
            )

    @pytest.mark.asyncio
    async def test_completed_without_video_raises(self):
        client = make_client(lambda request: httpx.Response(200, json={"done": True}))

        with pytest.raises(VideoGenerationError, match="no video URL"):
            await client.wait_for_completion("operations/op-1", KEY_A, poll_interval=0)

    @pytest.mark.asyncio
    async def test_tolerates_transient_network_errors(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadTimeout("slow", request=request)
            return httpx.Response(200, json=done_payload())

        client = make_client(handler)
        status = await client.wait_for_completion("operations/op-1", KEY_A, poll_interval=0)

        assert status.done
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_network_errors(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(VideoGenerationError, match="ConnectError"):
            await client.wait_for_completion("operations/op-1", KEY_A, poll_interval=0)

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_api_error_stops_polling(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, text="not found")

        client = make_client(handler)

        with pytest.raises(VideoGenerationError) as exc_info:
            await client.wait_for_completion("operations/op-1", KEY_A, poll_interval=0)

        assert exc_info.value.status_code == 404
        assert len(calls) == 1


class TestSaveVideo:
    """Test writing downloaded videos to disk."""

    def test_save_video(self, tmp_path):
        path = save_video(b"video", output_dir=str(tmp_path / "out"), filename="clip.mp4")

        assert path == str(tmp_path / "out" / "clip.mp4")
        assert (tmp_path / "out" / "clip.mp4").read_bytes() == b"video"

    def test_save_video_generates_name(self, tmp_path):
        path = save_video(b"video", output_dir=str(tmp_path))

        assert path.endswith(".mp4")
        assert os.path.exists(path)
