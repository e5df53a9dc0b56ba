"""
Veo Video Generation Client

Thin async wrapper around the Gemini long-running video endpoints:
- start: POST models/{model}:predictLongRunning, with key failover
- status: GET the operation, first configured key only
- download: GET the finished asset, first configured key only

Starting a generation builds a fresh KeyPool per call, so key health is
scoped to that one request.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from core.config import Config, get_config
from core.key_pool import KeyPool
from core.key_rotation import AttemptFailed, run_with_key_rotation

logger = logging.getLogger(__name__)

SERVICE_NAME = "veo"

_DATA_URL_PREFIX = re.compile(r"^data:image/\w+;base64,")


class VideoGenerationError(AttemptFailed):
    """Raised when a call to the video API fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        operation_name: Optional[str] = None,
    ):
        self.status_code = status_code
        self.operation_name = operation_name
        super().__init__(message)


def strip_data_url(image: str) -> str:
    """Drop a data:image/...;base64, prefix, leaving the raw base64 payload."""
    return _DATA_URL_PREFIX.sub("", image)


@dataclass
class GenerationRequest:
    """Request for video generation."""
    prompt: str
    image: Optional[str] = None  # base64, optionally as a data URL
    resolution: str = "720p"
    aspect_ratio: str = "16:9"

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def build_payload(self) -> dict:
        """Request body for predictLongRunning."""
        instance: dict[str, Any] = {
            "prompt": self.prompt,
            "parameters": {
                "aspectRatio": self.aspect_ratio,
                "resolution": self.resolution,
            },
        }
        if self.image:
            instance["image"] = {"bytesBase64Encoded": strip_data_url(self.image)}
        return {"instances": [instance]}


@dataclass
class GenerationStarted:
    """A generation accepted by the API."""
    operation_name: str
    request_id: str
    key_status: dict = field(default_factory=dict)


@dataclass
class OperationStatus:
    """State of a long-running generation operation."""
    operation_name: str
    done: bool
    video_url: Optional[str] = None
    progress: int = 0
    error: Optional[str] = None

    @classmethod
    def from_response(cls, operation_name: str, data: dict) -> "OperationStatus":
        if not data.get("done"):
            metadata = data.get("metadata") or {}
            return cls(
                operation_name=operation_name,
                done=False,
                progress=int(metadata.get("progressPercentage") or 0),
            )

        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            return cls(
                operation_name=operation_name,
                done=True,
                progress=100,
                error=message or "Video generation failed",
            )

        video_response = (data.get("response") or {}).get("generateVideoResponse") or {}
        samples = video_response.get("generatedSamples") or []
        first = samples[0] if samples and isinstance(samples[0], dict) else {}
        video_url = (first.get("video") or {}).get("uri")

        if not video_url:
            return cls(
                operation_name=operation_name,
                done=True,
                progress=100,
                error="Video generation completed but no video URL found",
            )

        return cls(
            operation_name=operation_name,
            done=True,
            video_url=video_url,
            progress=100,
        )


class VideoGenerationClient:
    """
    Client for Veo video generation.

    Usage:
        async with VideoGenerationClient() as client:
            started = await client.start_generation(
                GenerationRequest(prompt="A lighthouse at dusk, slow dolly in"),
                api_keys=["key-a", "key-b"],
            )
            status = await client.wait_for_completion(started.operation_name, "key-a")
            content = await client.download_video(status.video_url, "key-a")
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        on_progress: Optional[Callable[[str, int], None]] = None,
    ):
        """
        Initialize the video generation client.

        Args:
            config: Optional config override
            http_client: Optional pre-built HTTP client (closed by the caller)
            on_progress: Callback for progress updates (operation_name, percent)
        """
        self.config = config or get_config()
        self.on_progress = on_progress
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> "VideoGenerationClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=120.0)
            self._owns_client = True
        return self._http_client

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    def _emit_progress(self, operation_name: str, percent: int):
        """Emit progress update via callback."""
        if self.on_progress:
            try:
                self.on_progress(operation_name, percent)
            except Exception as e:
                logger.warning(f"Progress callback failed: {e}")

    def _resolve_keys(self, api_keys: Optional[list[str]]) -> list[str]:
        if api_keys is None:
            return list(self.config.api.gemini_api_keys)
        return list(api_keys)

    def first_key(self, api_key: Optional[str] = None) -> Optional[str]:
        """Key for one-shot calls: the explicit one, else the first configured."""
        if api_key and api_key.strip():
            return api_key.strip()
        keys = self.config.api.gemini_api_keys
        return keys[0] if keys else None

    async def start_generation(
        self,
        request: GenerationRequest,
        api_keys: Optional[list[str]] = None,
    ) -> GenerationStarted:
        """
        Submit a generation, failing over across the given keys.

        Args:
            request: Prompt and options
            api_keys: Keys to try in order; defaults to GEMINI_API_KEYS

        Returns:
            GenerationStarted with the operation name to poll

        Raises:
            NoCredentialsConfigured: No usable keys
            AllCredentialsFailed: Every key was rejected or errored
        """
        pool = KeyPool(self._resolve_keys(api_keys))
        payload = request.build_payload()
        timeout = self.config.generation.request_timeout

        logger.info(
            f"Veo request {request.request_id}: {len(pool)} key(s), "
            f"resolution={request.resolution}, aspect_ratio={request.aspect_ratio}, "
            f"prompt={request.prompt[:50]}..."
        )

        async def attempt(key: str) -> str:
            return await asyncio.wait_for(self._submit(payload, key), timeout=timeout)

        operation_name = await run_with_key_rotation(
            pool, attempt, service_name=SERVICE_NAME
        )
        logger.info(f"Veo operation started: {operation_name}")

        return GenerationStarted(
            operation_name=operation_name,
            request_id=request.request_id,
            key_status=pool.get_status(),
        )

    async def _submit(self, payload: dict, api_key: str) -> str:
        """One predictLongRunning call with one key."""
        client = await self._get_client()
        url = (
            f"{self.config.api.gemini_api_base}/models/"
            f"{self.config.api.veo_model}:predictLongRunning"
        )

        response = await client.post(
            url,
            json=payload,
            headers={
                "Content-Type": "application/json",
                "x-goog-api-key": api_key,
            },
        )

        if not response.is_success:
            raise VideoGenerationError(
                f"API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise VideoGenerationError(
                f"Malformed API response: {e}",
                status_code=response.status_code,
            ) from e

        operation_name = data.get("name") if isinstance(data, dict) else None
        if not operation_name:
            raise VideoGenerationError(
                "No operation name in API response",
                status_code=response.status_code,
            )
        return operation_name

    async def check_status(self, operation_name: str, api_key: str) -> OperationStatus:
        """
        Get the current state of a generation operation.

        Raises:
            VideoGenerationError: The request failed, the API returned a
                non-2xx response, or the body was not a JSON object
        """
        client = await self._get_client()
        try:
            response = await client.get(
                f"{self.config.api.gemini_api_base}/{operation_name}",
                headers={"x-goog-api-key": api_key},
            )
        except httpx.RequestError as e:
            raise VideoGenerationError(
                f"Network error while checking status: {type(e).__name__}: {e}",
                operation_name=operation_name,
            ) from e

        if not response.is_success:
            raise VideoGenerationError(
                f"API error: {response.status_code} - {response.text}",
                status_code=response.status_code,
                operation_name=operation_name,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise VideoGenerationError(
                f"Malformed API response: {e}",
                operation_name=operation_name,
            ) from e
        if not isinstance(data, dict):
            raise VideoGenerationError(
                "Malformed API response: expected a JSON object",
                operation_name=operation_name,
            )

        status = OperationStatus.from_response(operation_name, data)
        self._emit_progress(operation_name, status.progress)
        return status

    async def wait_for_completion(
        self,
        operation_name: str,
        api_key: str,
        poll_interval: Optional[float] = None,
        max_polls: Optional[int] = None,
    ) -> OperationStatus:
        """
        Poll an operation until it finishes with a video.

        Raises:
            VideoGenerationError: The operation failed, finished without a
                video, or did not finish in time
        """
        if poll_interval is None:
            poll_interval = self.config.generation.poll_interval
        if max_polls is None:
            max_polls = self.config.generation.max_polls

        consecutive_errors = 0
        max_consecutive_errors = 3

        for _ in range(max_polls):
            await asyncio.sleep(poll_interval)

            try:
                status = await self.check_status(operation_name, api_key)
                consecutive_errors = 0
            except VideoGenerationError as e:
                # Only network errors are retried; API errors end the wait
                if not isinstance(e.__cause__, httpx.RequestError):
                    raise
                consecutive_errors += 1
                logger.warning(f"Veo poll error (attempt {consecutive_errors}): {e}")
                if consecutive_errors >= max_consecutive_errors:
                    raise
                continue

            if not status.done:
                continue

            if status.error:
                raise VideoGenerationError(status.error, operation_name=operation_name)
            return status

        raise VideoGenerationError(
            f"Operation did not complete within {poll_interval * max_polls:.0f} seconds",
            operation_name=operation_name,
        )

    async def download_video(self, video_url: str, api_key: str) -> bytes:
        """
        Download a finished video.

        Raises:
            VideoGenerationError: The request failed or returned a non-2xx
                response
        """
        client = await self._get_client()
        try:
            response = await client.get(
                video_url,
                headers={"x-goog-api-key": api_key},
                follow_redirects=True,
            )
        except httpx.RequestError as e:
            raise VideoGenerationError(
                f"Failed to download video: {type(e).__name__}: {e}"
            ) from e

        if not response.is_success:
            raise VideoGenerationError(
                f"Failed to download video: {response.status_code}",
                status_code=response.status_code,
            )

        logger.info(f"Video downloaded ({len(response.content) / 1024 / 1024:.1f} MB)")
        return response.content


def save_video(
    content: bytes,
    output_dir: str = "output",
    filename: Optional[str] = None,
) -> str:
    """Write video bytes under output_dir and return the path."""
    base_dir = Path(output_dir)
    base_dir.mkdir(parents=True, exist_ok=True)

    if not filename:
        filename = f"video_{uuid.uuid4().hex[:8]}.mp4"

    output_path = base_dir / filename
    with open(output_path, "wb") as f:
        f.write(content)

    logger.info(f"Video saved: {output_path}")
    return str(output_path)
