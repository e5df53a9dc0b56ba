"""
Veo Studio HTTP Server

FastAPI server that provides:
- POST /generate-video - Start a video generation (fails over across API keys)
- POST /check-status - Poll a generation operation
- POST /download-video - Fetch the finished video
- GET /config - Configuration summary (never exposes key values)
- GET /health - Health check

Usage:
    # Start server
    python -m uvicorn services.api.server:app --host 0.0.0.0 --port 8000

    # Or via main.py
    python main.py server
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field

from core.config import get_config
from core.key_rotation import AllCredentialsFailed, KeyRotationError, NoCredentialsConfigured
from services.video_generation import (
    GenerationRequest,
    VideoGenerationClient,
    VideoGenerationError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting Veo Studio server...")
    config = get_config()
    for issue in config.validate():
        logger.warning(f"Config issue: {issue}")

    app.state.video_client = VideoGenerationClient(config=config)

    yield

    logger.info("Shutting down Veo Studio server...")
    await app.state.video_client.close()
    app.state.video_client = None


app = FastAPI(
    title="Veo Studio API",
    description="Video generation with API key failover",
    version="1.0.0",
    lifespan=lifespan,
)


def get_client(request: Request) -> VideoGenerationClient:
    """Dependency returning the video client owned by the app lifespan."""
    client = getattr(request.app.state, "video_client", None)
    if client is None:
        raise HTTPException(status_code=503, detail="Video client is not initialized")
    return client


# Request Models
class GenerateVideoRequest(BaseModel):
    """Request to start a video generation."""
    model_config = ConfigDict(populate_by_name=True)

    prompt: str = ""
    image: Optional[str] = None
    resolution: Optional[str] = None
    aspect_ratio: Optional[str] = Field(default=None, alias="aspectRatio")
    gemini_api_keys: Optional[list[str]] = Field(default=None, alias="geminiApiKeys")


class CheckStatusRequest(BaseModel):
    """Request to poll a generation operation."""
    model_config = ConfigDict(populate_by_name=True)

    operation_name: str = Field(default="", alias="operationName")
    gemini_api_key: Optional[str] = Field(default=None, alias="geminiApiKey")


class DownloadVideoRequest(BaseModel):
    """Request to download a finished video."""
    model_config = ConfigDict(populate_by_name=True)

    video_url: str = Field(default="", alias="videoUrl")
    gemini_api_key: Optional[str] = Field(default=None, alias="geminiApiKey")


@app.exception_handler(KeyRotationError)
async def key_rotation_error_handler(request: Request, exc: KeyRotationError):
    """Map key pool failures to client/server errors."""
    if isinstance(exc, NoCredentialsConfigured):
        status_code = 400
        error = "At least one Gemini API key is required"
    elif isinstance(exc, AllCredentialsFailed):
        status_code = 500
        error = "All API keys failed"
    else:
        status_code = 500
        error = str(exc)

    logger.error(f"{error}: {exc.details}")
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "details": exc.details},
    )


@app.exception_handler(VideoGenerationError)
async def video_generation_error_handler(request: Request, exc: VideoGenerationError):
    """Pass upstream status codes through to the caller."""
    status_code = exc.status_code if exc.status_code and exc.status_code >= 400 else 502
    logger.error(f"Video API error: {exc}")
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Veo Studio",
        "version": "1.0.0",
        "endpoints": {
            "POST /generate-video": "Start video generation",
            "POST /check-status": "Generation operation status",
            "POST /download-video": "Download finished video",
            "GET /config": "Configuration summary",
            "GET /health": "Health check",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/config")
async def config_summary():
    """Report which keys are configured, without their values."""
    config = get_config()
    return {**config.summary(), "issues": config.validate()}


@app.post("/generate-video")
async def generate_video(
    body: GenerateVideoRequest,
    client: VideoGenerationClient = Depends(get_client),
):
    """
    Start a video generation.

    Keys from the request body are tried first-to-last with failover; when
    none are supplied, GEMINI_API_KEYS is used. Returns the operation name
    to poll via /check-status.
    """
    if not body.prompt.strip():
        raise HTTPException(status_code=400, detail="Prompt is required")

    generation = client.config.generation
    request = GenerationRequest(
        prompt=body.prompt,
        image=body.image,
        resolution=body.resolution or generation.default_resolution,
        aspect_ratio=body.aspect_ratio or generation.default_aspect_ratio,
    )

    started = await client.start_generation(request, api_keys=body.gemini_api_keys)

    return {
        "operationName": started.operation_name,
        "message": "Video generation started successfully",
    }


@app.post("/check-status")
async def check_status(
    body: CheckStatusRequest,
    client: VideoGenerationClient = Depends(get_client),
):
    """Poll a generation operation with a single key (no rotation)."""
    api_key = client.first_key(body.gemini_api_key)
    if not body.operation_name or not api_key:
        raise HTTPException(
            status_code=400,
            detail="Operation name and API key are required",
        )

    status = await client.check_status(body.operation_name, api_key)

    response = {"done": status.done, "operationName": status.operation_name}
    if not status.done:
        response["progress"] = status.progress
    elif status.video_url:
        response["videoUrl"] = status.video_url
    else:
        response["error"] = status.error
    return response


@app.post("/download-video")
async def download_video(
    body: DownloadVideoRequest,
    client: VideoGenerationClient = Depends(get_client),
):
    """Stream the finished video back as an mp4 attachment."""
    api_key = client.first_key(body.gemini_api_key)
    if not body.video_url or not api_key:
        raise HTTPException(
            status_code=400,
            detail="Video URL and API key are required",
        )

    content = await client.download_video(body.video_url, api_key)

    return Response(
        content=content,
        media_type="video/mp4",
        headers={"Content-Disposition": 'attachment; filename="generated-video.mp4"'},
    )
