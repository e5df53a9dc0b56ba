"""
Video Generation Service

Provides access to Veo video generation:
- Start a generation with failover across a pool of API keys
- Poll the long-running operation
- Download the finished video
"""

from .client import (
    GenerationRequest,
    GenerationStarted,
    OperationStatus,
    VideoGenerationClient,
    VideoGenerationError,
    save_video,
    strip_data_url,
)

__all__ = [
    "GenerationRequest",
    "GenerationStarted",
    "OperationStatus",
    "VideoGenerationClient",
    "VideoGenerationError",
    "save_video",
    "strip_data_url",
]
