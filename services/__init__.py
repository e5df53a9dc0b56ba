"""
Veo Studio Services

Services built on the core key pool:
- video_generation: Veo video API client
- api: FastAPI HTTP server
"""

from .video_generation import (
    GenerationRequest,
    VideoGenerationClient,
    VideoGenerationError,
)

__all__ = [
    "GenerationRequest",
    "VideoGenerationClient",
    "VideoGenerationError",
]
