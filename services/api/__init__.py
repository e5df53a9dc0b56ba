"""
HTTP API

FastAPI app exposing video generation, status polling and download.
"""

from .server import app, get_client

__all__ = ["app", "get_client"]
