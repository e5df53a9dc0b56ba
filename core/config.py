"""
Configuration management for Veo Studio.

Centralizes all configuration including:
- Gemini API keys and endpoint
- Video generation defaults
- HTTP server settings
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def parse_key_list(raw: Optional[str]) -> list[str]:
    """Split a comma-separated key list, trimming entries and dropping blanks."""
    if not raw:
        return []
    return [k.strip() for k in raw.split(",") if k.strip()]


@dataclass
class APIConfig:
    """API configuration for the Gemini video service."""

    # Comma-separated in the environment, tried in order with failover
    gemini_api_keys: list[str] = field(
        default_factory=lambda: parse_key_list(os.getenv("GEMINI_API_KEYS"))
    )
    gemini_api_base: str = field(
        default_factory=lambda: os.getenv(
            "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        )
    )
    veo_model: str = field(
        default_factory=lambda: os.getenv("VEO_MODEL", "veo-3.1-generate-preview")
    )


@dataclass
class GenerationConfig:
    """Defaults for video generation requests."""
    default_resolution: str = "720p"
    default_aspect_ratio: str = "16:9"

    # Per-attempt deadline; expiry counts as a failure against the key
    request_timeout: float = field(
        default_factory=lambda: float(os.getenv("VEO_REQUEST_TIMEOUT", "60"))
    )

    # Status polling (generation usually takes 1-6 minutes)
    poll_interval: float = 10.0
    max_polls: int = 60


@dataclass
class ServerConfig:
    """HTTP server configuration."""
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.api.gemini_api_keys:
            issues.append("GEMINI_API_KEYS not configured (needed for video generation)")

        if self.generation.request_timeout <= 0:
            issues.append("VEO_REQUEST_TIMEOUT must be positive")

        return issues

    def summary(self) -> dict:
        """Describe the configuration without exposing key values."""
        return {
            "has_gemini_keys": bool(self.api.gemini_api_keys),
            "gemini_keys_length": len(self.api.gemini_api_keys),
            "gemini_api_base": self.api.gemini_api_base,
            "veo_model": self.api.veo_model,
            "request_timeout": self.generation.request_timeout,
        }


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
