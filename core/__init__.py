"""
Veo Studio Core Components

Provides foundational infrastructure for talking to rate-limited AI APIs:
- API key pool with per-key health tracking
- Key rotation loop with failover across the pool
- Environment-driven configuration
"""

from .config import Config, get_config, parse_key_list
from .key_pool import MAX_ERRORS_PER_KEY, KeyPool, KeyPoolStats, mask_key
from .key_rotation import (
    AllCredentialsFailed,
    AttemptFailed,
    KeyRotationError,
    NoCredentialsConfigured,
    run_with_key_rotation,
)

__all__ = [
    "Config",
    "get_config",
    "parse_key_list",
    "MAX_ERRORS_PER_KEY",
    "KeyPool",
    "KeyPoolStats",
    "mask_key",
    "AllCredentialsFailed",
    "AttemptFailed",
    "KeyRotationError",
    "NoCredentialsConfigured",
    "run_with_key_rotation",
]
