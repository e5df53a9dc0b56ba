"""
Key Rotation Loop

Drives one unit of work across a KeyPool until a key succeeds or every key
in the pool has been tried once.

Failure policy:
- A failed attempt is logged, counted against its key, and retried with the
  next key. It is not surfaced on its own.
- Only total failure reaches the caller, as AllCredentialsFailed with the
  last underlying error attached.
- An empty pool fails immediately with NoCredentialsConfigured.
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from .key_pool import KeyPool, mask_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

AttemptFn = Callable[[str], Union[T, Awaitable[T]]]


class AttemptFailed(Exception):
    """Raised by an attempt function when one call with one key fails."""


class KeyRotationError(Exception):
    """Base class for failures surfaced by the rotation loop."""

    def __init__(
        self,
        message: str,
        service_name: str = "api",
        last_error: Optional[BaseException] = None,
        attempts: int = 0,
    ):
        self.service_name = service_name
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(message)

    @property
    def details(self) -> str:
        """Message of the last underlying error, for diagnostics."""
        if self.last_error is None:
            return str(self)
        return str(self.last_error) or type(self.last_error).__name__


class NoCredentialsConfigured(KeyRotationError):
    """The pool holds no usable keys."""

    def __init__(self, service_name: str = "api", attempts: int = 0):
        super().__init__(
            f"No API keys configured for {service_name}",
            service_name=service_name,
            attempts=attempts,
        )


class AllCredentialsFailed(KeyRotationError):
    """Every key in the pool was tried once and every attempt failed."""

    def __init__(
        self,
        service_name: str,
        last_error: Optional[BaseException],
        attempts: int,
    ):
        super().__init__(
            f"All {attempts} API keys failed for {service_name}",
            service_name=service_name,
            last_error=last_error,
            attempts=attempts,
        )


async def run_with_key_rotation(
    pool: KeyPool,
    attempt: AttemptFn,
    *,
    service_name: str = "api",
) -> Any:
    """
    Run an attempt function with key failover.

    Args:
        pool: Keys to draw from; health counters are updated in place
        attempt: Called with one key per try. May be sync or async; any
            exception it raises counts as a failed attempt.
        service_name: Label used in logs and errors

    Returns:
        Whatever the first successful attempt returned

    Raises:
        NoCredentialsConfigured: The pool is empty
        AllCredentialsFailed: Each of the pool's keys failed once
    """
    total = len(pool)
    if total == 0:
        raise NoCredentialsConfigured(service_name)

    key = pool.get_current_key()
    last_error: Optional[Exception] = None

    for attempt_no in range(total):
        if key is None:
            raise NoCredentialsConfigured(service_name, attempts=attempt_no)

        try:
            result = attempt(key)
            if inspect.isawaitable(result):
                result = await result
        except Exception as e:
            pool.record_failure(key)
            last_error = e
            logger.warning(
                f"[{service_name}] attempt {attempt_no + 1}/{total} with key "
                f"{mask_key(key)} failed: {type(e).__name__}: {e}"
            )
            key = pool.rotate()
            continue

        pool.record_success(key)
        if attempt_no:
            logger.info(
                f"[{service_name}] succeeded on attempt {attempt_no + 1}/{total}"
            )
        return result

    logger.error(f"[{service_name}] all {total} API keys failed")
    raise AllCredentialsFailed(service_name, last_error, total) from last_error
