"""
Utility functions for the sales ingestion backend.
Includes caller-side retry logic and string helpers for safe storage.
"""
import asyncio
import logging
import random
from typing import Callable, Type, Tuple, Optional, Any
from sqlalchemy.exc import (
    OperationalError,
    InterfaceError,
    TimeoutError as SQLAlchemyTimeoutError,
    DisconnectionError,
)

logger = logging.getLogger(__name__)

# Transient database errors that a caller may retry
TRANSIENT_DB_ERRORS: Tuple[Type[Exception], ...] = (
    OperationalError,
    InterfaceError,
    SQLAlchemyTimeoutError,
    DisconnectionError,
    ConnectionError,
    TimeoutError,
)


def is_transient_error(exc: Exception) -> bool:
    """Check if an exception is a transient error that could succeed on retry."""
    if isinstance(exc, TRANSIENT_DB_ERRORS):
        return True

    error_msg = str(exc).lower()
    transient_patterns = [
        "connection refused",
        "connection reset",
        "connection timed out",
        "timeout",
        "too many connections",
        "server closed the connection",
        "connection pool exhausted",
        "could not connect",
        "temporarily unavailable",
        "40001",  # Serialization failure (PostgreSQL)
    ]
    return any(pattern in error_msg for pattern in transient_patterns)


async def with_retry(
    coro_func: Callable,
    *args,
    max_retries: int = 3,
    base_delay: float = 0.5,
    **kwargs,
) -> Any:
    """
    Execute an async function with retry logic on transient failures.

    Example:
        alias_map = await with_retry(storage.get_alias_map, max_retries=2)
    """
    last_exception = None
    for attempt in range(max_retries + 1):
        try:
            return await coro_func(*args, **kwargs)
        except Exception as e:
            last_exception = e
            if not is_transient_error(e) or attempt >= max_retries:
                raise

            delay = min(base_delay * (2 ** attempt), 10.0)
            delay = delay * (0.5 + random.random())
            logger.warning(
                f"Retry {attempt + 1}/{max_retries} after {delay:.2f}s: {type(e).__name__}"
            )
            await asyncio.sleep(delay)

    if last_exception:
        raise last_exception


def sanitize_string(value: Optional[str], max_length: int = 1000, default: str = "") -> str:
    """Sanitize a string value for safe storage."""
    if value is None:
        return default
    # Remove null bytes and other problematic characters
    cleaned = str(value).replace("\x00", "").strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length]
    return cleaned
