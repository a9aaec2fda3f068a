# core/retry.py

import httpx
import asyncio
import random
import logging
import email.utils
import time
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, Any, Awaitable

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Configuration for retry behaviour.

    Attributes:
        retries: Maximum number of attempts (including the first one).
        base_delay: Initial delay before the first retry (seconds).
        max_backoff: Maximum delay between retries (seconds).
        jitter: Full jitter: pick the delay uniformly in [0, capped exponential].
        per_attempt_timeout: Optional bound on each individual attempt (seconds).
        retry_filter: Optional callable deciding if an exception is retryable.
                      If None, default_retry_filter is used.
        retry_on: Exception types that are always retried.
        on_retry: Optional hook called before each retry sleep with
                  (attempt, delay, exception).
    """
    retries: int = 3
    base_delay: float = 1.0
    max_backoff: float = 30.0
    jitter: bool = True
    per_attempt_timeout: Optional[float] = None
    retry_filter: Optional[Callable[[Exception], bool]] = None
    retry_on: Tuple[Type[Exception], ...] = (httpx.TimeoutException, httpx.ConnectError)
    on_retry: Optional[Callable[[int, float, Exception], None]] = None


def _status_of(exc: Exception) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def default_retry_filter(exc: Exception) -> bool:
    """
    Retries on network errors, HTTP 429 and 5xx (except 501).
    Works for httpx.HTTPStatusError and for any exception exposing `status_code`.
    """
    if isinstance(exc, (httpx.TimeoutException, httpx.ConnectError, httpx.NetworkError)):
        return True

    status = _status_of(exc)
    if status is None:
        return False
    return status == 429 or (500 <= status < 600 and status != 501)


def _retry_after_seconds(exc: Exception) -> Optional[float]:
    """Honor a Retry-After header (seconds or HTTP-date) when one is present."""
    raw = getattr(exc, "retry_after", None)
    if raw is None and isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        raw = exc.response.headers.get("Retry-After")
    if raw is None:
        return None

    s = str(raw).strip()
    if s.isdigit():
        return float(s)
    try:
        parsed = email.utils.parsedate_to_datetime(s)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return max(0.0, (parsed - datetime.now(timezone.utc)).total_seconds())


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    config: Optional[RetryConfig] = None,
    request_id: Optional[str] = None,
) -> Any:
    """
    Execute an async function with retries.

    Only use on idempotent operations (webhook delivery, status reads).
    The Gemini rotation loop does NOT go through here: a failed key is
    rotated, not retried.

    Raises the last exception when attempts run out or the error is not retryable.
    """
    config = config or RetryConfig()
    retry_filter = config.retry_filter or default_retry_filter
    start_time = time.monotonic()

    for attempt in range(config.retries):
        try:
            if config.per_attempt_timeout is not None:
                return await asyncio.wait_for(func(), timeout=config.per_attempt_timeout)
            return await func()
        except asyncio.TimeoutError as te:
            exc = httpx.TimeoutException("per-attempt timeout exceeded")
            exc.__cause__ = te
        except Exception as e:
            exc = e

        if config.retry_on and isinstance(exc, config.retry_on):
            should_retry = True
        else:
            should_retry = retry_filter(exc)

        elapsed = time.monotonic() - start_time
        if not should_retry or attempt >= config.retries - 1:
            logger.warning(
                "Retry exhausted or non-retryable error",
                extra={
                    "event": "retry_failed",
                    "attempt": attempt + 1,
                    "max_retries": config.retries,
                    "status": _status_of(exc),
                    "error_type": type(exc).__name__,
                    "request_id": request_id,
                    "elapsed_seconds": round(elapsed, 3),
                },
            )
            raise exc

        retry_after = _retry_after_seconds(exc)
        if retry_after is not None:
            delay = min(retry_after, config.max_backoff)
            retry_source = "Retry-After"
        else:
            exponential_cap = min(config.max_backoff, config.base_delay * (2 ** attempt))
            delay = random.uniform(0, exponential_cap) if config.jitter else exponential_cap
            retry_source = "exponential_full_jitter" if config.jitter else "exponential"

        if config.on_retry:
            try:
                config.on_retry(attempt + 1, delay, exc)
            except Exception:
                logger.debug("on_retry hook failed", exc_info=True)

        logger.warning(
            "Retrying after failure",
            extra={
                "event": "retry_attempt",
                "attempt": attempt + 1,
                "delay": round(delay, 3),
                "retry_source": retry_source,
                "error_type": type(exc).__name__,
                "request_id": request_id,
            },
        )
        await asyncio.sleep(delay)

    # retries <= 0: nothing was attempted
    raise ValueError("RetryConfig.retries must be at least 1")
