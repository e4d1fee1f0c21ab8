import asyncio
import logging
import random
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Awaitable, Optional, TypeVar

import httpx

from .errors import CanceledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Transport failures that happen before the backend produced a response.
RETRYABLE_EXCEPTIONS = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    httpx.ReadTimeout,
    httpx.WriteError,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.ReadError,
    httpx.RemoteProtocolError,
)


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int
    base_delay_s: float
    max_delay_s: float
    retryable_status_codes: frozenset[int] = RETRYABLE_STATUS_CODES
    jitter: bool = True


def classify_status(status_code: int, config: RetryConfig) -> Outcome:
    if 200 <= status_code < 300:
        return Outcome.SUCCESS
    if status_code in config.retryable_status_codes:
        return Outcome.RETRYABLE
    return Outcome.FATAL


def classify_exception(exc: BaseException) -> Outcome:
    if isinstance(exc, RETRYABLE_EXCEPTIONS):
        return Outcome.RETRYABLE
    return Outcome.FATAL


def retry_after_seconds(headers: httpx.Headers) -> Optional[float]:
    value = headers.get("retry-after")
    if not value:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt is None:
        return None
    return max(0.0, (dt - dt.now(tz=dt.tzinfo)).total_seconds())


def compute_backoff_s(attempt: int, config: RetryConfig) -> float:
    """
    Delay to wait after failed attempt number ``attempt`` (1-based).

    base * 2^(attempt-1), capped at max_delay_s. With jitter the delay is drawn
    from [min(base, cap), computed] so it never drops below the base delay.
    """
    delay = min(config.max_delay_s, config.base_delay_s * (2 ** max(0, attempt - 1)))
    if not config.jitter:
        return delay
    floor = min(config.base_delay_s, config.max_delay_s)
    return random.uniform(floor, delay)


async def interruptible_sleep(delay_s: float, cancel: Optional[asyncio.Event] = None) -> None:
    """Sleep for ``delay_s``; wake early and raise CanceledError if ``cancel`` is set."""
    if cancel is None:
        await asyncio.sleep(delay_s)
        return
    if cancel.is_set():
        raise CanceledError()
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay_s)
    except asyncio.TimeoutError:
        return
    raise CanceledError()


async def await_or_cancel(
    aw: Awaitable[T],
    cancel: Optional[asyncio.Event],
    message: str = "request canceled",
) -> T:
    """Await ``aw``; if ``cancel`` fires first, abort it and raise CanceledError."""
    if cancel is None:
        return await aw
    if cancel.is_set():
        if asyncio.iscoroutine(aw):
            aw.close()
        raise CanceledError(message)

    task = asyncio.ensure_future(aw)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
            # the aborted call unwinds before the caller releases its resources
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Abandoned call failed after cancel: {type(e).__name__}: {e}")

    if task in done:
        return task.result()
    raise CanceledError(message)


async def sleep_before_retry(
    *,
    attempt: int,
    config: RetryConfig,
    retry_after_s: Optional[float],
    reason: str,
    cancel: Optional[asyncio.Event] = None,
    log: Optional[logging.Logger] = None,
) -> float:
    """Wait before the attempt following ``attempt``; returns the delay used."""
    delay_s = compute_backoff_s(attempt, config)
    if retry_after_s is not None:
        delay_s = max(delay_s, min(config.max_delay_s, retry_after_s))
    (log or logger).warning(
        f"Upstream retrying (attempt {attempt + 1}/{config.max_attempts}) in {delay_s:.2f}s: {reason}"
    )
    await interruptible_sleep(delay_s, cancel)
    return delay_s
