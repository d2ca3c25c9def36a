"""
Transport-error policy for provider calls.
Rate limits back off exponentially (or for the declared retry-after);
other transient failures retry a few times after a short fixed delay.
"""

import re
import random
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from subchunker.core.constants import (
    RATE_LIMIT_CODES,
    RATE_LIMIT_MAX_ATTEMPTS, RATE_LIMIT_BASE_DELAY, RATE_LIMIT_MIN_DELAY,
    RATE_LIMIT_MAX_DELAY, RATE_LIMIT_JITTER,
    TRANSIENT_MAX_ATTEMPTS, TRANSIENT_RETRY_DELAY,
)
from subchunker.core.error_codes import JobError, ProviderRateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT = "rate_limit"
TRANSIENT = "transient"
FATAL = "fatal"

# last-resort text matching for providers that only report a message
_RATE_LIMIT_TEXT_RE = re.compile(r'rate.?limit|quota|\b429\b|too many requests|resource.?exhausted', re.IGNORECASE)
_RETRY_AFTER_TEXT_RE = re.compile(r'retry (?:in|after) ([0-9.]+)\s*(ms|s)?', re.IGNORECASE)


def classify_error(error: BaseException) -> str:
    """Structured signals first: exception type, HTTP status, error code. Message text last."""
    if isinstance(error, ProviderRateLimitError):
        return RATE_LIMIT
    if getattr(error, 'status_code', None) == 429:
        return RATE_LIMIT
    if getattr(error, 'code', None) in RATE_LIMIT_CODES:
        return RATE_LIMIT
    if isinstance(error, JobError) and not error.retryable:
        return FATAL
    if _RATE_LIMIT_TEXT_RE.search(str(error)):
        return RATE_LIMIT
    return TRANSIENT


def declared_retry_after(error: BaseException) -> Optional[float]:
    """Seconds the provider asked us to wait, if it said so."""
    value = getattr(error, 'retry_after', None)
    if value is not None:
        try:
            return max(0.0, float(value))
        except (TypeError, ValueError):
            pass
    m = _RETRY_AFTER_TEXT_RE.search(str(error))
    if m:
        seconds = float(m.group(1))
        return seconds / 1000 if (m.group(2) or '').lower() == 'ms' else seconds
    return None


@dataclass
class RetryPolicy:
    rate_limit_attempts: int = RATE_LIMIT_MAX_ATTEMPTS
    rate_limit_base_delay: float = RATE_LIMIT_BASE_DELAY
    rate_limit_min_delay: float = RATE_LIMIT_MIN_DELAY
    rate_limit_max_delay: float = RATE_LIMIT_MAX_DELAY
    jitter: float = RATE_LIMIT_JITTER
    transient_attempts: int = TRANSIENT_MAX_ATTEMPTS
    transient_delay: float = TRANSIENT_RETRY_DELAY
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def rate_limit_delay(self, retry_index: int, retry_after: Optional[float]) -> float:
        """Delay before the retry_index-th retry (0-based) after a rate limit."""
        if retry_after is not None:
            delay = retry_after
        else:
            # 2s, 4s, 8s, 16s (+/- 10%)
            delay = self.rate_limit_base_delay * (2 ** retry_index)
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return min(self.rate_limit_max_delay, max(self.rate_limit_min_delay, delay))

    async def call(self, fn: Callable[[], Awaitable[T]], label: str = "provider call") -> T:
        """
        Await fn() until it succeeds or the retry budget for the error's class
        is spent; the last error is re-raised. Cancellation is never retried.
        """
        rate_limit_retries = 0
        transient_retries = 0
        while True:
            try:
                return await fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                kind = classify_error(e)
                if kind == FATAL:
                    raise

                if kind == RATE_LIMIT:
                    if rate_limit_retries + 1 >= self.rate_limit_attempts:
                        logger.warning("%s rate limited, giving up after %d attempts",
                                       label, rate_limit_retries + 1)
                        raise
                    delay = self.rate_limit_delay(rate_limit_retries, declared_retry_after(e))
                    rate_limit_retries += 1
                    logger.warning("%s rate limited, retrying in %.1fs (attempt %d/%d)",
                                   label, delay, rate_limit_retries, self.rate_limit_attempts - 1)
                else:
                    if transient_retries + 1 >= self.transient_attempts:
                        logger.warning("%s failed after %d attempts: %s",
                                       label, transient_retries + 1, e)
                        raise
                    delay = self.transient_delay
                    transient_retries += 1
                    logger.warning("%s failed (%s), retrying in %.1fs (attempt %d/%d)",
                                   label, e, delay, transient_retries, self.transient_attempts - 1)

                await self.sleep(delay)
