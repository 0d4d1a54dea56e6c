import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Mapping, Optional, TypeVar

from folder_sync.errors import DeadlineExceededError, RateLimitedError, UpstreamError


MAX_BACKOFF_SECONDS = 60.0

# Legacy vendors only describe the wait in the error text.
_RETRY_TEXT_PATTERN = re.compile(
    r"(?:try\s+again\s+in|retry\s+after)\s+(\d+(?:\.\d+)?)\s*(?:seconds?|secs?|s)\b",
    re.IGNORECASE,
)

T = TypeVar("T")


class Deadline:
    """Wall-clock budget for one run. ``seconds=None`` means unbounded."""

    def __init__(self, seconds: Optional[float], *, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = None if seconds is None else clock() + max(0.0, float(seconds))

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, what: str = "run"):
        if self.expired:
            raise DeadlineExceededError(f"Run deadline exceeded during {what}")

    def sleep(self, seconds: float, sleep_fn: Callable[[float], None] = time.sleep, *, what: str = "wait"):
        self.check(what)
        if seconds <= 0:
            return
        remaining = self.remaining()
        if remaining is not None and seconds > remaining:
            raise DeadlineExceededError(
                f"Run deadline exceeded during {what}: wait={seconds:g}s remaining={remaining:.1f}s"
            )
        sleep_fn(seconds)


def parse_retry_after(headers: Optional[Mapping[str, Any]], body: Optional[str] = None) -> Optional[float]:
    value = None
    if headers:
        value = headers.get("Retry-After") or headers.get("retry-after")
    if value is not None:
        text = str(value).strip()
        try:
            return max(0.0, float(text))
        except ValueError:
            pass
        try:
            retry_at = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            retry_at = None
        if retry_at is not None:
            if retry_at.tzinfo is None:
                retry_at = retry_at.replace(tzinfo=timezone.utc)
            return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())

    if body:
        match = _RETRY_TEXT_PATTERN.search(body)
        if match:
            return float(match.group(1))
    return None


def compute_backoff_seconds(attempt: int, *, base_seconds: float, max_seconds: float = MAX_BACKOFF_SECONDS) -> float:
    # attempt is the 1-based number of the attempt that just failed.
    return max(0.0, min(max_seconds, base_seconds * (2 ** max(0, attempt - 1))))


def is_retryable(exc: BaseException) -> bool:
    # Every upstream failure is retried; the attempt cap bounds permanent 4xx.
    return isinstance(exc, UpstreamError)



def call_with_retry(
    fn: Callable[[], T],
    *,
    max_attempts: int,
    deadline: Deadline,
    sleep: Callable[[float], None] = time.sleep,
    rate_limit_wait_seconds: float = 5.0,
    backoff_base_seconds: float = 2.0,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    what: str = "request",
) -> tuple[T, int]:
    """Run ``fn`` until it succeeds, returning ``(result, attempts)``.

    429 responses wait for the advertised retry-after (or
    ``rate_limit_wait_seconds``); other upstream failures back off
    exponentially. Errors that are not upstream failures, and the last error once
    ``max_attempts`` is spent, are re-raised with ``attempts`` attached.
    """
    max_attempts = max(1, int(max_attempts))
    attempt = 0
    while True:
        deadline.check(what)
        attempt += 1
        try:
            return fn(), attempt
        except DeadlineExceededError:
            raise
        except Exception as exc:
            if not is_retryable(exc) or attempt >= max_attempts:
                exc.attempts = attempt
                raise
            if isinstance(exc, RateLimitedError):
                wait = exc.retry_after if exc.retry_after is not None else rate_limit_wait_seconds
            else:
                wait = compute_backoff_seconds(attempt, base_seconds=backoff_base_seconds)
            if on_retry is not None:
                on_retry(attempt, exc, wait)
            deadline.sleep(wait, sleep, what=what)
