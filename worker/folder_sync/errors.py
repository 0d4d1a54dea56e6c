from dataclasses import dataclass, field
from typing import Optional


TRANSIENT_STATUS_CODES = {408, 500, 502, 503, 504}


class SyncError(Exception):
    """Base for run-level failures; ``phase`` names the pipeline step that raised."""

    def __init__(self, message: str = "", *, phase: Optional[str] = None):
        super().__init__(message)
        self.phase = phase


class AuthError(SyncError):
    pass


class NotFoundError(SyncError):
    pass


class RunLockedError(SyncError):
    def __init__(self, lock_key: str):
        super().__init__(f"Run already in progress: lock_key={lock_key}", phase="lock")
        self.lock_key = lock_key


class DeadlineExceededError(SyncError):
    pass


class PaginationExhaustedError(SyncError):
    def __init__(self, label: str, pages: int, reason: str = "page_ceiling"):
        super().__init__(f"Pagination did not terminate: collection={label} pages={pages} reason={reason}")
        self.label = label
        self.pages = pages
        self.reason = reason


@dataclass(eq=False)
class UpstreamError(SyncError):
    status_code: Optional[int]
    message: str
    url: str
    response_text: str = ""
    phase: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        Exception.__init__(self, str(self))

    def __str__(self) -> str:
        if self.status_code is None:
            return f"Upstream request failed: {self.message}"
        return f"Upstream error {self.status_code}: {self.message}"

    @property
    def is_transient(self) -> bool:
        return self.status_code is None or self.status_code in TRANSIENT_STATUS_CODES


@dataclass(eq=False)
class RateLimitedError(UpstreamError):
    retry_after: Optional[float] = None

    def __str__(self) -> str:
        if self.retry_after is None:
            return f"Rate limited (429): {self.message}"
        return f"Rate limited (429), retry after {self.retry_after:g}s: {self.message}"

    @property
    def is_transient(self) -> bool:
        return True
