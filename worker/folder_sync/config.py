import os
from dataclasses import dataclass
from typing import Optional

from folder_sync.paging import DEFAULT_MAX_PAGES
from folder_sync.registry_snapshot import DEFAULT_NAME_FIELD


DEFAULT_LINK_FIELD = "Sharepoint Link"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return float(value)


@dataclass(frozen=True)
class SyncConfig:
    site_url: Optional[str] = None
    library_path: Optional[str] = None
    name_field: str = DEFAULT_NAME_FIELD
    name_read_field: Optional[str] = None
    link_field: Optional[str] = DEFAULT_LINK_FIELD
    batch_size: int = 5
    max_attempts: int = 3
    item_delay_seconds: float = 0.5
    batch_delay_seconds: float = 3.0
    rate_limit_wait_seconds: float = 5.0
    backoff_base_seconds: float = 2.0
    deadline_seconds: Optional[float] = 280.0
    max_pages: int = DEFAULT_MAX_PAGES

    @property
    def listing_name_field(self) -> str:
        # Listings may key the name column by id while creates use its label.
        return self.name_read_field or self.name_field

    @classmethod
    def from_env(cls) -> "SyncConfig":
        deadline_seconds = _env_float("FOLDER_SYNC_DEADLINE_SECONDS", 280.0)
        return cls(
            site_url=os.getenv("FOLDER_SYNC_SITE_URL") or None,
            library_path=os.getenv("FOLDER_SYNC_LIBRARY_PATH") or None,
            name_field=os.getenv("REGISTRY_NAME_FIELD") or DEFAULT_NAME_FIELD,
            name_read_field=os.getenv("REGISTRY_NAME_READ_FIELD") or None,
            link_field=os.getenv("REGISTRY_LINK_FIELD", DEFAULT_LINK_FIELD) or None,
            batch_size=max(1, _env_int("FOLDER_SYNC_BATCH_SIZE", 5)),
            max_attempts=max(1, _env_int("FOLDER_SYNC_MAX_ATTEMPTS", 3)),
            item_delay_seconds=max(0, _env_int("FOLDER_SYNC_ITEM_DELAY_MS", 500)) / 1000.0,
            batch_delay_seconds=max(0, _env_int("FOLDER_SYNC_BATCH_DELAY_MS", 3000)) / 1000.0,
            rate_limit_wait_seconds=max(0.0, _env_float("FOLDER_SYNC_RATE_LIMIT_WAIT_SECONDS", 5.0)),
            backoff_base_seconds=max(0.0, _env_float("FOLDER_SYNC_BACKOFF_BASE_SECONDS", 2.0)),
            # 0 or less disables the deadline.
            deadline_seconds=deadline_seconds if deadline_seconds > 0 else None,
            max_pages=max(1, _env_int("PAGINATION_MAX_PAGES", DEFAULT_MAX_PAGES)),
        )
