import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


CREATE = "create"
DUPLICATE = "duplicate"
ORPHAN = "orphan"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ItemError:
    category: str
    name: str
    record_id: Optional[str]
    error: str
    attempts: int = 1


@dataclass
class RunReport:
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trigger: str = "manual"
    site_url: Optional[str] = None
    library_path: Optional[str] = None
    started_at: str = field(default_factory=_now_iso)
    finished_at: Optional[str] = None
    status: str = "running"
    phase: Optional[str] = None
    error: Optional[str] = None

    source_scanned: int = 0
    registry_scanned: int = 0
    registry_unnamed_skipped: int = 0

    created: int = 0
    skipped_existing: int = 0
    duplicates_deleted: int = 0
    orphans_deleted: int = 0

    create_errors: list[ItemError] = field(default_factory=list)
    duplicate_errors: list[ItemError] = field(default_factory=list)
    orphan_errors: list[ItemError] = field(default_factory=list)

    def record_success(self, category: str):
        if category == CREATE:
            self.created += 1
        elif category == DUPLICATE:
            self.duplicates_deleted += 1
        elif category == ORPHAN:
            self.orphans_deleted += 1
        else:
            raise ValueError(f"Unknown category: {category}")

    def record_error(self, error: ItemError):
        if error.category == CREATE:
            self.create_errors.append(error)
        elif error.category == DUPLICATE:
            self.duplicate_errors.append(error)
        elif error.category == ORPHAN:
            self.orphan_errors.append(error)
        else:
            raise ValueError(f"Unknown category: {error.category}")

    @property
    def error_count(self) -> int:
        return len(self.create_errors) + len(self.duplicate_errors) + len(self.orphan_errors)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def finish(self, status: str, *, phase: Optional[str] = None, error: Optional[str] = None):
        self.status = status
        self.phase = phase
        self.error = error
        self.finished_at = _now_iso()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ok"] = self.ok
        data["error_count"] = self.error_count
        return data

    def summary(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "synced": self.source_scanned}
        return {"ok": False, "synced": self.source_scanned, "error": self.error}
