from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SourceItem:
    id: str
    name: str
    link: Optional[str] = None
    created_at: Optional[str] = None
    modified_at: Optional[str] = None
    size: int = 0
    drive_id: Optional[str] = None
    parent_path: Optional[str] = None


@dataclass(frozen=True)
class RegistryRecord:
    id: Optional[str]
    name: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class DuplicateGroup:
    name: str
    records: tuple[RegistryRecord, ...]

    @property
    def survivor(self) -> RegistryRecord:
        # First-seen wins: the survivor is whatever the registry listed first.
        return self.records[0]

    @property
    def removable(self) -> tuple[RegistryRecord, ...]:
        return self.records[1:]


@dataclass
class SyncPlan:
    new_items: list[SourceItem] = field(default_factory=list)
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)
    orphan_records: list[RegistryRecord] = field(default_factory=list)
    skipped_existing: int = 0

    @property
    def duplicate_deletes(self) -> list[RegistryRecord]:
        return [record for group in self.duplicate_groups for record in group.removable]

    @property
    def is_converged(self) -> bool:
        return not (self.new_items or self.duplicate_groups or self.orphan_records)
