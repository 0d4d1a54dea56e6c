from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional

from folder_sync.errors import SyncError
from folder_sync.models import DuplicateGroup, RegistryRecord
from folder_sync.runtime_logger import emit


DEFAULT_NAME_FIELD = "Project Name"


def extract_name(payload: Dict[str, Any], name_field: str) -> Optional[str]:
    data = payload.get("data")
    if not isinstance(data, dict):
        return None
    value = data.get(name_field)
    if not isinstance(value, str) or not value.strip():
        return None
    return value


@dataclass
class RegistrySnapshot:
    by_name: Dict[str, list[RegistryRecord]] = field(default_factory=dict)
    records: list[RegistryRecord] = field(default_factory=list)
    unnamed_skipped: int = 0

    @classmethod
    def from_payloads(cls, payloads: Iterable[Dict[str, Any]], name_field: str = DEFAULT_NAME_FIELD) -> "RegistrySnapshot":
        snapshot = cls()
        for payload in payloads:
            name = extract_name(payload, name_field) if isinstance(payload, dict) else None
            if name is None:
                snapshot.unnamed_skipped += 1
                continue
            record_id = payload.get("id")
            record = RegistryRecord(id=str(record_id) if record_id is not None else None, name=name, raw=payload)
            snapshot.records.append(record)
            # dict preserves insertion order, so each list is in first-seen order.
            snapshot.by_name.setdefault(name, []).append(record)
        return snapshot

    @classmethod
    def take(cls, registry_client, name_field: str = DEFAULT_NAME_FIELD) -> "RegistrySnapshot":
        snapshot = cls.from_payloads(registry_client.iter_records(), name_field)
        if snapshot.unnamed_skipped and not snapshot.records:
            # Otherwise every source folder would be created again.
            emit(
                "ERROR",
                "REGISTRY",
                f"Registry snapshot has no named records: name_field={name_field} unnamed_skipped={snapshot.unnamed_skipped}",
            )
            raise SyncError(
                f"No registry record carries name field '{name_field}' ({snapshot.unnamed_skipped} records listed)",
                phase="snapshot",
            )

        emit(
            "INFO",
            "REGISTRY",
            f"Registry snapshot taken: records={len(snapshot.records)} unique_names={len(snapshot.by_name)} duplicate_names={len(snapshot.duplicate_groups())} unnamed_skipped={snapshot.unnamed_skipped}",
        )
        return snapshot

    def duplicate_groups(self) -> list[DuplicateGroup]:
        return [
            DuplicateGroup(name=name, records=tuple(records))
            for name, records in self.by_name.items()
            if len(records) > 1
        ]
