from typing import Iterable

from folder_sync.models import SourceItem, SyncPlan
from folder_sync.registry_snapshot import RegistrySnapshot


def reconcile(source_items: Iterable[SourceItem], snapshot: RegistrySnapshot) -> SyncPlan:
    """Classify drift between the crawled folders and the registry.

    No I/O. A name that is both duplicated and gone from the source is
    collapsed by its duplicate group, and only the survivor is listed as an
    orphan, so no record id is scheduled for deletion twice.
    """
    source_names: set[str] = set()
    new_items: list[SourceItem] = []
    skipped_existing = 0
    for item in source_items:
        if item.name in source_names:
            continue
        source_names.add(item.name)
        if item.name in snapshot.by_name:
            skipped_existing += 1
        else:
            new_items.append(item)

    duplicate_groups = snapshot.duplicate_groups()

    orphan_records = []
    for name, records in snapshot.by_name.items():
        if name in source_names:
            continue
        orphan_records.append(records[0])

    return SyncPlan(
        new_items=new_items,
        duplicate_groups=duplicate_groups,
        orphan_records=orphan_records,
        skipped_existing=skipped_existing,
    )
