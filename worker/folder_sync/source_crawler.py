import os
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

from folder_sync.errors import NotFoundError, UpstreamError
from folder_sync.graph_client import GraphClient
from folder_sync.models import SourceItem
from folder_sync.runtime_logger import emit


GRAPH_PAGE_SIZE = int(os.getenv("GRAPH_PAGE_SIZE", "200"))
ARCHIVE_MARKER = "archive"
CHILD_SELECT = "id,name,webUrl,folder,size,createdDateTime,lastModifiedDateTime,parentReference"


def _trim_slashes(value: Optional[str]) -> str:
    return str(value or "").strip().strip("/")


def site_lookup_path(site_url: str) -> str:
    parsed = urlparse(site_url)
    host = parsed.netloc
    if not host:
        raise ValueError(f"Site URL has no host: {site_url}")
    site_path = _trim_slashes(parsed.path)
    if not site_path:
        return f"/sites/{host}"
    if not (site_path.startswith("sites/") or site_path.startswith("teams/")):
        site_path = f"sites/{site_path}"
    return f"/sites/{host}:/{quote(site_path, safe='/')}"


def split_library_path(library_path: str) -> tuple[str, list[str]]:
    segments = [seg for seg in _trim_slashes(library_path).split("/") if seg]
    if not segments:
        raise ValueError("Library path is empty")
    return segments[0], segments[1:]


def encode_drive_path(segments: list[str]) -> str:
    return "/".join(quote(seg, safe="") for seg in segments)


def is_archived(name: str) -> bool:
    # Covers both "Archive" and "Project (Archive)" naming.
    return ARCHIVE_MARKER in name.strip().lower()


def to_source_item(entry: Dict[str, Any]) -> SourceItem:
    parent = entry.get("parentReference") or {}
    return SourceItem(
        id=entry.get("id"),
        name=entry.get("name"),
        link=entry.get("webUrl") or None,
        created_at=entry.get("createdDateTime") or None,
        modified_at=entry.get("lastModifiedDateTime") or None,
        size=entry.get("size") or 0,
        drive_id=parent.get("driveId") or None,
        parent_path=parent.get("path") or None,
    )


class SourceCrawler:
    def __init__(self, graph: GraphClient, *, page_size: int = GRAPH_PAGE_SIZE):
        self._graph = graph
        self._page_size = page_size

    def resolve_site_id(self, site_url: str) -> str:
        try:
            site = self._graph.get_json(site_lookup_path(site_url))
        except UpstreamError as exc:
            if exc.status_code == 404:
                raise NotFoundError(f"Site not found: {site_url}") from exc
            raise
        site_id = site.get("id")
        if not site_id:
            raise NotFoundError(f"Site not found: {site_url}")
        emit("INFO", "GRAPH", f"Site resolved: site_url={site_url} site_id={site_id}")
        return site_id

    def resolve_drive(self, site_id: str, drive_name: str) -> Dict[str, Any]:
        drives = self._graph.collect_paged(f"/sites/{site_id}/drives?$select=id,name,webUrl")
        for drive in drives:
            if drive.get("name") == drive_name:
                emit("INFO", "GRAPH", f"Library resolved: name={drive_name} drive_id={drive.get('id')}")
                return drive
        available = ", ".join(sorted(str(d.get("name")) for d in drives))
        emit("ERROR", "GRAPH", f"Library not found: name={drive_name} available=[{available}]")
        raise NotFoundError(f"Library not found: {drive_name}")

    def _children_path(self, drive_id: str, sub_path: list[str]) -> str:
        query = f"$top={self._page_size}&$select={CHILD_SELECT}"
        if not sub_path:
            return f"/drives/{drive_id}/root/children?{query}"
        return f"/drives/{drive_id}/root:/{encode_drive_path(sub_path)}:/children?{query}"

    def crawl(self, site_url: str, library_path: str) -> list[SourceItem]:
        drive_name, sub_path = split_library_path(library_path)
        site_id = self.resolve_site_id(site_url)
        drive = self.resolve_drive(site_id, drive_name)

        entries = self._graph.collect_paged(self._children_path(drive["id"], sub_path))
        items: list[SourceItem] = []
        files = 0
        archived = 0
        for entry in entries:
            if not entry.get("folder"):
                files += 1
                continue
            name = entry.get("name")
            if not isinstance(name, str) or not name.strip():
                continue
            if is_archived(name):
                archived += 1
                continue
            items.append(to_source_item(entry))

        emit(
            "INFO",
            "GRAPH",
            f"Folders crawled: library={library_path} entries={len(entries)} folders={len(items)} files_skipped={files} archived_skipped={archived}",
        )
        return items
