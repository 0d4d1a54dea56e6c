import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Iterator, Optional

from folder_sync.errors import PaginationExhaustedError
from folder_sync.runtime_logger import emit


DEFAULT_MAX_PAGES = int(os.getenv("PAGINATION_MAX_PAGES", "10000"))


@dataclass(frozen=True)
class Page:
    items: list = field(default_factory=list)
    next_cursor: Optional[Hashable] = None


def next_link_page(body: Dict[str, Any]) -> Page:
    items = body.get("value") or []
    return Page(items=list(items), next_cursor=body.get("@odata.nextLink") or None)


def page_number_page(body: Any, page_number: int) -> Page:
    # A bare list is an unpaginated collection.
    if isinstance(body, list):
        return Page(items=body, next_cursor=None)
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        return Page(items=[], next_cursor=None)
    records = data.get("records") or []
    try:
        total_pages = int(data.get("totalPages") or 1)
    except (TypeError, ValueError):
        total_pages = 1
    next_cursor = page_number + 1 if page_number < total_pages else None
    return Page(items=list(records), next_cursor=next_cursor)


def iter_pages(
    fetch_page: Callable[[Hashable], Page],
    first_cursor: Hashable,
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
    label: str = "collection",
) -> Iterator[Any]:
    cursor: Optional[Hashable] = first_cursor
    seen: set[Hashable] = set()
    pages = 0
    while cursor is not None:
        if pages >= max_pages:
            emit("ERROR", "SYNC", f"Pagination ceiling reached: collection={label} pages={pages}")
            raise PaginationExhaustedError(label, pages)
        if cursor in seen:
            emit("ERROR", "SYNC", f"Pagination cursor repeated: collection={label} pages={pages}")
            raise PaginationExhaustedError(label, pages, reason="cursor_cycle")
        seen.add(cursor)

        page = fetch_page(cursor)
        pages += 1
        for item in page.items:
            yield item
        cursor = page.next_cursor


def fetch_all_pages(
    fetch_page: Callable[[Hashable], Page],
    first_cursor: Hashable,
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
    label: str = "collection",
) -> list[Any]:
    return list(iter_pages(fetch_page, first_cursor, max_pages=max_pages, label=label))
