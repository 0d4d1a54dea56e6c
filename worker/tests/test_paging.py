import sys
import unittest
from pathlib import Path
from unittest.mock import patch


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from folder_sync.errors import PaginationExhaustedError
from folder_sync.paging import Page, fetch_all_pages, next_link_page, page_number_page


@patch("folder_sync.paging.emit")
class PagingTests(unittest.TestCase):
    def test_follows_next_link_until_absent(self, _emit):
        pages = {
            "p1": {"value": [1, 2], "@odata.nextLink": "p2"},
            "p2": {"value": [3], "@odata.nextLink": "p3"},
            "p3": {"value": []},
        }
        items = fetch_all_pages(lambda cursor: next_link_page(pages[cursor]), "p1")
        self.assertEqual(items, [1, 2, 3])

    def test_page_number_walks_total_pages(self, _emit):
        requested = []

        def fetch(page_number):
            requested.append(page_number)
            body = {"data": {"records": [f"r{page_number}"], "totalPages": 3}}
            return page_number_page(body, page_number)

        self.assertEqual(fetch_all_pages(fetch, 1), ["r1", "r2", "r3"])
        self.assertEqual(requested, [1, 2, 3])

    def test_bare_list_is_single_page(self, _emit):
        page = page_number_page([{"id": 1}], 1)
        self.assertEqual(page.items, [{"id": 1}])
        self.assertIsNone(page.next_cursor)

    def test_page_ceiling_raises(self, _emit):
        def endless(cursor):
            return Page(items=[cursor], next_cursor=cursor + 1)

        with self.assertRaises(PaginationExhaustedError) as ctx:
            fetch_all_pages(endless, 0, max_pages=5, label="endless")
        self.assertEqual(ctx.exception.pages, 5)
        self.assertEqual(ctx.exception.reason, "page_ceiling")

    def test_repeated_cursor_raises(self, _emit):
        def cyclic(cursor):
            return Page(items=[cursor], next_cursor="a" if cursor == "b" else "b")

        with self.assertRaises(PaginationExhaustedError) as ctx:
            fetch_all_pages(cyclic, "a")
        self.assertEqual(ctx.exception.reason, "cursor_cycle")


if __name__ == "__main__":
    unittest.main()
