import sys
import unittest
from pathlib import Path
from unittest.mock import patch


ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, Path(__file__).resolve().parent):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fakes import FakeGraph, file_entry, folder
from folder_sync.errors import NotFoundError, UpstreamError
from folder_sync.source_crawler import SourceCrawler, site_lookup_path, split_library_path


SITE_URL = "https://contoso.sharepoint.com/sites/Projects"


def graph_with_children(children, *, drives=None):
    return FakeGraph(
        {
            "/sites/contoso.sharepoint.com:/sites/Projects": {"id": "site-1", "displayName": "Projects"},
            "/sites/site-1/drives": drives if drives is not None else [
                {"id": "drive-docs", "name": "Documents"},
                {"id": "drive-active", "name": "Active Jobs"},
            ],
            "/drives/drive-active/": children,
        }
    )


@patch("folder_sync.source_crawler.emit")
class SourceCrawlerTests(unittest.TestCase):
    def test_lists_folders_and_drops_files_and_archives(self, _emit):
        graph = graph_with_children(
            [
                folder("1001 Smith Residence"),
                folder("Archive"),
                folder("0999 Old Job (Archive)"),
                folder("2019 ARCHIVED"),
                file_entry("notes.pdf"),
                folder("1002 Jones Remodel", parentReference={"driveId": "drive-active", "path": "/drive/root:"}),
            ]
        )

        items = SourceCrawler(graph).crawl(SITE_URL, "Active Jobs")

        self.assertEqual([item.name for item in items], ["1001 Smith Residence", "1002 Jones Remodel"])
        self.assertEqual(items[1].drive_id, "drive-active")
        self.assertTrue(items[0].link.endswith("1001 Smith Residence"))

    def test_nested_path_is_encoded(self, _emit):
        graph = graph_with_children([folder("A")])

        SourceCrawler(graph).crawl(SITE_URL, "/Active Jobs/2024 Projects/Open/")

        listing_path = graph.paths[-1]
        self.assertTrue(listing_path.startswith("/drives/drive-active/root:/2024%20Projects/Open:/children?"))

    def test_root_listing_when_no_sub_path(self, _emit):
        graph = graph_with_children([folder("A")])
        SourceCrawler(graph).crawl(SITE_URL, "Active Jobs")
        self.assertTrue(graph.paths[-1].startswith("/drives/drive-active/root/children?"))

    def test_missing_library_raises_not_found(self, _emit):
        graph = graph_with_children([], drives=[{"id": "drive-docs", "name": "Documents"}])
        with self.assertRaises(NotFoundError):
            SourceCrawler(graph).crawl(SITE_URL, "Active Jobs")

    def test_library_match_is_exact(self, _emit):
        graph = graph_with_children([], drives=[{"id": "drive-x", "name": "active jobs"}])
        with self.assertRaises(NotFoundError):
            SourceCrawler(graph).crawl(SITE_URL, "Active Jobs")

    def test_missing_site_raises_not_found(self, _emit):
        graph = FakeGraph(
            {"/sites/contoso.sharepoint.com:/sites/Projects": UpstreamError(404, "itemNotFound", "https://graph/sites")}
        )
        with self.assertRaises(NotFoundError):
            SourceCrawler(graph).crawl(SITE_URL, "Active Jobs")

    def test_listing_failure_propagates(self, _emit):
        graph = graph_with_children(UpstreamError(500, "boom", "https://graph/drives"))
        with self.assertRaises(UpstreamError):
            SourceCrawler(graph).crawl(SITE_URL, "Active Jobs")


class LocationParsingTests(unittest.TestCase):
    def test_site_lookup_path(self):
        self.assertEqual(site_lookup_path(SITE_URL), "/sites/contoso.sharepoint.com:/sites/Projects")
        self.assertEqual(site_lookup_path("https://contoso.sharepoint.com/"), "/sites/contoso.sharepoint.com")
        self.assertEqual(
            site_lookup_path("https://contoso.sharepoint.com/teams/Field Ops"),
            "/sites/contoso.sharepoint.com:/teams/Field%20Ops",
        )

    def test_split_library_path(self):
        self.assertEqual(split_library_path("Active Jobs"), ("Active Jobs", []))
        self.assertEqual(split_library_path("/Active Jobs/2024/Open/"), ("Active Jobs", ["2024", "Open"]))
        with self.assertRaises(ValueError):
            split_library_path("  / ")


if __name__ == "__main__":
    unittest.main()
