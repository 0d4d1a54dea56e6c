import sys
import unittest
from pathlib import Path
from unittest.mock import patch


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from folder_sync.config import SyncConfig


class SyncConfigTests(unittest.TestCase):
    @patch.dict("os.environ", {}, clear=True)
    def test_defaults(self):
        config = SyncConfig.from_env()
        self.assertIsNone(config.site_url)
        self.assertEqual(config.name_field, "Project Name")
        self.assertEqual(config.link_field, "Sharepoint Link")
        self.assertEqual((config.batch_size, config.max_attempts), (5, 3))
        self.assertEqual((config.item_delay_seconds, config.batch_delay_seconds), (0.5, 3.0))
        self.assertEqual(config.deadline_seconds, 280.0)
        self.assertEqual(config.listing_name_field, "Project Name")

    @patch.dict(
        "os.environ",
        {
            "FOLDER_SYNC_SITE_URL": "https://contoso.sharepoint.com/sites/Projects",
            "FOLDER_SYNC_LIBRARY_PATH": "Active Jobs",
            "FOLDER_SYNC_BATCH_SIZE": "0",
            "FOLDER_SYNC_ITEM_DELAY_MS": "250",
            "FOLDER_SYNC_DEADLINE_SECONDS": "0",
            "REGISTRY_LINK_FIELD": "",
            "REGISTRY_NAME_READ_FIELD": "fld-79075b",
        },
        clear=True,
    )
    def test_overrides(self):
        config = SyncConfig.from_env()
        self.assertEqual(config.library_path, "Active Jobs")
        self.assertEqual(config.batch_size, 1)
        self.assertEqual(config.item_delay_seconds, 0.25)
        self.assertIsNone(config.deadline_seconds)
        self.assertIsNone(config.link_field)
        self.assertEqual(config.name_field, "Project Name")
        self.assertEqual(config.listing_name_field, "fld-79075b")


if __name__ == "__main__":
    unittest.main()
