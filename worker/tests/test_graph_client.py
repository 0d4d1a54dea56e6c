import sys
import unittest
from pathlib import Path
from unittest.mock import patch


ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, Path(__file__).resolve().parent):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fakes import FakeResponse, FakeSession, FakeSleep, FakeTokens
from folder_sync.errors import UpstreamError
from folder_sync.graph_client import GraphClient


@patch("folder_sync.graph_client.emit")
class GraphClientTests(unittest.TestCase):
    def test_collect_paged_follows_next_link(self, _emit):
        session = FakeSession(
            [
                FakeResponse(200, {"value": [{"id": "a"}], "@odata.nextLink": "https://graph.microsoft.com/v1.0/next?page=2"}),
                FakeResponse(200, {"value": [{"id": "b"}]}),
            ]
        )
        client = GraphClient(FakeTokens(), session=session, sleep=FakeSleep())

        items = client.collect_paged("/drives/d1/root/children")

        self.assertEqual([i["id"] for i in items], ["a", "b"])
        self.assertEqual(session.requests[0]["url"], "https://graph.microsoft.com/v1.0/drives/d1/root/children")
        self.assertEqual(session.requests[1]["url"], "https://graph.microsoft.com/v1.0/next?page=2")

    def test_throttled_read_honors_retry_after(self, _emit):
        sleep = FakeSleep()
        session = FakeSession(
            [
                FakeResponse(429, headers={"Retry-After": "4"}, text="throttled"),
                FakeResponse(200, {"id": "site-1"}),
            ]
        )
        client = GraphClient(FakeTokens(), session=session, sleep=sleep)

        self.assertEqual(client.get_json("/sites/root"), {"id": "site-1"})
        self.assertEqual(sleep.waits, [4.0])

    def test_unauthorized_refreshes_token_and_retries(self, _emit):
        tokens = FakeTokens()
        session = FakeSession([FakeResponse(401, text="expired"), FakeResponse(200, {"ok": True})])
        client = GraphClient(tokens, session=session, sleep=FakeSleep())

        self.assertEqual(client.get_json("/sites/root"), {"ok": True})
        self.assertEqual(tokens.invalidations, 1)

    def test_client_error_raises_upstream_error(self, _emit):
        session = FakeSession([FakeResponse(403, text="accessDenied")])
        client = GraphClient(FakeTokens(), session=session, sleep=FakeSleep())

        with self.assertRaises(UpstreamError) as ctx:
            client.get_json("/sites/root")
        self.assertEqual(ctx.exception.status_code, 403)
        self.assertEqual(len(session.requests), 1)


if __name__ == "__main__":
    unittest.main()
