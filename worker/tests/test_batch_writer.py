import sys
import unittest
from pathlib import Path
from unittest.mock import patch


ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, Path(__file__).resolve().parent):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from fakes import FakeClock, FakeRegistry, FakeSleep
from folder_sync.backoff import Deadline
from folder_sync.batch_writer import BatchWriter, chunks
from folder_sync.errors import DeadlineExceededError, RateLimitedError, UpstreamError
from folder_sync.models import RegistryRecord, SourceItem, SyncPlan
from folder_sync.reconciler import reconcile
from folder_sync.registry_snapshot import RegistrySnapshot
from folder_sync.run_report import RunReport


def items(*names):
    return [SourceItem(id=f"src-{name}", name=name, link=f"https://sp/{name}") for name in names]


def make_writer(registry, sleep, **kwargs):
    options = {
        "name_field": "Project Name",
        "link_field": "Sharepoint Link",
        "batch_size": 3,
        "max_attempts": 3,
        "item_delay_seconds": 0.25,
        "batch_delay_seconds": 2.0,
        "rate_limit_wait_seconds": 5.0,
        "backoff_base_seconds": 1.0,
        "sleep": sleep,
    }
    options.update(kwargs)
    return BatchWriter(registry, **options)


@patch("folder_sync.batch_writer.emit")
class BatchWriterTests(unittest.TestCase):
    def test_rate_limited_item_succeeds_on_third_attempt(self, _emit):
        registry = FakeRegistry()
        registry.create_failures["A"] = [
            RateLimitedError(429, "Try again", "u", retry_after=2.0),
            RateLimitedError(429, "Try again", "u", retry_after=2.0),
        ]
        sleep = FakeSleep()

        report = make_writer(registry, sleep).apply(SyncPlan(new_items=items("A")))

        self.assertEqual(report.created, 1)
        self.assertEqual(report.create_errors, [])
        self.assertGreaterEqual(sleep.total, 4.0)
        self.assertEqual(registry.names(), ["A"])

    def test_permanent_failure_does_not_stop_the_batch(self, _emit):
        registry = FakeRegistry()
        registry.create_failures["I2"] = [UpstreamError(503, "unavailable", "u") for _ in range(3)]
        sleep = FakeSleep()

        report = make_writer(registry, sleep, batch_size=5).apply(
            SyncPlan(new_items=items("I1", "I2", "I3", "I4", "I5"))
        )

        self.assertEqual(report.created, 4)
        self.assertEqual([e.name for e in report.create_errors], ["I2"])
        self.assertEqual(report.create_errors[0].attempts, 3)
        self.assertEqual(registry.names(), ["I1", "I3", "I4", "I5"])
        attempted = [name for op, name in registry.calls if op == "create"]
        self.assertEqual(attempted, ["I1", "I2", "I2", "I2", "I3", "I4", "I5"])

    def test_client_error_is_retried_then_succeeds(self, _emit):
        registry = FakeRegistry()
        registry.create_failures["A"] = [UpstreamError(409, "conflict", "u")]
        sleep = FakeSleep()

        report = make_writer(registry, sleep).apply(SyncPlan(new_items=items("A")))

        self.assertEqual(report.created, 1)
        self.assertEqual(report.create_errors, [])
        self.assertEqual(sleep.waits, [1.0])

    def test_persistent_client_error_spends_all_attempts(self, _emit):
        registry = FakeRegistry()
        registry.create_failures["B"] = [UpstreamError(400, "bad field", "u") for _ in range(3)]
        report = make_writer(registry, FakeSleep()).apply(SyncPlan(new_items=items("A", "B")))
        self.assertEqual(report.created, 1)
        self.assertEqual(report.create_errors[0].attempts, 3)


    def test_deletes_duplicates_then_orphans_then_creates(self, _emit):
        registry = FakeRegistry(["A", "A", "Z"])
        snapshot = RegistrySnapshot.from_payloads(registry.iter_records())
        plan = reconcile(items("A", "N"), snapshot)

        report = make_writer(registry, FakeSleep()).apply(plan, RunReport())

        self.assertEqual(registry.calls, [("delete", "2"), ("delete", "3"), ("create", "N")])
        self.assertEqual(
            (report.duplicates_deleted, report.orphans_deleted, report.created, report.skipped_existing),
            (1, 1, 1, 1),
        )
        self.assertEqual(sorted(registry.names()), ["A", "N"])

    def test_item_and_batch_spacing(self, _emit):
        registry = FakeRegistry()
        sleep = FakeSleep()
        make_writer(registry, sleep, batch_size=2).apply(SyncPlan(new_items=items("A", "B", "C")))
        # A, 0.25, B, then cooldown before the second batch.
        self.assertEqual(sleep.waits, [0.25, 2.0])

    def test_record_without_id_is_reported(self, _emit):
        registry = FakeRegistry()
        plan = SyncPlan(orphan_records=[RegistryRecord(id=None, name="Ghost")])
        report = make_writer(registry, FakeSleep()).apply(plan)
        self.assertEqual(report.orphans_deleted, 0)
        self.assertEqual([e.name for e in report.orphan_errors], ["Ghost"])

    def test_deadline_aborts_writes(self, _emit):
        clock = FakeClock()
        sleep = FakeSleep(clock)
        registry = FakeRegistry()
        registry.create_failures["A"] = [RateLimitedError(429, "slow", "u", retry_after=30.0)]
        writer = make_writer(registry, sleep, deadline=Deadline(10, clock=clock))

        with self.assertRaises(DeadlineExceededError):
            writer.apply(SyncPlan(new_items=items("A", "B")))
        self.assertEqual(registry.names(), [])


class ChunksTests(unittest.TestCase):
    def test_chunks(self):
        self.assertEqual(list(chunks(range(5), 2)), [[0, 1], [2, 3], [4]])


if __name__ == "__main__":
    unittest.main()
