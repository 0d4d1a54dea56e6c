import time
from typing import Any, Callable, Iterable, Iterator, Optional

from folder_sync.backoff import Deadline, call_with_retry
from folder_sync.errors import DeadlineExceededError
from folder_sync.models import RegistryRecord, SourceItem, SyncPlan
from folder_sync.run_report import CREATE, DUPLICATE, ORPHAN, ItemError, RunReport
from folder_sync.runtime_logger import emit, short_error


def chunks(items: Iterable[Any], size: int) -> Iterator[list[Any]]:
    batch: list[Any] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


class BatchWriter:
    """Serial, batched registry mutations.

    One request at a time: items in a batch are spaced by
    ``item_delay_seconds`` and batches by ``batch_delay_seconds``. Each item
    is retried on any upstream failure up to ``max_attempts``; after
    that it is recorded as an ``ItemError`` and the writer moves on. Only the
    run deadline stops the writer early.
    """

    def __init__(
        self,
        registry,
        *,
        name_field: str,
        link_field: Optional[str] = None,
        batch_size: int = 5,
        max_attempts: int = 3,
        item_delay_seconds: float = 0.5,
        batch_delay_seconds: float = 3.0,
        rate_limit_wait_seconds: float = 5.0,
        backoff_base_seconds: float = 2.0,
        deadline: Optional[Deadline] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._registry = registry
        self._name_field = name_field
        self._link_field = link_field
        self._batch_size = max(1, int(batch_size))
        self._max_attempts = max(1, int(max_attempts))
        self._item_delay_seconds = item_delay_seconds
        self._batch_delay_seconds = batch_delay_seconds
        self._rate_limit_wait_seconds = rate_limit_wait_seconds
        self._backoff_base_seconds = backoff_base_seconds
        self._deadline = deadline or Deadline(None)
        self._sleep = sleep

    def apply(self, plan: SyncPlan, report: Optional[RunReport] = None) -> RunReport:
        report = report if report is not None else RunReport()
        report.skipped_existing = plan.skipped_existing

        # Duplicates before orphans before creates.
        self._run(DUPLICATE, plan.duplicate_deletes, self._delete, report)
        self._run(ORPHAN, plan.orphan_records, self._delete, report)
        self._run(CREATE, plan.new_items, self._create, report)
        return report

    def create_fields(self, item: SourceItem) -> dict:
        fields = {self._name_field: item.name}
        if self._link_field:
            fields[self._link_field] = item.link or ""
        return fields

    def _create(self, item: SourceItem):
        return self._registry.create_record(self.create_fields(item))

    def _delete(self, record: RegistryRecord):
        if not record.id:
            raise ValueError("registry record has no id")
        return self._registry.delete_record(record.id)

    def _run(self, category: str, items: list, operation: Callable[[Any], Any], report: RunReport):
        if not items:
            return
        total_batches = (len(items) + self._batch_size - 1) // self._batch_size
        emit("INFO", "SYNC", f"Registry writes started: category={category} items={len(items)} batches={total_batches}")

        for batch_index, batch in enumerate(chunks(items, self._batch_size)):
            if batch_index:
                self._deadline.sleep(self._batch_delay_seconds, self._sleep, what=f"{category} batch cooldown")
            for position, item in enumerate(batch):
                if position:
                    self._deadline.sleep(self._item_delay_seconds, self._sleep, what=f"{category} item spacing")
                self._write_one(category, item, operation, report)

        emit(
            "INFO",
            "SYNC",
            f"Registry writes finished: category={category} items={len(items)} errors={len(self._errors_for(category, report))}",
        )

    def _write_one(self, category: str, item: Any, operation: Callable[[Any], Any], report: RunReport):
        record_id = item.id if isinstance(item, RegistryRecord) else None

        def on_retry(attempt: int, exc: BaseException, wait: float):
            emit(
                "WARN",
                "REGISTRY",
                f"Registry write retrying: category={category} name={item.name} attempt={attempt}/{self._max_attempts} wait={wait:g}s error={short_error(exc)}",
            )

        try:
            call_with_retry(
                lambda: operation(item),
                max_attempts=self._max_attempts,
                deadline=self._deadline,
                sleep=self._sleep,
                rate_limit_wait_seconds=self._rate_limit_wait_seconds,
                backoff_base_seconds=self._backoff_base_seconds,
                on_retry=on_retry,
                what=f"{category} write",
            )
        except DeadlineExceededError:
            raise
        except Exception as exc:
            attempts = getattr(exc, "attempts", 1)
            report.record_error(
                ItemError(category=category, name=item.name, record_id=record_id, error=str(exc), attempts=attempts)
            )
            emit(
                "ERROR",
                "REGISTRY",
                f"Registry write failed: category={category} name={item.name} record_id={record_id} attempts={attempts} error={short_error(exc)}",
            )
            return
        report.record_success(category)

    @staticmethod
    def _errors_for(category: str, report: RunReport) -> list[ItemError]:
        if category == CREATE:
            return report.create_errors
        if category == DUPLICATE:
            return report.duplicate_errors
        return report.orphan_errors
