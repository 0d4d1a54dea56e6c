import os
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Dict, Optional

from folder_sync import audit, db
from folder_sync.backoff import Deadline
from folder_sync.batch_writer import BatchWriter
from folder_sync.config import SyncConfig
from folder_sync.errors import RunLockedError, SyncError
from folder_sync.graph_client import GraphClient
from folder_sync.reconciler import reconcile
from folder_sync.registry_client import RegistryClient
from folder_sync.registry_snapshot import RegistrySnapshot
from folder_sync.run_report import RunReport
from folder_sync.runtime_logger import emit, short_error
from folder_sync.source_crawler import SourceCrawler
from folder_sync.token_cache import TokenCache, http_client_credentials, msal_client_credentials


@dataclass
class SyncRuntime:
    """Process-lifetime collaborators shared by every run."""

    config: SyncConfig
    graph_tokens: TokenCache
    registry_tokens: TokenCache
    registry_base_url: Optional[str] = None
    run_lock: Callable[[str], ContextManager[Any]] = db.advisory_lock
    audit_sink: Callable[[RunReport], None] = audit.log_run
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic
    graph_client_factory: Optional[Callable[[Deadline], Any]] = None
    registry_client_factory: Optional[Callable[[Deadline], Any]] = None

    def graph_client(self, deadline: Deadline):
        if self.graph_client_factory is not None:
            return self.graph_client_factory(deadline)
        return GraphClient(self.graph_tokens, deadline=deadline, sleep=self.sleep, max_pages=self.config.max_pages)

    def registry_client(self, deadline: Deadline):
        if self.registry_client_factory is not None:
            return self.registry_client_factory(deadline)
        return RegistryClient(
            self.registry_tokens,
            base_url=self.registry_base_url,
            max_pages=self.config.max_pages,
            deadline=deadline,
            sleep=self.sleep,
            max_attempts=self.config.max_attempts,
            rate_limit_wait_seconds=self.config.rate_limit_wait_seconds,
            backoff_base_seconds=self.config.backoff_base_seconds,
        )


def build_runtime(config: Optional[SyncConfig] = None) -> SyncRuntime:
    tenant_id = os.getenv("ENTRA_TENANT_ID")
    client_id = os.getenv("ENTRA_CLIENT_ID")
    client_secret = os.getenv("ENTRA_CLIENT_SECRET")
    if not tenant_id or not client_id or not client_secret:
        raise RuntimeError("ENTRA_TENANT_ID/ENTRA_CLIENT_ID/ENTRA_CLIENT_SECRET must be set")

    registry_base_url = os.getenv("REGISTRY_BASE_URL")
    registry_token_url = os.getenv("REGISTRY_TOKEN_URL")
    registry_client_id = os.getenv("REGISTRY_CLIENT_ID")
    registry_client_secret = os.getenv("REGISTRY_CLIENT_SECRET")
    if not registry_base_url or not registry_token_url or not registry_client_id or not registry_client_secret:
        raise RuntimeError(
            "REGISTRY_BASE_URL/REGISTRY_TOKEN_URL/REGISTRY_CLIENT_ID/REGISTRY_CLIENT_SECRET must be set"
        )

    graph_tokens = TokenCache(
        msal_client_credentials(tenant_id, client_id, client_secret),
        name="graph",
    )
    registry_tokens = TokenCache(
        http_client_credentials(
            registry_token_url,
            registry_client_id,
            registry_client_secret,
            os.getenv("REGISTRY_SCOPE") or None,
        ),
        name="registry",
    )
    return SyncRuntime(
        config=config or SyncConfig.from_env(),
        graph_tokens=graph_tokens,
        registry_tokens=registry_tokens,
        registry_base_url=registry_base_url,
    )


def run_lock_key(site_url: str, library_path: str) -> str:
    return f"folder_sync:{site_url}:{library_path}"


def run_folder_sync(
    runtime: SyncRuntime,
    *,
    trigger: str = "manual",
    site_url: Optional[str] = None,
    library_path: Optional[str] = None,
    actor: Optional[Dict[str, Any]] = None,
    run_id: Optional[str] = None,
) -> RunReport:
    """Run one full reconciliation and return its report.

    Never raises for run failures: fatal errors end the run with
    ``status="failed"`` and the phase that raised; a held run lock ends it
    with ``status="skipped"``. The report is always handed to the audit sink.
    """
    config = runtime.config
    site_url = site_url or config.site_url
    library_path = library_path or config.library_path
    report = RunReport(
        run_id=run_id or str(uuid.uuid4()),
        trigger=trigger,
        site_url=site_url,
        library_path=library_path,
    )
    actor_name = (actor or {}).get("preferred_username") or (actor or {}).get("name") or "-"

    if not site_url or not library_path:
        report.finish("failed", phase="config", error="site_url and library_path are required")
        emit("ERROR", "SYNC", f"Folder sync not started: run_id={report.run_id} error={report.error}")
        _hand_to_audit(runtime, report)
        return report

    emit(
        "INFO",
        "SYNC",
        f"Folder sync started: run_id={report.run_id} trigger={trigger} actor={actor_name} site_url={site_url} library_path={library_path}",
    )
    deadline = Deadline(config.deadline_seconds, clock=runtime.clock)
    phase = "lock"
    try:
        with runtime.run_lock(run_lock_key(site_url, library_path)):
            phase = "auth"
            runtime.graph_tokens.get_token()
            runtime.registry_tokens.get_token()

            phase = "crawl"
            items = SourceCrawler(runtime.graph_client(deadline)).crawl(site_url, library_path)
            report.source_scanned = len(items)

            phase = "snapshot"
            deadline.check(phase)
            registry = runtime.registry_client(deadline)
            snapshot = RegistrySnapshot.take(registry, config.listing_name_field)
            report.registry_scanned = len(snapshot.records)
            report.registry_unnamed_skipped = snapshot.unnamed_skipped

            phase = "reconcile"
            plan = reconcile(items, snapshot)
            report.skipped_existing = plan.skipped_existing
            emit(
                "INFO",
                "SYNC",
                f"Drift computed: run_id={report.run_id} new={len(plan.new_items)} duplicate_groups={len(plan.duplicate_groups)} duplicate_deletes={len(plan.duplicate_deletes)} orphans={len(plan.orphan_records)} existing={plan.skipped_existing}",
            )

            phase = "write"
            writer = BatchWriter(
                registry,
                name_field=config.name_field,
                link_field=config.link_field,
                batch_size=config.batch_size,
                max_attempts=config.max_attempts,
                item_delay_seconds=config.item_delay_seconds,
                batch_delay_seconds=config.batch_delay_seconds,
                rate_limit_wait_seconds=config.rate_limit_wait_seconds,
                backoff_base_seconds=config.backoff_base_seconds,
                deadline=deadline,
                sleep=runtime.sleep,
            )
            writer.apply(plan, report)
    except RunLockedError as exc:
        report.finish("skipped", phase="lock", error=str(exc))
        emit("WARN", "SYNC", f"Folder sync skipped: run_id={report.run_id} error={exc}")
    except Exception as exc:
        if isinstance(exc, SyncError) and not exc.phase:
            exc.phase = phase
        failed_phase = getattr(exc, "phase", None) or phase
        report.finish("failed", phase=failed_phase, error=str(exc))
        emit(
            "ERROR",
            "SYNC",
            f"Folder sync failed: run_id={report.run_id} phase={failed_phase} error={short_error(exc)}",
        )
    else:
        report.finish("success")
        emit(
            "INFO" if report.error_count == 0 else "WARN",
            "SYNC",
            f"Folder sync finished: run_id={report.run_id} created={report.created} existing={report.skipped_existing} duplicates_deleted={report.duplicates_deleted} orphans_deleted={report.orphans_deleted} item_errors={report.error_count}",
        )

    _hand_to_audit(runtime, report)
    return report


def _hand_to_audit(runtime: SyncRuntime, report: RunReport):
    try:
        runtime.audit_sink(report)
    except Exception as exc:
        emit("WARN", "SYNC", f"Run audit write failed: run_id={report.run_id} error={short_error(exc)}")
