from folder_sync import db
from folder_sync.run_report import RunReport


def log_run(report: RunReport):
    db.execute(
        """
        INSERT INTO folder_sync_runs
          (run_id, trigger, status, phase, error, started_at, finished_at, summary)
        VALUES
          (%s, %s, %s, %s, %s, %s, %s, %s)
        ON CONFLICT (run_id) DO UPDATE SET
          status = EXCLUDED.status,
          phase = EXCLUDED.phase,
          error = EXCLUDED.error,
          finished_at = EXCLUDED.finished_at,
          summary = EXCLUDED.summary
        """,
        [
            report.run_id,
            report.trigger,
            report.status,
            report.phase,
            report.error,
            report.started_at,
            report.finished_at,
            db.jsonb(report.to_dict()),
        ],
    )
