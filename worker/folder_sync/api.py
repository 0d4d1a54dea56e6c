import threading
from http import HTTPStatus
from typing import Optional

from flask import Flask, g, jsonify, request

from folder_sync import db
from folder_sync.auth import require_sync_caller
from folder_sync.job import SyncRuntime, build_runtime, run_folder_sync
from folder_sync.runtime_logger import emit
from folder_sync.scheduler import get_scheduler_status


def _status_phrase(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return "Unknown Status"


def _response_error_summary(response) -> str:
    payload = response.get_json(silent=True)
    if isinstance(payload, dict):
        if payload.get("error"):
            return str(payload.get("error"))
        if payload.get("message"):
            return str(payload.get("message"))
    body = response.get_data(as_text=True) or ""
    body = body.replace("\n", " ").replace("\r", " ").strip()
    if not body:
        return "unspecified_error"
    if len(body) > 220:
        return body[:217] + "..."
    return body


def _http_status_for(report) -> int:
    if report.status == "success":
        return 200
    if report.status == "skipped":
        return 409
    return 500


def create_app(runtime: Optional[SyncRuntime] = None):
    app = Flask(__name__)
    runtime_lock = threading.Lock()
    state = {"runtime": runtime}

    def get_runtime() -> SyncRuntime:
        with runtime_lock:
            if state["runtime"] is None:
                state["runtime"] = build_runtime()
            return state["runtime"]

    app.extensions["folder_sync_runtime"] = get_runtime

    @app.before_request
    def log_request_start():
        g._log_method = request.method
        g._log_path = request.path
        emit("INFO", "FLASK_API", f"Request received: {request.method} {request.path}")

    @app.after_request
    def log_request_end(response):
        method = getattr(g, "_log_method", request.method)
        path = getattr(g, "_log_path", request.path)
        status = response.status_code
        phrase = _status_phrase(status)
        if 200 <= status < 300:
            emit("INFO", "FLASK_API", f"Response sent: {status} {phrase} for {method} {path}")
        else:
            error_summary = _response_error_summary(response)
            level = "WARN" if status < 500 else "ERROR"
            emit(
                level,
                "FLASK_API",
                f"Response sent: {status} {phrase} for {method} {path}; error={error_summary}",
            )
        return response

    @app.teardown_request
    def log_request_exception(exc):
        if exc is None:
            return
        method = getattr(g, "_log_method", "UNKNOWN")
        path = getattr(g, "_log_path", "UNKNOWN")
        text = str(exc).replace("\n", " ").replace("\r", " ").strip()
        if len(text) > 220:
            text = text[:217] + "..."
        emit("ERROR", "FLASK_API", f"Unhandled exception during {method} {path}: error={text}")

    @app.get("/health")
    def health():
        try:
            db.fetch_one("SELECT 1 AS ok")
            db_ok = True
        except Exception:
            db_ok = False
        return jsonify({"ok": db_ok, "db": db_ok, "scheduler": get_scheduler_status()})

    @app.route("/sync/folders", methods=["GET", "POST"])
    @require_sync_caller
    def sync_folders():
        trigger = g.sync_trigger
        site_url = request.args.get("siteUrl") or request.args.get("site_url")
        library_path = request.args.get("libraryPath") or request.args.get("library_path")

        try:
            active_runtime = get_runtime()
        except RuntimeError as exc:
            emit("ERROR", "FLASK_API", f"Sync runtime unavailable: error={exc}")
            if trigger == "cron":
                return jsonify({"ok": False, "error": str(exc)}), 500
            return jsonify({"ok": False, "status": "failed", "phase": "config", "error": str(exc)}), 500

        report = run_folder_sync(
            active_runtime,
            trigger=trigger,
            site_url=site_url,
            library_path=library_path,
            actor=g.claims,
        )
        status_code = _http_status_for(report)
        if trigger == "cron":
            return jsonify(report.summary()), status_code
        return jsonify(report.to_dict()), status_code

    return app
