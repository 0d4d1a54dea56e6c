import os

from folder_sync.api import create_app
from folder_sync.scheduler import start_scheduler_thread

app = create_app()
_bootstrapped = False


def _is_enabled(value: str | None, default: bool = True) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized in {"1", "true", "t", "yes", "y", "on"}


def bootstrap_background_threads():
    global _bootstrapped
    if _bootstrapped:
        return
    if _is_enabled(os.getenv("WORKER_ENABLE_BACKGROUND_THREADS"), default=True):
        start_scheduler_thread(app.extensions["folder_sync_runtime"])
    _bootstrapped = True


bootstrap_background_threads()

if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")))
