ALLOWED_LOG_TYPES = {"INFO", "WARN", "ERROR"}
ALLOWED_ACTORS = {"FLASK_API", "SCHEDULER", "GRAPH", "REGISTRY", "SYNC", "DB_CONN"}
MAX_MESSAGE_LENGTH = 600


def _sanitize_text(text: object) -> str:
    message = str(text) if text is not None else ""
    message = message.replace("\n", " ").replace("\r", " ").strip()
    if not message:
        return "-"
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[: MAX_MESSAGE_LENGTH - 3] + "..."
    return message


def short_error(exc: object, limit: int = 220) -> str:
    text = str(exc).replace("\n", " ").replace("\r", " ").strip()
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def emit(log_type: str, actor: str, text: object):
    level = (log_type or "INFO").upper()
    if level not in ALLOWED_LOG_TYPES:
        level = "INFO"

    source = (actor or "").upper()
    if source not in ALLOWED_ACTORS:
        source = "SYNC"

    message = _sanitize_text(text)
    print(f"[{level}] [{source}]: {message}", flush=True)
