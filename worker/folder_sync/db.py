import os
import re
from contextlib import contextmanager

import psycopg2
import psycopg2.extras

from folder_sync.errors import RunLockedError
from folder_sync.runtime_logger import emit


DB_URL = os.getenv("DATABASE_URL")
DB_CONNECT_TIMEOUT_SECONDS = int(os.getenv("DB_CONNECT_TIMEOUT_SECONDS", "10"))

_WRITE_PATTERN = re.compile(r"(?is)^(insert\s+into|update|delete\s+from)\s+([a-zA-Z0-9_.\"]+)")


def _describe_write(query: str) -> tuple[str, str]:
    normalized = " ".join((query or "").strip().split())
    match = _WRITE_PATTERN.match(normalized)
    if not match:
        return "unknown", "unknown"
    op = match.group(1).split()[0].lower()
    return op, match.group(2).strip('"')


def get_conn():
    db_url = DB_URL or os.getenv("DATABASE_URL")
    if not db_url:
        raise RuntimeError("DATABASE_URL is not set")
    return psycopg2.connect(db_url, connect_timeout=DB_CONNECT_TIMEOUT_SECONDS)


@contextmanager
def get_cursor(commit: bool = False):
    conn = get_conn()
    try:
        cur = conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
        yield cur
        if commit:
            conn.commit()
    finally:
        conn.close()


def jsonb(value):
    return psycopg2.extras.Json(value)


def fetch_one(query, params=None):
    with get_cursor() as cur:
        cur.execute(query, params or [])
        return cur.fetchone()


def execute(query, params=None):
    op, table = _describe_write(query)
    with get_cursor(commit=True) as cur:
        try:
            cur.execute(query, params or [])
        except Exception as exc:
            emit("ERROR", "DB_CONN", f"Write failed: table={table} op={op} error={exc}")
            raise
        rowcount = cur.rowcount
        emit("INFO", "DB_CONN", f"Write completed: table={table} op={op} rows={rowcount}")
        return rowcount


def try_advisory_lock(cur, key: str) -> bool:
    lock_key = str(key)
    try:
        cur.execute("SELECT pg_try_advisory_lock(hashtext(%s))", [lock_key])
        locked = bool(cur.fetchone()[0])
    except Exception as exc:
        emit("ERROR", "DB_CONN", f"Advisory lock failed: key={lock_key} error={exc}")
        raise
    if locked:
        emit("INFO", "DB_CONN", f"Advisory lock acquired: key={lock_key}")
    else:
        emit("WARN", "DB_CONN", f"Advisory lock not_acquired: key={lock_key}")
    return locked


def advisory_unlock(cur, key: str) -> bool:
    lock_key = str(key)
    try:
        cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", [lock_key])
        unlocked = bool(cur.fetchone()[0])
    except Exception as exc:
        emit("ERROR", "DB_CONN", f"Advisory lock release failed: key={lock_key} error={exc}")
        raise
    if unlocked:
        emit("INFO", "DB_CONN", f"Advisory lock released: key={lock_key}")
    else:
        emit("WARN", "DB_CONN", f"Advisory lock release_not_held: key={lock_key}")
    return unlocked


@contextmanager
def advisory_lock(key: str):
    """Hold a session-level advisory lock for the duration of the block.

    Raises ``RunLockedError`` when another session already holds ``key``.
    """
    conn = get_conn()
    try:
        conn.autocommit = True
        cur = conn.cursor()
        if not try_advisory_lock(cur, key):
            raise RunLockedError(key)
        try:
            yield
        finally:
            advisory_unlock(cur, key)
    finally:
        conn.close()
