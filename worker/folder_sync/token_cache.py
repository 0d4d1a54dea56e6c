import threading
import time
from typing import Any, Callable, Dict, Optional

import requests
from msal import ConfidentialClientApplication

from folder_sync.errors import AuthError
from folder_sync.runtime_logger import emit, short_error


DEFAULT_SKEW_SECONDS = 60
DEFAULT_TOKEN_LIFETIME_SECONDS = 55 * 60
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

TokenAcquirer = Callable[[], Dict[str, Any]]


class TokenCache:
    """Bearer token holder for one downstream API.

    ``acquire`` performs the client-credentials grant and returns a mapping with
    ``access_token`` and ``expires_in``. The cached token is served until
    ``skew_seconds`` before it expires, then replaced. One instance is created
    per process and handed to every run.
    """

    def __init__(
        self,
        acquire: TokenAcquirer,
        *,
        name: str = "token",
        skew_seconds: float = DEFAULT_SKEW_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self._acquire = acquire
        self._name = name
        self._skew_seconds = max(float(skew_seconds), float(DEFAULT_SKEW_SECONDS))
        self._clock = clock
        self._lock = threading.Lock()
        self._cached_token: Optional[str] = None
        self._cached_token_expires_at: float = 0.0

    @property
    def name(self) -> str:
        return self._name

    def _is_fresh(self) -> bool:
        return bool(self._cached_token) and self._clock() < (self._cached_token_expires_at - self._skew_seconds)

    def get_token(self) -> str:
        if self._is_fresh():
            return self._cached_token

        with self._lock:
            if self._is_fresh():
                return self._cached_token

            result = self._acquire() or {}
            access_token = result.get("access_token")
            if not access_token:
                reason = result.get("error_description") or result.get("error") or "missing access_token"
                emit("ERROR", "SYNC", f"Token acquisition failed: cache={self._name} error={short_error(reason)}")
                raise AuthError(f"Failed to acquire {self._name} token: {reason}", phase="auth")

            expires_in = result.get("expires_in")
            try:
                lifetime = float(expires_in)
            except (TypeError, ValueError):
                lifetime = float(DEFAULT_TOKEN_LIFETIME_SECONDS)
            self._cached_token_expires_at = self._clock() + lifetime
            self._cached_token = access_token
            return access_token

    def invalidate(self):
        with self._lock:
            self._cached_token = None
            self._cached_token_expires_at = 0.0


def msal_client_credentials(tenant_id: str, client_id: str, client_secret: str, scope: str = GRAPH_SCOPE) -> TokenAcquirer:
    cca = ConfidentialClientApplication(
        client_id,
        authority=f"https://login.microsoftonline.com/{tenant_id}",
        client_credential=client_secret,
    )
    scopes = [scope]

    def acquire() -> Dict[str, Any]:
        result = cca.acquire_token_silent(scopes, account=None)
        if not result:
            result = cca.acquire_token_for_client(scopes=scopes)
        return result or {}

    return acquire


def http_client_credentials(
    token_url: str,
    client_id: str,
    client_secret: str,
    scope: Optional[str] = None,
    *,
    timeout: float = 30.0,
    session: Optional[requests.Session] = None,
) -> TokenAcquirer:
    http = session or requests.Session()

    def acquire() -> Dict[str, Any]:
        form = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        }
        if scope:
            form["scope"] = scope
        try:
            resp = http.post(token_url, data=form, timeout=timeout)
        except requests.RequestException as exc:
            raise AuthError(f"Token endpoint unreachable: {exc}", phase="auth") from exc
        if not resp.ok:
            raise AuthError(
                f"Client-credentials grant rejected: status={resp.status_code} body={(resp.text or '')[:400]}",
                phase="auth",
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise AuthError("Token endpoint returned invalid JSON", phase="auth") from exc

    return acquire
