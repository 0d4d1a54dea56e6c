import os
import time
from typing import Any, Callable, Dict, Iterator, Optional
from urllib.parse import quote

import requests

from folder_sync.backoff import Deadline, call_with_retry, parse_retry_after
from folder_sync.errors import RateLimitedError, UpstreamError
from folder_sync.paging import DEFAULT_MAX_PAGES, iter_pages, page_number_page
from folder_sync.runtime_logger import emit, short_error
from folder_sync.token_cache import TokenCache


class RegistryClient:
    """Thin client for the registry table's item endpoints.

    Reads are paged by ``pageNumber`` and each page is retried like a write.
    Writes are single attempts: a 429 becomes ``RateLimitedError`` carrying
    the advertised wait, and the caller decides whether to retry. Every
    request checks the run deadline first.
    """

    def __init__(
        self,
        tokens: TokenCache,
        *,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        max_pages: int = DEFAULT_MAX_PAGES,
        deadline: Optional[Deadline] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = 3,
        rate_limit_wait_seconds: float = 5.0,
        backoff_base_seconds: float = 2.0,
    ):
        base = base_url or os.getenv("REGISTRY_BASE_URL")
        if not base:
            raise RuntimeError("REGISTRY_BASE_URL must be set")
        self._base_url = base.rstrip("/")
        self._tokens = tokens
        self._session = session or requests.Session()
        self._timeout = timeout if timeout is not None else float(os.getenv("REGISTRY_TIMEOUT", "30"))
        self._max_pages = max_pages
        self._deadline = deadline or Deadline(None)
        self._sleep = sleep
        self._max_attempts = max_attempts
        self._rate_limit_wait_seconds = rate_limit_wait_seconds
        self._backoff_base_seconds = backoff_base_seconds

    @property
    def items_url(self) -> str:
        return f"{self._base_url}/items"

    def _send(self, method: str, url: str, *, params: Any = None, json: Any = None):
        self._deadline.check(f"registry {method}")
        headers = {
            "Authorization": f"Bearer {self._tokens.get_token()}",
            "Cache-Control": "no-cache",
        }
        try:
            return self._session.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            emit("WARN", "REGISTRY", f"Registry request failed: method={method} url={url} error={exc}")
            raise UpstreamError(None, str(exc), url) from exc

    def _request(self, method: str, url: str, *, params: Any = None, json: Any = None):
        resp = self._send(method, url, params=params, json=json)
        if resp.status_code == 401:
            # One retry with a freshly acquired token.
            self._tokens.invalidate()
            emit("WARN", "REGISTRY", f"Registry request retrying after 401: method={method} url={url}")
            resp = self._send(method, url, params=params, json=json)
            if resp.status_code == 401:
                self._tokens.invalidate()

        if resp.status_code == 429:
            text = resp.text or ""
            retry_after = parse_retry_after(resp.headers, text)
            emit(
                "WARN",
                "REGISTRY",
                f"Registry rate limited: method={method} url={url} retry_after={retry_after}",
            )
            raise RateLimitedError(429, text[:400] or "rate_limited", url, text, retry_after=retry_after)

        if not resp.ok:
            text = resp.text or ""
            message = text[:400] if text else "request_failed"
            emit(
                "WARN",
                "REGISTRY",
                f"Registry request failed with status={resp.status_code}: method={method} url={url} error={short_error(message)}",
            )
            raise UpstreamError(resp.status_code, message, url, text)
        return resp

    def _json(self, resp, url: str) -> Any:
        if resp.status_code == 204 or not (resp.content or b"").strip():
            return {}
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(resp.status_code, "invalid_json", url, resp.text or "") from exc

    def list_page(self, page_number: int) -> Any:
        url = self.items_url
        resp = self._request("GET", url, params={"pageNumber": page_number})
        return self._json(resp, url)

    def iter_records(self) -> Iterator[Dict[str, Any]]:
        def fetch(page_number: int):
            def on_retry(attempt: int, exc: BaseException, wait: float):
                emit(
                    "WARN",
                    "REGISTRY",
                    f"Registry listing retrying: page={page_number} attempt={attempt}/{self._max_attempts} wait={wait:g}s error={short_error(exc)}",
                )

            body, _ = call_with_retry(
                lambda: self.list_page(page_number),
                max_attempts=self._max_attempts,
                deadline=self._deadline,
                sleep=self._sleep,
                rate_limit_wait_seconds=self._rate_limit_wait_seconds,
                backoff_base_seconds=self._backoff_base_seconds,
                on_retry=on_retry,
                what="registry listing",
            )
            return page_number_page(body, page_number)

        return iter_pages(fetch, 1, max_pages=self._max_pages, label="registry_items")

    def create_record(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        url = self.items_url
        resp = self._request("POST", url, json={"data": fields})
        return self._json(resp, url)

    def delete_record(self, record_id: str) -> bool:
        """Delete one record; returns False when it was already gone."""
        url = f"{self.items_url}/{quote(str(record_id), safe='')}"
        try:
            self._request("DELETE", url)
        except RateLimitedError:
            raise
        except UpstreamError as exc:
            if exc.status_code == 404:
                emit("WARN", "REGISTRY", f"Registry record already deleted: record_id={record_id}")
                return False
            raise
        return True
