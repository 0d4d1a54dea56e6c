import os
import random
import time
from typing import Any, Callable, Dict, Iterator, Optional

import requests

from folder_sync.backoff import Deadline, parse_retry_after
from folder_sync.errors import TRANSIENT_STATUS_CODES, UpstreamError
from folder_sync.paging import DEFAULT_MAX_PAGES, iter_pages, next_link_page
from folder_sync.runtime_logger import emit
from folder_sync.token_cache import TokenCache


DEFAULT_GRAPH_BASE = "https://graph.microsoft.com/v1.0"
RETRY_STATUS_CODES = TRANSIENT_STATUS_CODES | {429}


class GraphClient:
    def __init__(
        self,
        tokens: TokenCache,
        *,
        deadline: Optional[Deadline] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        self._graph_base = os.getenv("GRAPH_BASE", DEFAULT_GRAPH_BASE).rstrip("/")
        self._max_retries = int(os.getenv("GRAPH_MAX_RETRIES", "5"))
        self._connect_timeout = float(os.getenv("GRAPH_CONNECT_TIMEOUT", "10"))
        self._read_timeout = float(os.getenv("GRAPH_READ_TIMEOUT", "60"))

        self._tokens = tokens
        self._deadline = deadline or Deadline(None)
        self._session = session or requests.Session()
        self._sleep = sleep
        self._max_pages = max_pages

    @property
    def base_url(self) -> str:
        return self._graph_base

    def _build_url(self, path_or_url: str) -> str:
        if path_or_url.startswith("http://") or path_or_url.startswith("https://"):
            return path_or_url
        if not path_or_url.startswith("/"):
            path_or_url = "/" + path_or_url
        return f"{self._graph_base}{path_or_url}"

    def get_json(self, path_or_url: str) -> Dict[str, Any]:
        return self.request_json("GET", path_or_url)

    def request_json(self, method: str, path_or_url: str, *, json: Any = None) -> Dict[str, Any]:
        url = self._build_url(path_or_url)
        backoff = 2.0

        for attempt in range(self._max_retries + 1):
            self._deadline.check(f"graph {method}")
            attempt_number = attempt + 1
            headers = {"Authorization": f"Bearer {self._tokens.get_token()}"}
            try:
                resp = self._session.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    timeout=(self._connect_timeout, self._read_timeout),
                )
            except requests.RequestException as exc:
                if attempt >= self._max_retries:
                    emit("ERROR", "GRAPH", f"Graph request failed: method={method} url={url} error={exc}")
                    raise UpstreamError(None, str(exc), url) from exc
                emit(
                    "WARN",
                    "GRAPH",
                    f"Graph request retrying after transport error: method={method} url={url} attempt={attempt_number}/{self._max_retries + 1} error={exc}",
                )
                self._deadline.sleep(backoff + random.uniform(0, 0.25), self._sleep, what="graph backoff")
                backoff = min(backoff * 2, 60)
                continue

            if resp.status_code == 401 and attempt < self._max_retries:
                self._tokens.invalidate()
                emit(
                    "WARN",
                    "GRAPH",
                    f"Graph request retrying after 401: method={method} url={url} attempt={attempt_number}/{self._max_retries + 1}",
                )
                self._deadline.sleep(0.5, self._sleep, what="graph backoff")
                continue

            if resp.status_code in RETRY_STATUS_CODES and attempt < self._max_retries:
                retry_after = parse_retry_after(resp.headers)
                emit(
                    "WARN",
                    "GRAPH",
                    f"Graph request retrying after status={resp.status_code}: method={method} url={url} attempt={attempt_number}/{self._max_retries + 1}",
                )
                if retry_after is not None:
                    self._deadline.sleep(retry_after, self._sleep, what="graph retry-after")
                else:
                    self._deadline.sleep(backoff + random.uniform(0, 0.25), self._sleep, what="graph backoff")
                    backoff = min(backoff * 2, 60)
                continue

            if not resp.ok:
                text = resp.text or ""
                message = text[:400] if text else "request_failed"
                emit(
                    "ERROR",
                    "GRAPH",
                    f"Graph request failed with status={resp.status_code}: method={method} url={url} error={message}",
                )
                raise UpstreamError(resp.status_code, message, url, text)

            if resp.status_code == 204:
                return {}
            try:
                return resp.json()
            except ValueError as exc:
                emit("ERROR", "GRAPH", f"Graph response invalid JSON: method={method} url={url}")
                raise UpstreamError(resp.status_code, "invalid_json", url, resp.text or "") from exc

        emit("ERROR", "GRAPH", f"Graph request retries exhausted: method={method} url={url}")
        raise UpstreamError(None, "retries_exhausted", url)

    def iter_paged(self, path_or_url: str) -> Iterator[Dict[str, Any]]:
        def fetch(url: str):
            return next_link_page(self.get_json(url))

        return iter_pages(fetch, self._build_url(path_or_url), max_pages=self._max_pages, label=path_or_url)

    def collect_paged(self, path_or_url: str) -> list[Dict[str, Any]]:
        return list(self.iter_paged(path_or_url))
