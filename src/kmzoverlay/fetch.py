"""HTTP access for static maps and remote document assets."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Mapping

import requests

from .config import HttpConfig


_RETRYABLE_HTTP_STATUS = {429, 500, 502, 503, 504}
_MAX_RETRY_DELAY_S = 60.0

_LOGGER = logging.getLogger("kmzoverlay.fetch")


class AssetFetchError(RuntimeError):
    """An image or document asset could not be retrieved."""


class HttpFetcher:
    """Shared `requests` session with timeouts and retry/backoff."""

    def __init__(self, cfg: HttpConfig, *, session: requests.Session | None = None) -> None:
        self.cfg = cfg
        self._session = session if session is not None else requests.Session()
        self._session.headers.update({"User-Agent": cfg.user_agent})
        self._max_retries = max(int(cfg.max_retries), 0)
        self._retry_backoff_s = max(float(cfg.retry_backoff_s), 0.01)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def get_bytes(self, url: str, *, params: Mapping[str, Any] | None = None) -> bytes:
        try:
            response = self._request_get(url, params=params)
        except requests.RequestException as exc:
            raise AssetFetchError(f"Failed fetching {_redact(url)}: {exc}") from exc
        content = response.content
        if not content:
            raise AssetFetchError(f"Empty response body from {_redact(url)}")
        return content

    def download(self, url: str, output_path: Path) -> Path:
        payload = self.get_bytes(url)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(payload)
        _LOGGER.info("Downloaded %s (%d bytes) to %s", _redact(url), len(payload), output_path)
        return output_path

    def _request_get(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
    ) -> requests.Response:
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            response = self._session.get(url, params=params, timeout=self.cfg.request_timeout_s)
            if response.status_code not in _RETRYABLE_HTTP_STATUS:
                response.raise_for_status()
                return response
            if attempt >= self._max_retries:
                response.raise_for_status()
            delay_s = self._compute_retry_delay_s(response=response, attempt=attempt)
            _LOGGER.warning(
                "Retryable response %s for %s; retrying in %.1fs (%d/%d)",
                response.status_code,
                _redact(str(response.url or url)),
                delay_s,
                attempt + 1,
                self._max_retries,
            )
            response.close()
            time.sleep(delay_s)
        raise RuntimeError("Unreachable retry loop in HTTP fetcher")

    def _compute_retry_delay_s(self, *, response: requests.Response, attempt: int) -> float:
        retry_after_s = _parse_retry_after_seconds(response.headers.get("Retry-After"))
        exponential_s = self._retry_backoff_s * (2**attempt)
        return min(max(exponential_s, retry_after_s), _MAX_RETRY_DELAY_S)


def _parse_retry_after_seconds(raw: str | None) -> float:
    if raw is None:
        return 0.0
    value = raw.strip()
    if not value:
        return 0.0
    try:
        parsed = float(value)
    except ValueError:
        return 0.0
    return max(parsed, 0.0)


def _redact(url: str) -> str:
    # static map URLs carry the API key as a query parameter
    if "key=" not in url:
        return url
    head, _, tail = url.partition("key=")
    _, amp, rest = tail.partition("&")
    return f"{head}key=***{amp}{rest}"
