from __future__ import annotations

import logging
from typing import Optional, Protocol

import requests

from diagnostics.telemetry import emit_metric

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


class Fetcher(Protocol):
    def fetch(self, url: str) -> Optional[bytes]: ...


class HttpFetcher:
    """Blocking HTTP GET returning the body, or ``None`` on any transport failure."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        timeout_sec = float(timeout or 0)
        if timeout_sec <= 0:
            timeout_sec = DEFAULT_TIMEOUT
        self._timeout = timeout_sec
        self._session = session or requests.Session()

    def fetch(self, url: str) -> Optional[bytes]:
        error: Optional[str] = None
        status_code: Optional[int] = None
        try:
            resp = self._session.get(url, timeout=self._timeout)
            try:
                if 200 <= resp.status_code < 300:
                    return resp.content
                status_code = resp.status_code
                error = "non_2xx_status"
            finally:
                resp.close()
        except requests.Timeout:
            error = "timeout"
        except requests.ConnectionError:
            error = "connection_error"
        except requests.RequestException:
            error = "request_error"
        logger.warning("fetch failed url=%s error=%s status=%s", url, error, status_code)
        emit_metric("fetch.failed", url=url, error=error, status_code=status_code)
        return None

    def close(self) -> None:
        self._session.close()


def fetch_text(fetcher: Fetcher, url: str) -> Optional[str]:
    data = fetcher.fetch(url)
    if not data:
        return None
    return data.decode("utf-8", errors="replace")
