from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from diagnostics import telemetry  # noqa: E402


class FakeFetcher:
    """Thread-safe stand-in for HttpFetcher keyed by URL."""

    def __init__(
        self,
        responses: Optional[Dict[str, Optional[bytes]]] = None,
        *,
        default: Optional[bytes] = None,
        before_return: Optional[Callable[[str], None]] = None,
    ):
        self.responses: Dict[str, Optional[bytes]] = dict(responses or {})
        self.default = default
        self.before_return = before_return
        self._lock = threading.Lock()
        self.calls: List[str] = []

    def fetch(self, url: str) -> Optional[bytes]:
        with self._lock:
            self.calls.append(url)
        if self.before_return is not None:
            self.before_return(url)
        return self.responses.get(url, self.default)

    def count(self, url: str) -> int:
        with self._lock:
            return self.calls.count(url)


@pytest.fixture()
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture(autouse=True)
def _clean_metrics() -> Iterator[None]:
    telemetry.set_telemetry_enabled(True)
    telemetry.clear_metrics()
    yield
    telemetry.clear_metrics()
