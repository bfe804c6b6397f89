from __future__ import annotations

import threading
import time
from collections import deque
from typing import Any, Deque, Dict, List

_METRIC_LIMIT = 512
_METRICS: Deque[Dict[str, Any]] = deque(maxlen=_METRIC_LIMIT)
_LOCK = threading.Lock()
_ENABLED = True


def set_telemetry_enabled(enabled: bool) -> None:
    global _ENABLED
    _ENABLED = bool(enabled)


def is_telemetry_enabled() -> bool:
    return _ENABLED


def emit_metric(name: str, value: float | int = 1, **attrs: Any) -> bool:
    """Record a degradation or lifecycle metric in the in-memory ring."""
    if not is_telemetry_enabled():
        return False
    record = {
        "name": name,
        "value": value,
        "attrs": dict(attrs),
        "ts": time.time(),
    }
    with _LOCK:
        _METRICS.append(record)
    return True


def get_recent_metrics() -> List[Dict[str, Any]]:
    with _LOCK:
        return list(_METRICS)


def count_metric(name: str) -> int:
    with _LOCK:
        return sum(1 for record in _METRICS if record["name"] == name)


def clear_metrics() -> None:
    with _LOCK:
        _METRICS.clear()
