from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from typing import Optional

from .messages import Point, Route


class SessionPhase(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    RELOADING = "reloading"


@dataclass(frozen=True, slots=True)
class PositionCommand:
    point: Optional[Point]
    focus: bool = False


@dataclass
class SyncState:
    """Per-session renderer state.

    ``desired_*`` is what the host asked for; ``last_applied_*`` is what the
    renderer was last told (or reported). A facet is sent only when the two
    differ and the renderer is ready.
    """

    online: bool = False
    phase: SessionPhase = SessionPhase.UNINITIALIZED
    desired_booth: Optional[str] = None
    desired_route: Optional[Route] = None
    desired_position: Optional[PositionCommand] = None
    last_applied_booth: Optional[str] = None
    last_applied_route: Optional[Route] = None
    last_applied_position: Optional[PositionCommand] = None
    _pending_downloads: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @property
    def pending_downloads(self) -> int:
        with self._lock:
            return self._pending_downloads

    def set_pending_downloads(self, count: int) -> None:
        with self._lock:
            self._pending_downloads = max(0, int(count))

    def download_settled(self) -> int:
        with self._lock:
            if self._pending_downloads > 0:
                self._pending_downloads -= 1
            return self._pending_downloads

    @property
    def is_ready(self) -> bool:
        return self.phase is SessionPhase.READY
