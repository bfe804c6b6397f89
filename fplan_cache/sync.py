from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Tuple

from diagnostics.fs_ops import is_within, safe_rmtree, write_bytes
from diagnostics.telemetry import emit_metric
from fplan_bus import topics
from fplan_bus.bus import EventBus, publish_safely

from .fetcher import Fetcher
from .models import STAGING_DIR_NAME, AssetDescriptor, Configuration

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8


class SyncToken(Protocol):
    def is_current(self) -> bool: ...


class _CurrentToken:
    def is_current(self) -> bool:
        return True


ALWAYS_CURRENT: SyncToken = _CurrentToken()


@dataclass(frozen=True, slots=True)
class SyncReport:
    online: bool
    total: int
    written: int = 0
    failed: Tuple[str, ...] = ()
    cache_present: bool = False
    superseded: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed and not self.superseded


SyncCallback = Callable[[SyncReport], None]
FileCallback = Callable[[str, bool], None]


class SyncHandle:
    """Completion handle for one sync call."""

    def __init__(self, total: int):
        self._done = threading.Event()
        self._lock = threading.Lock()
        self._pending = total
        self._report: Optional[SyncReport] = None

    @property
    def pending(self) -> int:
        with self._lock:
            return self._pending

    @property
    def report(self) -> Optional[SyncReport]:
        return self._report

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[SyncReport]:
        if not self._done.wait(timeout):
            return None
        return self._report

    def _decrement(self) -> None:
        with self._lock:
            self._pending -= 1

    def _resolve(self, report: SyncReport) -> None:
        self._report = report
        with self._lock:
            self._pending = 0
        self._done.set()


@dataclass
class _FanIn:
    """Lock-guarded collector; ``settle`` returns True for the last file only."""

    remaining: int
    total: int = 0
    written: int = 0
    failed: List[str] = field(default_factory=list)
    fired: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    def settle(self, cache_path: str, ok: bool) -> bool:
        with self.lock:
            if ok:
                self.written += 1
            else:
                self.failed.append(cache_path)
            self.remaining -= 1
            if self.remaining > 0 or self.fired:
                return False
            self.fired = True
            return True


class AssetSyncEngine:
    """Mirrors the files of a Configuration into an event cache directory.

    Online, the staging root is wiped and every file is fetched again on a
    thread pool. Offline, nothing is touched and the existing cache is
    trusted. Per-file failures leave an empty or missing file behind and
    never abort the batch.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        bus: Optional[EventBus] = None,
        wipe_staging_root: bool = True,
    ):
        self._fetcher = fetcher
        self._max_workers = max(1, int(max_workers))
        self._bus = bus
        self._wipe_staging_root = wipe_staging_root

    def sync(
        self,
        configuration: Configuration,
        target_directory: Path,
        online: bool,
        token: Optional[SyncToken] = None,
        timeout: Optional[float] = None,
        reset: bool = True,
        staging_root: Optional[Path] = None,
        on_file: Optional[FileCallback] = None,
    ) -> Optional[SyncReport]:
        handle = self.start(
            configuration,
            target_directory,
            online,
            token=token,
            reset=reset,
            staging_root=staging_root,
            on_file=on_file,
        )
        return handle.wait(timeout)

    def start(
        self,
        configuration: Configuration,
        target_directory: Path,
        online: bool,
        on_complete: Optional[SyncCallback] = None,
        token: Optional[SyncToken] = None,
        reset: bool = True,
        staging_root: Optional[Path] = None,
        on_file: Optional[FileCallback] = None,
    ) -> SyncHandle:
        """Begin a sync and return at once.

        With ``reset=False`` the caller has already run :meth:`prepare` on the
        target, so files written there in the meantime survive. ``on_file`` is
        called with ``(cache_path, ok)`` as each file settles, before
        ``on_complete``, and never for a superseded sync.
        """
        token = token or ALWAYS_CURRENT
        target = Path(target_directory)
        files = list(configuration.files)

        if not online:
            handle = SyncHandle(0)
            present = target.is_dir()
            if not present:
                logger.info("offline sync: no cache at %s", target)
            report = SyncReport(online=False, total=len(files), cache_present=present)
            self._finish(handle, report, on_complete, token, target)
            return handle

        handle = SyncHandle(len(files))
        if reset:
            self._reset_directory(target, staging_root)
        publish_safely(
            self._bus,
            topics.SYNC_STARTED,
            {"target": str(target), "total": len(files)},
            "fplan_cache.sync",
        )
        if not files:
            report = SyncReport(online=True, total=0, cache_present=target.is_dir())
            self._finish(handle, report, on_complete, token, target)
            return handle

        fan_in = _FanIn(remaining=len(files), total=len(files))
        executor = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(files)),
            thread_name_prefix="fplan-sync",
        )
        try:
            for descriptor in files:
                executor.submit(
                    self._sync_one, descriptor, target, token, fan_in, handle, on_complete, on_file
                )
        finally:
            executor.shutdown(wait=False)
        return handle

    def prepare(self, target_directory: Path, online: bool, staging_root: Optional[Path] = None) -> None:
        """Wipe and recreate the staging area ahead of an online sync.

        ``staging_root`` defaults to the parent of ``target_directory`` when
        that directory is named like a staging root.
        """
        if online:
            self._reset_directory(Path(target_directory), staging_root)

    def _reset_directory(self, target: Path, staging_root: Optional[Path] = None) -> None:
        doomed = target
        if self._wipe_staging_root:
            doomed = self._staging_root_for(target, staging_root)
        try:
            safe_rmtree(doomed)
        except OSError as exc:
            logger.error("cache wipe failed path=%s error=%s", doomed, exc)
            emit_metric("sync.wipe_failed", path=str(doomed), error=str(exc))
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("cache directory create failed path=%s error=%s", target, exc)
            emit_metric("sync.mkdir_failed", path=str(target), error=str(exc))

    def _staging_root_for(self, target: Path, staging_root: Optional[Path]) -> Path:
        """Return the directory to wipe; only a real staging root above ``target`` qualifies."""
        candidate = Path(staging_root) if staging_root is not None else target.parent
        if (
            candidate.name == STAGING_DIR_NAME
            and candidate.resolve() != target.resolve()
            and is_within(target, candidate)
        ):
            return candidate
        logger.warning("refusing to wipe non-staging directory path=%s target=%s", candidate, target)
        emit_metric("sync.wipe_refused", path=str(candidate), target=str(target))
        return target

    def _sync_one(
        self,
        descriptor: AssetDescriptor,
        target: Path,
        token: SyncToken,
        fan_in: _FanIn,
        handle: SyncHandle,
        on_complete: Optional[SyncCallback],
        on_file: Optional[FileCallback] = None,
    ) -> None:
        ok = False
        destination = target / descriptor.cache_path
        try:
            if not is_within(destination, target):
                logger.error("asset escapes cache directory cache_path=%s", descriptor.cache_path)
            elif token.is_current():
                data = self._fetch(descriptor)
                if token.is_current():
                    write_bytes(destination, data or b"")
                    ok = data is not None
        except OSError as exc:
            logger.error("asset write failed path=%s error=%s", destination, exc)
        finally:
            if not ok and token.is_current():
                self._record_failure(descriptor, target)
            handle._decrement()
            if on_file is not None and token.is_current():
                try:
                    on_file(descriptor.cache_path, ok)
                except Exception as exc:
                    logger.error("sync file callback error cache_path=%s error=%s", descriptor.cache_path, exc)
            if fan_in.settle(descriptor.cache_path, ok):
                report = SyncReport(
                    online=True,
                    total=fan_in.total,
                    written=fan_in.written,
                    failed=tuple(sorted(fan_in.failed)),
                    cache_present=target.is_dir(),
                )
                self._finish(handle, report, on_complete, token, target)

    def _fetch(self, descriptor: AssetDescriptor) -> Optional[bytes]:
        try:
            return self._fetcher.fetch(descriptor.server_url)
        except Exception as exc:
            logger.error("asset fetch raised url=%s error=%s", descriptor.server_url, exc)
            return None

    def _record_failure(self, descriptor: AssetDescriptor, target: Path) -> None:
        emit_metric("sync.asset_failed", url=descriptor.server_url, cache_path=descriptor.cache_path)
        publish_safely(
            self._bus,
            topics.SYNC_ASSET_FAILED,
            {"url": descriptor.server_url, "cache_path": descriptor.cache_path, "target": str(target)},
            "fplan_cache.sync",
        )

    def _finish(
        self,
        handle: SyncHandle,
        report: SyncReport,
        on_complete: Optional[SyncCallback],
        token: SyncToken,
        target: Path,
    ) -> None:
        superseded = not token.is_current()
        if superseded:
            report = replace(report, superseded=True)
            logger.info("sync superseded target=%s", target)
        payload: Dict[str, object] = {
            "target": str(target),
            "online": report.online,
            "written": report.written,
            "failed": len(report.failed),
            "superseded": superseded,
        }
        logger.info("sync completed %s", " ".join(f"{k}={v}" for k, v in payload.items()))
        publish_safely(self._bus, topics.SYNC_COMPLETED, payload, "fplan_cache.sync")
        if not superseded and on_complete is not None:
            try:
                on_complete(report)
            except Exception as exc:
                logger.error("sync completion callback error target=%s error=%s", target, exc)
        handle._resolve(report)
