from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from PyQt6 import QtCore

from fplan_cache.models import Configuration
from fplan_cache.sync import AssetSyncEngine, FileCallback, SyncReport, SyncToken

logger = logging.getLogger(__name__)


class SyncWorker(QtCore.QObject):
    """Runs one blocking sync off the UI thread and reports back through signals."""

    finished = QtCore.pyqtSignal(object)
    error = QtCore.pyqtSignal(str)

    def __init__(
        self,
        engine: AssetSyncEngine,
        configuration: Configuration,
        target_directory: Path,
        online: bool,
        token: Optional[SyncToken] = None,
        reset: bool = True,
        on_file: Optional[FileCallback] = None,
    ):
        super().__init__()
        self._engine = engine
        self._configuration = configuration
        self._target = Path(target_directory)
        self._online = online
        self._token = token
        self._reset = reset
        self._on_file = on_file

    @QtCore.pyqtSlot()
    def run(self):
        try:
            report = self._engine.sync(
                self._configuration,
                self._target,
                self._online,
                token=self._token,
                reset=self._reset,
                on_file=self._on_file,
            )
            self.finished.emit(report)
        except Exception as exc:
            self.error.emit(str(exc))


@dataclass
class _Job:
    worker: SyncWorker
    thread: QtCore.QThread
    on_complete: Callable[[SyncReport], None]
    token: Optional[SyncToken]


class QtSyncStarter(QtCore.QObject):
    """Sync starter for FloorplanHost that delivers completion on the Qt UI thread.

    Worker signals are queued onto the thread that owns this starter, so
    ``on_complete`` never touches renderer state from a background thread.
    """

    def __init__(self, parent: Optional[QtCore.QObject] = None):
        super().__init__(parent)
        self._jobs: List[_Job] = []

    def __call__(
        self,
        engine: AssetSyncEngine,
        configuration: Configuration,
        target_directory: Path,
        online: bool,
        on_complete: Callable[[SyncReport], None],
        token: Optional[SyncToken] = None,
        on_file: Optional[FileCallback] = None,
    ) -> None:
        worker = SyncWorker(engine, configuration, target_directory, online, token, reset=False, on_file=on_file)
        thread = QtCore.QThread(self)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.finished.connect(self._on_finished, QtCore.Qt.ConnectionType.QueuedConnection)
        worker.error.connect(self._on_error, QtCore.Qt.ConnectionType.QueuedConnection)
        self._jobs.append(_Job(worker, thread, on_complete, token))
        thread.start()
        return None

    @property
    def running(self) -> int:
        return len(self._jobs)

    @QtCore.pyqtSlot(object)
    def _on_finished(self, report: Optional[SyncReport]) -> None:
        job = self._take(self.sender())
        if job is None:
            return
        if report is None or report.superseded or (job.token is not None and not job.token.is_current()):
            return
        job.on_complete(report)

    @QtCore.pyqtSlot(str)
    def _on_error(self, error: str) -> None:
        self._take(self.sender())
        logger.error("background sync failed: %s", error)

    def _take(self, worker: Optional[QtCore.QObject]) -> Optional[_Job]:
        job = next((job for job in self._jobs if job.worker is worker), None)
        if job is None:
            return None
        self._jobs.remove(job)
        job.thread.quit()
        job.thread.wait()
        job.worker.deleteLater()
        job.thread.deleteLater()
        return job
