from __future__ import annotations

import logging
import mimetypes
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional
from urllib.parse import quote, unquote, urlencode, urlsplit

from diagnostics.fs_ops import is_within, write_bytes
from diagnostics.telemetry import emit_metric
from fplan_bus import topics
from fplan_bus.bus import EventBus, publish_safely

from .fetcher import Fetcher
from .models import Configuration, EventContext

logger = logging.getLogger(__name__)

DEFAULT_SCHEME = "fplan"

_MIME = mimetypes.MimeTypes()
_MIME.add_type("font/woff2", ".woff2")
_MIME.add_type("font/woff", ".woff")
_MIME.add_type("text/javascript", ".js")
_MIME.add_type("application/json", ".json")
_MIME.add_type("image/svg+xml", ".svg")


class ContentRequestError(ValueError):
    """Raised for a request that is not addressed under the private scheme."""


@dataclass(frozen=True, slots=True)
class ContentResponse:
    url: str
    mime_type: Optional[str]
    data: bytes = b""

    @property
    def content_length(self) -> int:
        return len(self.data)


def mime_type_for(path: Path) -> str:
    guessed, _ = _MIME.guess_type(path.name)
    return guessed or "application/octet-stream"


class _InFlight:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.data: Optional[bytes] = None


class ContentServer:
    """Answers private-scheme requests from one event cache directory.

    A present, non-empty file is served as-is. Anything else is fetched from
    the remote origin exactly once per request, written into the cache and
    served; a fetch that yields nothing produces an empty response without a
    MIME type.
    """

    def __init__(
        self,
        context: EventContext,
        fetcher: Fetcher,
        *,
        scheme: str = DEFAULT_SCHEME,
        remote_urls: Optional[Mapping[str, str]] = None,
        bus: Optional[EventBus] = None,
    ):
        self._context = context
        self._fetcher = fetcher
        self._scheme = scheme
        self._bus = bus
        self._remote_urls: Dict[str, str] = dict(remote_urls or {})
        self._lock = threading.Lock()
        self._in_flight: Dict[str, _InFlight] = {}

    @property
    def scheme(self) -> str:
        return self._scheme

    @property
    def base_url(self) -> str:
        return f"{self._scheme}://{quote(self._context.cache_directory.as_posix())}"

    def content_url(self, relative: str = "", query: Optional[Mapping[str, str]] = None) -> str:
        url = self.base_url
        if relative:
            url = f"{url}/{quote(relative.lstrip('/'))}"
        if query:
            url = f"{url}?{urlencode(dict(query))}"
        return url

    def register_configuration(self, configuration: Configuration) -> None:
        with self._lock:
            self._remote_urls.update(configuration.remote_urls())

    def remote_url_for(self, relative: str) -> str:
        with self._lock:
            mapped = self._remote_urls.get(relative)
        if mapped:
            return mapped
        return f"{self._context.event_url}/{quote(relative)}"

    def resolve_path(self, url: str) -> Path:
        try:
            parts = urlsplit(url)
        except ValueError as exc:
            raise ContentRequestError(f"malformed content url {url!r}: {exc}") from exc
        if parts.scheme.lower() != self._scheme.lower():
            raise ContentRequestError(f"unsupported scheme for {url!r}")
        # Hosts are never used; a netloc is folded back into the path.
        raw_path = unquote(parts.netloc + parts.path)
        return Path(raw_path)

    def serve(self, url: str) -> ContentResponse:
        target = self.resolve_path(url)
        root = self._context.cache_directory
        if not is_within(target, root):
            logger.warning("content request outside cache url=%s", url)
            emit_metric("content.rejected", url=url)
            return ContentResponse(url=url, mime_type=None)

        data = self._read(target)
        if data:
            return ContentResponse(url=url, mime_type=mime_type_for(target), data=data)

        if target.is_dir():
            return ContentResponse(url=url, mime_type=None)
        relative = target.resolve().relative_to(root.resolve()).as_posix()
        data = self._download(relative, target)
        if not data:
            return ContentResponse(url=url, mime_type=None)
        return ContentResponse(url=url, mime_type=mime_type_for(target), data=data)

    def handle(self, url: str, respond: Callable[[ContentResponse], None]) -> threading.Thread:
        """Serve ``url`` on a worker thread and hand the response to ``respond`` once."""

        def _run() -> None:
            try:
                response = self.serve(url)
            except ContentRequestError as exc:
                logger.warning("content request rejected url=%s error=%s", url, exc)
                emit_metric("content.rejected", url=url)
                response = ContentResponse(url=url, mime_type=None)
            except Exception as exc:
                logger.error("content request failed url=%s error=%s", url, exc)
                emit_metric("content.rejected", url=url, error=str(exc))
                response = ContentResponse(url=url, mime_type=None)
            respond(response)

        worker = threading.Thread(target=_run, name="fplan-content", daemon=True)
        worker.start()
        return worker

    def _read(self, target: Path) -> Optional[bytes]:
        if not target.is_file():
            return None
        try:
            return target.read_bytes()
        except OSError as exc:
            logger.error("cache read failed path=%s error=%s", target, exc)
            return None

    def _download(self, relative: str, target: Path) -> Optional[bytes]:
        key = str(target)
        with self._lock:
            pending = self._in_flight.get(key)
            owner = pending is None
            if owner:
                pending = _InFlight()
                self._in_flight[key] = pending
        if not owner:
            pending.done.wait()
            return pending.data

        remote = self.remote_url_for(relative)
        try:
            data = self._fetch(remote)
            if data:
                try:
                    write_bytes(target, data)
                except OSError as exc:
                    logger.error("cache write failed path=%s error=%s", target, exc)
                publish_safely(
                    self._bus,
                    topics.CONTENT_FETCHED,
                    {"url": remote, "path": str(target), "bytes": len(data)},
                    "fplan_cache.server",
                    session_key=self._context.event_address,
                )
            else:
                logger.warning("on-demand fetch yielded no data url=%s", remote)
                emit_metric("content.fetch_failed", url=remote)
                publish_safely(
                    self._bus,
                    topics.CONTENT_FETCH_FAILED,
                    {"url": remote, "path": str(target)},
                    "fplan_cache.server",
                    session_key=self._context.event_address,
                )
            pending.data = data
            return data
        finally:
            with self._lock:
                self._in_flight.pop(key, None)
            pending.done.set()

    def _fetch(self, url: str) -> Optional[bytes]:
        try:
            return self._fetcher.fetch(url)
        except Exception as exc:
            logger.error("on-demand fetch raised url=%s error=%s", url, exc)
            return None
