from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from diagnostics.telemetry import emit_metric, set_telemetry_enabled
from fplan_bridge.channel import BridgeChannel, BoothCallback, Evaluate, ReadyCallback, RouteCallback
from fplan_bridge.messages import CHANNELS, Point, Route
from fplan_bridge.state import SyncState
from fplan_bus.bus import EventBus
from fplan_cache.bootstrap import load_template, render_bootstrap, write_bootstrap
from fplan_cache.fetcher import Fetcher, HttpFetcher
from fplan_cache.models import Configuration, EventContext
from fplan_cache.resolver import ConfigurationResolver, default_configuration
from fplan_cache.server import ContentResponse, ContentServer
from fplan_cache.sync import AssetSyncEngine, SyncHandle, SyncReport

from .config import default_kit_config, get_cache_root

logger = logging.getLogger(__name__)

OnlineProbe = Callable[[], bool]
# Called with (engine, configuration, target, online, on_complete, token,
# on_file=...) after the target has been prepared; must not wipe it again.
SyncStarter = Callable[..., Optional[SyncHandle]]


class SessionToken:
    """Generation token; stale once its session is closed or replaced."""

    def __init__(self, registry: "SessionRegistry", address: str, generation: int):
        self._registry = registry
        self.address = address
        self.generation = generation

    def is_current(self) -> bool:
        return self._registry.generation(self.address) == self.generation


class OneShot:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fired = False

    def fire(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            return True

    @property
    def fired(self) -> bool:
        return self._fired


class FloorplanSession:
    """Everything owned by one renderer session for one event address."""

    def __init__(
        self,
        context: EventContext,
        configuration: Configuration,
        server: ContentServer,
        channel: BridgeChannel,
        *,
        online: bool,
        auto_init: bool,
    ):
        self.context = context
        self.configuration = configuration
        self.server = server
        self.channel = channel
        self.online = online
        self.auto_init = auto_init
        self.token: Optional[SessionToken] = None
        self.sync_handle: Optional[SyncHandle] = None
        self.sync_report: Optional[SyncReport] = None
        self.index_url: str = ""
        self._page_loaded = OneShot()
        self._active = True

    @property
    def address(self) -> str:
        return self.context.event_address

    @property
    def state(self) -> SyncState:
        return self.channel.state

    @property
    def active(self) -> bool:
        return self._active and (self.token is None or self.token.is_current())

    def page_loaded(self) -> bool:
        """Signal that the bootstrap document finished loading; acts once."""
        if not self.active or not self._page_loaded.fire():
            return False
        if not self.auto_init:
            self.channel.init_renderer()
        return True

    def on_file_settled(self, cache_path: str, ok: bool) -> None:
        if not self.active:
            return
        remaining = self.state.download_settled()
        logger.debug(
            "asset settled address=%s cache_path=%s ok=%s remaining=%d",
            self.address,
            cache_path,
            ok,
            remaining,
        )

    def on_sync_complete(self, report: SyncReport) -> None:
        if not self.active:
            return
        self.sync_report = report
        self.state.set_pending_downloads(0)
        if report.failed:
            logger.warning(
                "sync finished with failures address=%s failed=%d",
                self.address,
                len(report.failed),
            )

    def close(self) -> None:
        self._active = False


class SessionRegistry:
    """Explicit map from event address to its live session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: Dict[str, FloorplanSession] = {}
        self._generations: Dict[str, int] = {}

    def open(self, session: FloorplanSession) -> SessionToken:
        address = session.address
        with self._lock:
            previous = self._sessions.pop(address, None)
            generation = self._generations.get(address, 0) + 1
            self._generations[address] = generation
            self._sessions[address] = session
        if previous is not None:
            previous.close()
        token = SessionToken(self, address, generation)
        session.token = token
        return token

    def close(self, address: str) -> Optional[FloorplanSession]:
        with self._lock:
            session = self._sessions.pop(address, None)
            if session is not None:
                self._generations[address] = self._generations.get(address, 0) + 1
        if session is not None:
            session.close()
        return session

    def get(self, address: str) -> Optional[FloorplanSession]:
        with self._lock:
            return self._sessions.get(address)

    def generation(self, address: str) -> int:
        with self._lock:
            return self._generations.get(address, 0)

    def addresses(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)


class FloorplanHost:
    """Drives load / reload of the floor plan for one embedded view."""

    def __init__(
        self,
        evaluate: Evaluate,
        online_probe: OnlineProbe,
        *,
        config: Optional[Dict] = None,
        registry: Optional[SessionRegistry] = None,
        fetcher: Optional[Fetcher] = None,
        bus: Optional[EventBus] = None,
        sync_starter: Optional[SyncStarter] = None,
    ):
        self._config = dict(config) if config is not None else default_kit_config()
        set_telemetry_enabled(bool(self._config.get("telemetry_enabled", True)))
        self._evaluate = evaluate
        self._online_probe = online_probe
        self._registry = registry or SessionRegistry()
        self._fetcher = fetcher or HttpFetcher(timeout=self._config.get("request_timeout", 30))
        self._bus = bus
        self._cache_root = Path(get_cache_root(self._config))
        self._scheme = str(self._config.get("scheme") or "fplan")
        self._resolver = ConfigurationResolver(
            self._fetcher,
            configuration_path=str(self._config.get("configuration_path") or "fplan-configuration.json"),
            platform=str(self._config.get("html_platform") or "ios"),
            bus=bus,
        )
        self._engine = AssetSyncEngine(
            self._fetcher,
            max_workers=int(self._config.get("max_workers") or 8),
            bus=bus,
            wipe_staging_root=bool(self._config.get("wipe_staging_root", True)),
        )
        self._sync_starter = sync_starter
        self._current: Optional[FloorplanSession] = None
        self._on_ready: List[ReadyCallback] = []
        self._on_booth: List[BoothCallback] = []
        self._on_route: List[RouteCallback] = []

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def engine(self) -> AssetSyncEngine:
        return self._engine

    @property
    def current(self) -> Optional[FloorplanSession]:
        return self._current

    @property
    def message_channels(self) -> Tuple[str, ...]:
        """Script message handler names the web view must register."""
        return CHANNELS

    def on_ready(self, callback: ReadyCallback) -> None:
        self._on_ready.append(callback)
        if self._current is not None:
            self._current.channel.on_ready(callback)

    def on_booth_selected(self, callback: BoothCallback) -> None:
        self._on_booth.append(callback)
        if self._current is not None:
            self._current.channel.on_booth_selected(callback)

    def on_route_built(self, callback: RouteCallback) -> None:
        self._on_route.append(callback)
        if self._current is not None:
            self._current.channel.on_route_built(callback)

    def load(
        self,
        url: str,
        selected_booth: Optional[str] = None,
        local_override: Optional[Configuration] = None,
    ) -> str:
        """Prepare the session for ``url`` and return the address of its bootstrap document."""
        context = EventContext.from_url(url, self._cache_root)
        current = self._current
        if current is not None and current.active and current.address == context.event_address:
            if selected_booth is not None:
                current.channel.select_booth(selected_booth)
            return current.index_url
        if current is not None:
            current.channel.mark_reloading()
            logger.info("reloading from=%s to=%s", current.address, context.event_address)
            self._registry.close(current.address)

        online = self._probe()
        if online:
            configuration = self._resolver.resolve(context.event_url, local_override)
        else:
            configuration = local_override or default_configuration(context.event_url)

        session = self._build_session(context, configuration, online)
        token = self._registry.open(session)
        self._current = session

        session.state.set_pending_downloads(len(configuration.files) if online else 0)
        self._engine.prepare(context.cache_directory, online, context.staging_root)
        session.sync_handle = self._start_sync(session, token)
        self._write_bootstrap(session)

        query = None
        if selected_booth:
            session.channel.preset_booth(selected_booth)
            query = {"booth": selected_booth}
        session.index_url = session.server.content_url("index.html", query)
        logger.info(
            "session loaded address=%s online=%s files=%d",
            context.event_address,
            online,
            len(configuration.files),
        )
        return session.index_url

    def close(self) -> None:
        if self._current is None:
            return
        self._registry.close(self._current.address)
        self._current = None

    # Delegation to the active session ---------------------------------------

    def serve(self, url: str) -> ContentResponse:
        session = self._require_session()
        return session.server.serve(url)

    def receive(self, channel: str, payload=None) -> bool:
        session = self._current
        if session is None or not session.active:
            logger.debug("bridge message without active session channel=%s", channel)
            return False
        return session.channel.receive(channel, payload)

    def page_loaded(self) -> bool:
        session = self._current
        return session.page_loaded() if session is not None else False

    def select_booth(self, name: Optional[str]) -> bool:
        return self._require_session().channel.select_booth(name)

    def build_route(self, route: Optional[Route]) -> bool:
        return self._require_session().channel.build_route(route)

    def set_position(self, point: Optional[Point], focus: bool = False) -> bool:
        return self._require_session().channel.set_position(point, focus)

    # Helpers ------------------------------------------------------------------

    def _require_session(self) -> FloorplanSession:
        if self._current is None or not self._current.active:
            raise RuntimeError("no floor plan loaded")
        return self._current

    def _probe(self) -> bool:
        try:
            return bool(self._online_probe())
        except Exception as exc:
            logger.warning("online probe failed, assuming offline: %s", exc)
            return False

    def _build_session(
        self,
        context: EventContext,
        configuration: Configuration,
        online: bool,
    ) -> FloorplanSession:
        server = ContentServer(
            context,
            self._fetcher,
            scheme=self._scheme,
            remote_urls=configuration.remote_urls(),
            bus=self._bus,
        )
        channel = BridgeChannel(
            self._evaluate,
            SyncState(online=online),
            bus=self._bus,
            session_key=context.event_address,
        )
        for callback in self._on_ready:
            channel.on_ready(callback)
        for callback in self._on_booth:
            channel.on_booth_selected(callback)
        for callback in self._on_route:
            channel.on_route_built(callback)
        return FloorplanSession(
            context,
            configuration,
            server,
            channel,
            online=online,
            auto_init=online,
        )

    def _start_sync(self, session: FloorplanSession, token: SessionToken) -> Optional[SyncHandle]:
        if self._sync_starter is not None:
            return self._sync_starter(
                self._engine,
                session.configuration,
                session.context.cache_directory,
                session.online,
                session.on_sync_complete,
                token,
                on_file=session.on_file_settled,
            )
        return self._engine.start(
            session.configuration,
            session.context.cache_directory,
            session.online,
            on_complete=session.on_sync_complete,
            token=token,
            reset=False,
            on_file=session.on_file_settled,
        )

    def _write_bootstrap(self, session: FloorplanSession) -> None:
        template = load_template(
            self._fetcher,
            session.configuration.platform_html_override_url,
            session.online,
            bus=self._bus,
        )
        html = render_bootstrap(
            template,
            base_url=session.server.base_url,
            event_id=session.context.event_id,
            no_overlay=session.configuration.suppress_overlay,
            auto_init=session.auto_init,
        )
        try:
            write_bootstrap(session.context.index_path, html)
        except OSError as exc:
            logger.error("bootstrap write failed path=%s error=%s", session.context.index_path, exc)
            emit_metric("bootstrap.write_failed", path=str(session.context.index_path), error=str(exc))
