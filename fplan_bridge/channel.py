from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, List, Optional

from diagnostics.telemetry import emit_metric
from fplan_bus import topics
from fplan_bus.bus import EventBus, publish_safely

from .messages import (
    BoothSelected,
    MalformedPayload,
    Point,
    Ready,
    Route,
    RouteBuilt,
    decode_message,
)
from .state import PositionCommand, SessionPhase, SyncState

logger = logging.getLogger(__name__)

RENDERER_GLOBAL = "window.floorplan"

Evaluate = Callable[[str], None]
ReadyCallback = Callable[[], None]
BoothCallback = Callable[[str], None]
RouteCallback = Callable[[RouteBuilt], None]


def _js(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def select_booth_script(name: Optional[str]) -> str:
    return f"{RENDERER_GLOBAL}?.selectBooth({_js(name)});"


def select_route_script(route: Optional[Route]) -> str:
    if route is None:
        return f"{RENDERER_GLOBAL}?.selectRoute(null, null, false);"
    return (
        f"{RENDERER_GLOBAL}?.selectRoute({_js(route.start)}, {_js(route.end)}, "
        f"{_js(bool(route.except_inaccessible))});"
    )


def select_position_script(point: Optional[Point], focus: bool) -> str:
    target = "null" if point is None else _js(point.to_dict())
    return f"{RENDERER_GLOBAL}?.selectCurrentPosition({target}, {_js(bool(focus))});"


INIT_SCRIPT = "window.init();"


class BridgeChannel:
    """Two-way channel between the renderer script and host callbacks.

    Inbound payloads arrive by channel name through :meth:`receive`. Outbound
    commands are recorded as desired state and only evaluated once the
    renderer is ready and the value differs from what it last applied.
    """

    def __init__(
        self,
        evaluate: Evaluate,
        state: Optional[SyncState] = None,
        *,
        bus: Optional[EventBus] = None,
        session_key: Optional[str] = None,
    ):
        self._evaluate = evaluate
        self._state = state or SyncState()
        self._bus = bus
        self._session_key = session_key
        self._lock = threading.RLock()
        self._ready_fired = False
        self._on_ready: List[ReadyCallback] = []
        self._on_booth: List[BoothCallback] = []
        self._on_route: List[RouteCallback] = []
        if self._state.phase is SessionPhase.UNINITIALIZED:
            self._state.phase = SessionPhase.LOADING

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def phase(self) -> SessionPhase:
        return self._state.phase

    def on_ready(self, callback: ReadyCallback) -> None:
        self._on_ready.append(callback)

    def on_booth_selected(self, callback: BoothCallback) -> None:
        self._on_booth.append(callback)

    def on_route_built(self, callback: RouteCallback) -> None:
        self._on_route.append(callback)

    # Inbound ---------------------------------------------------------------

    def receive(self, channel: str, payload: Any = None) -> bool:
        try:
            message = decode_message(channel, payload)
        except (MalformedPayload, UnicodeDecodeError) as exc:
            logger.warning("bridge payload dropped channel=%s error=%s", channel, exc)
            emit_metric("bridge.payload_dropped", channel=channel, error=str(exc))
            self._publish(topics.BRIDGE_DROPPED, {"channel": channel, "error": str(exc)})
            return False
        if message is None:
            return False
        self._publish(topics.BRIDGE_MESSAGE, {"channel": channel, "kind": type(message).__name__})
        if isinstance(message, Ready):
            return self._handle_ready()
        if isinstance(message, BoothSelected):
            with self._lock:
                self._state.desired_booth = message.name
                self._state.last_applied_booth = message.name
            self._dispatch(self._on_booth, message.name)
            return True
        if isinstance(message, RouteBuilt):
            self._dispatch(self._on_route, message)
            return True
        return False

    def _handle_ready(self) -> bool:
        with self._lock:
            if self._ready_fired:
                logger.debug("duplicate ready signal ignored session=%s", self._session_key)
                return False
            self._ready_fired = True
            self._set_phase(SessionPhase.READY)
            self._flush()
        self._dispatch(self._on_ready)
        return True

    def _dispatch(self, callbacks: List[Callable[..., None]], *args: Any) -> None:
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception as exc:
                logger.error("bridge callback error session=%s error=%s", self._session_key, exc)

    # Outbound --------------------------------------------------------------

    def select_booth(self, name: Optional[str]) -> bool:
        with self._lock:
            self._state.desired_booth = name
            return self._apply_booth()

    def build_route(self, route: Optional[Route]) -> bool:
        with self._lock:
            self._state.desired_route = route
            return self._apply_route()

    def set_position(self, point: Optional[Point], focus: bool = False) -> bool:
        with self._lock:
            self._state.desired_position = None if point is None else PositionCommand(point, bool(focus))
            return self._apply_position()

    def preset_booth(self, name: Optional[str]) -> None:
        """Record a booth the bootstrap document selects on its own."""
        with self._lock:
            self._state.desired_booth = name
            self._state.last_applied_booth = name

    def init_renderer(self) -> None:
        self._run(INIT_SCRIPT)

    def mark_reloading(self) -> None:
        with self._lock:
            self._set_phase(SessionPhase.RELOADING)

    def reset(self, online: Optional[bool] = None) -> None:
        with self._lock:
            fresh = SyncState(online=self._state.online if online is None else online)
            self._state = fresh
            self._ready_fired = False
            self._set_phase(SessionPhase.LOADING)

    def _flush(self) -> None:
        self._apply_booth()
        self._apply_route()
        self._apply_position()

    def _apply_booth(self) -> bool:
        state = self._state
        if not state.is_ready or state.desired_booth == state.last_applied_booth:
            return False
        self._run(select_booth_script(state.desired_booth))
        state.last_applied_booth = state.desired_booth
        return True

    def _apply_route(self) -> bool:
        state = self._state
        if not state.is_ready or state.desired_route == state.last_applied_route:
            return False
        self._run(select_route_script(state.desired_route))
        state.last_applied_route = state.desired_route
        return True

    def _apply_position(self) -> bool:
        state = self._state
        if not state.is_ready or state.desired_position == state.last_applied_position:
            return False
        command = state.desired_position
        if command is None:
            self._run(select_position_script(None, False))
        else:
            self._run(select_position_script(command.point, command.focus))
        state.last_applied_position = command
        return True

    def _run(self, script: str) -> None:
        logger.debug("bridge command session=%s script=%s", self._session_key, script)
        self._publish(topics.BRIDGE_COMMAND, {"script": script})
        self._evaluate(script)

    def _set_phase(self, phase: SessionPhase) -> None:
        self._state.phase = phase
        self._publish(topics.SESSION_PHASE, {"phase": phase.value})

    def _publish(self, topic: str, payload: dict) -> None:
        publish_safely(self._bus, topic, payload, "fplan_bridge.channel", session_key=self._session_key)
