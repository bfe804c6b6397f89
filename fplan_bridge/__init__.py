"""Typed message bridge between the floor-plan renderer and the host."""

from .channel import BridgeChannel
from .messages import (
    CHANNEL_BOOTH,
    CHANNEL_DIRECTION,
    CHANNEL_READY,
    CHANNELS,
    BoothSelected,
    MalformedPayload,
    Point,
    Ready,
    Route,
    RouteBuilt,
    decode_message,
)
from .state import SessionPhase, SyncState

__all__ = [
    "BridgeChannel",
    "BoothSelected",
    "CHANNEL_BOOTH",
    "CHANNEL_DIRECTION",
    "CHANNEL_READY",
    "CHANNELS",
    "MalformedPayload",
    "Point",
    "Ready",
    "Route",
    "RouteBuilt",
    "SessionPhase",
    "SyncState",
    "decode_message",
]
