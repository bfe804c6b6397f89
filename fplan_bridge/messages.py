from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

CHANNEL_READY = "onFpConfiguredHandler"
CHANNEL_BOOTH = "onBoothClickHandler"
CHANNEL_DIRECTION = "onDirectionHandler"
CHANNELS = (CHANNEL_READY, CHANNEL_BOOTH, CHANNEL_DIRECTION)


@dataclass(frozen=True, slots=True)
class Ready:
    pass


@dataclass(frozen=True, slots=True)
class BoothSelected:
    name: str


@dataclass(frozen=True, slots=True)
class RouteBuilt:
    distance: str
    duration_seconds: int


BridgeMessage = Union[Ready, BoothSelected, RouteBuilt]


@dataclass(frozen=True, slots=True)
class Route:
    start: str
    end: str
    except_inaccessible: bool = False


@dataclass(frozen=True, slots=True)
class Point:
    x: float
    y: float
    z: Optional[str] = None
    angle: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"x": self.x, "y": self.y, "z": self.z, "angle": self.angle}


class MalformedPayload(ValueError):
    pass


def decode_route_built(payload: Any) -> RouteBuilt:
    """Strictly decode ``{"distance": str, "time": int}``."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if not isinstance(payload, str):
        raise MalformedPayload("direction payload must be a JSON string")
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedPayload(f"invalid json: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise MalformedPayload("direction payload must be an object")
    distance = data.get("distance")
    duration = data.get("time")
    if not isinstance(distance, str):
        raise MalformedPayload("distance must be a string")
    # bool is an int subclass and is not a duration
    if isinstance(duration, bool) or not isinstance(duration, int):
        raise MalformedPayload("time must be an integer")
    return RouteBuilt(distance=distance, duration_seconds=duration)


def decode_message(channel: str, payload: Any) -> Optional[BridgeMessage]:
    if channel not in CHANNELS:
        logger.debug("ignoring unknown bridge channel %s", channel)
        return None
    if channel == CHANNEL_READY:
        return Ready()
    if channel == CHANNEL_BOOTH:
        if not isinstance(payload, str):
            raise MalformedPayload("booth payload must be a string")
        return BoothSelected(name=payload)
    return decode_route_built(payload)
