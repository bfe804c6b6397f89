"""In-process event bus for floor-plan lifecycle and degradation events."""

from .bus import EventBus
from . import topics
from .messages import BusEvent

__all__ = ["EventBus", "BusEvent", "topics"]
