from __future__ import annotations

import itertools
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from .messages import BusEvent

logger = logging.getLogger(__name__)

Handler = Callable[[BusEvent], None]


def _iso_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventBus:
    """In-process pub/sub bus.

    Handlers run on the publishing thread. A failing handler is logged and
    does not prevent delivery to the remaining subscribers.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._subscribers: Dict[str, tuple[str, Handler]] = {}
        self._topic_index: Dict[str, set[str]] = {}
        self._sequence = itertools.count(1)
        self._subscription_ids = itertools.count(1)

    def subscribe(self, topic: str, handler: Handler) -> str:
        with self._lock:
            sub_id = f"{topic}#{next(self._subscription_ids)}"
            self._subscribers[sub_id] = (topic, handler)
            self._topic_index.setdefault(topic, set()).add(sub_id)
        return sub_id

    def unsubscribe(self, sub_id: str) -> None:
        with self._lock:
            topic, _ = self._subscribers.pop(sub_id, (None, None))
            if topic and topic in self._topic_index:
                self._topic_index[topic].discard(sub_id)
                if not self._topic_index[topic]:
                    self._topic_index.pop(topic, None)

    def publish(
        self,
        topic: str,
        payload: Optional[Dict[str, object]],
        source: str,
        session_key: Optional[str] = None,
    ) -> BusEvent:
        event = self._build_event(topic, payload, source, session_key)
        logger.debug("bus event %s", event.describe())
        for handler in self._copy_handlers(topic):
            try:
                handler(event)
            except Exception as exc:
                logger.error("event bus handler error on %s: %s", topic, exc)
        return event

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topic_index.get(topic, ()))

    def _build_event(
        self,
        topic: str,
        payload: Optional[Dict[str, object]],
        source: str,
        session_key: Optional[str],
    ) -> BusEvent:
        body = payload if isinstance(payload, dict) else {}
        with self._lock:
            sequence = next(self._sequence)
        return BusEvent(
            topic=topic,
            sequence=sequence,
            timestamp=_iso_timestamp(),
            source=source,
            payload=dict(body),
            session_key=session_key,
        )

    def _copy_handlers(self, topic: str) -> List[Handler]:
        with self._lock:
            sub_ids = list(self._topic_index.get(topic, ()))
            return [self._subscribers[sid][1] for sid in sub_ids if sid in self._subscribers]


def publish_safely(
    bus: Optional[EventBus],
    topic: str,
    payload: Optional[Dict[str, object]],
    source: str,
    session_key: Optional[str] = None,
) -> None:
    if bus is None:
        return
    bus.publish(topic, payload, source, session_key=session_key)

