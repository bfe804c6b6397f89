from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True, slots=True)
class BusEvent:
    """One lifecycle or degradation event, numbered in publish order per bus."""

    topic: str
    sequence: int
    timestamp: str
    source: str
    payload: Dict[str, object] = field(default_factory=dict)
    session_key: Optional[str] = None

    def describe(self) -> str:
        details = " ".join(f"{key}={value}" for key, value in sorted(self.payload.items()))
        scope = f" session={self.session_key}" if self.session_key else ""
        return f"topic={self.topic} seq={self.sequence} source={self.source}{scope} {details}".rstrip()

    def to_dict(self) -> Dict[str, object]:
        return {
            "topic": self.topic,
            "sequence": self.sequence,
            "timestamp": self.timestamp,
            "source": self.source,
            "payload": dict(self.payload),
            "session_key": self.session_key,
        }
