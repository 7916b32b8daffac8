from __future__ import annotations

from collections import Counter, deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, Field

from core.models import HealthBand



class EventKind(str, Enum):
    SAMPLE_REJECTED = "sample_rejected"
    NO_VALID_CHANNELS = "no_valid_channels"
    BIOCOMPATIBILITY_VIOLATION = "biocompatibility_violation"
    STALE_NEIGHBOR = "stale_neighbor"
    HEALTH_BAND_CHANGED = "health_band_changed"
    SUSTAINED_CRITICAL = "sustained_critical"


class ResolverEvent(BaseModel):
    kind: EventKind
    node_id: Optional[int] = None
    timestamp: float = 0.0


class SampleRejected(ResolverEvent):
    kind: EventKind = EventKind.SAMPLE_REJECTED
    error_type: str
    reason: str


class NoValidChannelsWarning(ResolverEvent):
    kind: EventKind = EventKind.NO_VALID_CHANNELS
    columns: int = 1


class BiocompatibilityViolation(ResolverEvent):
    kind: EventKind = EventKind.BIOCOMPATIBILITY_VIOLATION
    j_bio: float = Field(ge=0.0)
    threshold: float
    scale: float = Field(ge=0.0, le=1.0)


class StaleNeighborWarning(ResolverEvent):
    kind: EventKind = EventKind.STALE_NEIGHBOR
    neighbor_id: int
    age_s: float
    last_value: float


class HealthBandChanged(ResolverEvent):
    kind: EventKind = EventKind.HEALTH_BAND_CHANGED
    previous: HealthBand
    current: HealthBand
    health: float


class SustainedCritical(ResolverEvent):
    kind: EventKind = EventKind.SUSTAINED_CRITICAL
    dwell_s: float
    health: float


class EventRecorder:
    """Bounded event log with per-kind counters. Optionally forwards to a StreamBus without blocking."""

    def __init__(self, max_events: int = 1000, bus: Any = None):
        self._events: Deque[ResolverEvent] = deque(maxlen=max_events)
        self.counts: Counter = Counter()
        self.bus = bus

    def emit(self, event: ResolverEvent) -> ResolverEvent:
        self._events.append(event)
        self.counts[event.kind] += 1
        if self.bus is not None:
            self.bus.publish_nowait({"kind": event.kind.value, "event": event.model_dump(mode="json")})
        return event

    def events(self, kind: Optional[EventKind] = None) -> List[ResolverEvent]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.kind == kind]

    def count(self, kind: EventKind) -> int:
        return self.counts.get(kind, 0)

    def summary(self) -> Dict[str, int]:
        return {kind.value: count for kind, count in self.counts.items()}
