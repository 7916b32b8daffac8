from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Set

from pydantic import BaseModel, Field

from core.events import StaleNeighborWarning
from core.models import NodeStatus

logger = logging.getLogger(__name__)


class HealthReport(BaseModel):
    """A node's own row of the network health vector, as exchanged by gossip."""

    node_id: int
    health: float = Field(ge=0.0, le=1.0)
    reported_at: float
    sequence: int = 0


@dataclass
class NeighborSnapshot:
    values: Dict[int, float] = field(default_factory=dict)
    partitioned: Set[int] = field(default_factory=set)
    warnings: List[StaleNeighborWarning] = field(default_factory=list)


class HealthGossipView:
    """Eventually-consistent replica of neighbour health held by one node.

    Only the owner's entry is authoritative. Neighbour entries are whatever was
    last received; entries older than the staleness timeout are still used but
    flagged PARTITIONED.
    """

    def __init__(
        self,
        owner_id: int,
        staleness_timeout_s: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.owner_id = owner_id
        self.staleness_timeout_s = staleness_timeout_s
        self.clock = clock
        self._reports: Dict[int, HealthReport] = {}
        self._sequence = 0

    def publish(self, health: float) -> HealthReport:
        self._sequence += 1
        report = HealthReport(
            node_id=self.owner_id,
            health=health,
            reported_at=self.clock(),
            sequence=self._sequence,
        )
        self._reports[self.owner_id] = report
        return report

    def receive(self, report: HealthReport) -> bool:
        if report.node_id == self.owner_id:
            return False
        current = self._reports.get(report.node_id)
        if current is not None and (current.sequence, current.reported_at) >= (report.sequence, report.reported_at):
            return False
        self._reports[report.node_id] = report
        return True

    def last_value(self, node_id: int) -> float | None:
        report = self._reports.get(node_id)
        return report.health if report else None

    def status(self, node_id: int) -> NodeStatus:
        report = self._reports.get(node_id)
        if report is None:
            return NodeStatus.PARTITIONED
        if node_id == self.owner_id:
            return NodeStatus.ACTIVE
        age = self.clock() - report.reported_at
        return NodeStatus.PARTITIONED if age > self.staleness_timeout_s else NodeStatus.ACTIVE

    def snapshot(self, neighbor_ids: Iterable[int]) -> NeighborSnapshot:
        now = self.clock()
        snap = NeighborSnapshot()
        for node_id in neighbor_ids:
            if node_id == self.owner_id:
                continue
            report = self._reports.get(node_id)
            if report is None:
                # nothing known yet: no coupling term for this neighbour
                snap.partitioned.add(node_id)
                continue
            snap.values[node_id] = report.health
            age = now - report.reported_at
            if age > self.staleness_timeout_s:
                snap.partitioned.add(node_id)
                snap.warnings.append(
                    StaleNeighborWarning(
                        node_id=self.owner_id,
                        timestamp=now,
                        neighbor_id=node_id,
                        age_s=age,
                        last_value=report.health,
                    )
                )
                logger.warning("Neighbour %s stale for %.1fs, using last value %.3f", node_id, age, report.health)
        return snap
