from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from core.config import ClampConfig, DiffusionConfig, HealthConfig, NodeCalibration
from core.errors import CalibrationError, InvalidMaskError, MalformedSampleError
from core.events import (
    BiocompatibilityViolation,
    EventRecorder,
    HealthBandChanged,
    NoValidChannelsWarning,
    SampleRejected,
    SustainedCritical,
)
from core.models import HealthBand, PacketState, RawSample, ResolvedState
from core.stimulus import StimulusSource
from health.estimator import HealthUpdate, NodeHealthEstimator
from network.diffuser import NetworkHealthDiffuser, RowUpdate
from network.gossip import HealthGossipView, HealthReport
from network.topology import NetworkTopology
from somatic.aggregator import PacketAggregator
from somatic.biocompat import BiocompatibilityClamp, ClampResult
from somatic.projector import MaskedStateProjector
from streams.bus import StreamBus

logger = logging.getLogger(__name__)

StreamItem = Union[RawSample, Tuple[Sequence[float], Optional[Sequence[bool]], float]]


@dataclass
class PacketReport:
    node_id: int
    state: PacketState
    clamp: ClampResult
    health: HealthUpdate
    dt: float
    timestamps: List[float] = field(default_factory=list)

    @property
    def band(self) -> HealthBand:
        return self.health.band


class BiosignalNode:
    """Per-node runtime: inline sample resolution, packet windowing and the clamp → aggregate → health chain."""

    def __init__(
        self,
        calibration: NodeCalibration,
        clamp_config: ClampConfig | None = None,
        health_config: HealthConfig | None = None,
        stimulus: StimulusSource | None = None,
        diffusion_config: DiffusionConfig | None = None,
        recorder: EventRecorder | None = None,
        bus: StreamBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.calibration = calibration
        self.clamp_config = clamp_config or ClampConfig()
        self.health_config = health_config or HealthConfig()
        self.recorder = recorder or EventRecorder(bus=bus)
        self._build_pipeline(calibration)
        self.estimator = NodeHealthEstimator(calibration.weight_vector, self.health_config, stimulus)
        self.diffusion_config = diffusion_config or DiffusionConfig()
        self.view = HealthGossipView(calibration.node_id, self.diffusion_config.staleness_timeout_s, clock=clock)
        self.traffic_volume = 0.0
        self.samples_seen = 0
        self.samples_rejected = 0
        self.last_resolved: Optional[ResolvedState] = None
        self.last_packet: Optional[PacketState] = None
        self._reset_buffer()

    @property
    def node_id(self) -> int:
        return self.calibration.node_id

    @property
    def health(self) -> float:
        return self.estimator.h

    @property
    def band(self) -> HealthBand:
        return self.estimator.band

    @property
    def error_rate(self) -> float:
        return self.samples_rejected / self.samples_seen if self.samples_seen else 0.0

    @property
    def buffered(self) -> int:
        return len(self._samples)

    def _build_pipeline(self, calibration: NodeCalibration) -> None:
        self.projector = MaskedStateProjector(calibration.projection_matrix)
        self.aggregator = PacketAggregator(self.projector)
        self.clamp = BiocompatibilityClamp(calibration.channel_schema, self.clamp_config)

    def _reset_buffer(self) -> None:
        self._samples: List[np.ndarray] = []
        self._masks: List[np.ndarray] = []
        self._timestamps: List[float] = []

    def set_traffic_volume(self, volume: float) -> None:
        self.traffic_volume = float(volume)

    def recalibrate(self, calibration: NodeCalibration) -> None:
        """Swap in a new calibration version. State and channel dimensions are fixed for the node's lifetime."""
        if calibration.node_id != self.node_id:
            raise CalibrationError(f"Calibration is for node {calibration.node_id}, not {self.node_id}")
        if (calibration.n, calibration.d) != (self.calibration.n, self.calibration.d):
            raise CalibrationError(
                f"Calibration changes dimensions from {(self.calibration.n, self.calibration.d)} "
                f"to {(calibration.n, calibration.d)}"
            )
        self.calibration = calibration
        self._build_pipeline(calibration)
        self.estimator.weights = calibration.weight_vector
        self.estimator.reset()
        self._reset_buffer()
        logger.info("Node %s recalibrated to version %s", self.node_id, calibration.version)

    def push(self, values: Sequence[float], mask: Optional[Sequence[bool]] = None, timestamp: float = 0.0) -> Optional[PacketReport]:
        """Resolve one sample inline; returns a report when it completes a packet."""
        self.samples_seen += 1
        if mask is None:
            mask = np.ones(self.calibration.d, dtype=bool)
        try:
            resolved = self.projector.resolve(values, mask, timestamp=timestamp)
        except (MalformedSampleError, InvalidMaskError) as exc:
            self.samples_rejected += 1
            self.recorder.emit(
                SampleRejected(node_id=self.node_id, timestamp=timestamp, error_type=type(exc).__name__, reason=str(exc))
            )
            logger.warning("Node %s dropped sample at %.3f: %s", self.node_id, timestamp, exc)
            return None
        if not resolved.usable:
            self.recorder.emit(NoValidChannelsWarning(node_id=self.node_id, timestamp=timestamp))
        self.last_resolved = resolved
        # non-finite entries would poison the packet energy
        self._samples.append(np.nan_to_num(resolved.values, nan=0.0, posinf=0.0, neginf=0.0))
        self._masks.append(np.asarray(mask, dtype=bool))
        self._timestamps.append(timestamp)
        if len(self._samples) >= self.calibration.packet_size:
            return self._process_packet()
        return None

    def flush(self) -> Optional[PacketReport]:
        """Process a partial terminal packet, if any samples are buffered."""
        if not self._samples:
            return None
        return self._process_packet()

    def _tick_period(self, t_effective: int) -> float:
        if self.health_config.tick_period_s is not None:
            return self.health_config.tick_period_s
        return t_effective / self.calibration.sample_rate_hz

    def _process_packet(self) -> PacketReport:
        samples = np.column_stack(self._samples)
        masks = np.column_stack(self._masks)
        timestamps = list(self._timestamps)
        self._reset_buffer()
        stamp = timestamps[-1]

        clamped = self.clamp.clamp(samples)
        if clamped.violated:
            self.recorder.emit(
                BiocompatibilityViolation(
                    node_id=self.node_id,
                    timestamp=stamp,
                    j_bio=clamped.j_bio,
                    threshold=self.clamp.threshold,
                    scale=clamped.scale,
                )
            )
            logger.warning(
                "Node %s biocompatibility cost %.1f above %.1f, scaled by %.4f",
                self.node_id,
                clamped.j_bio,
                self.clamp.threshold,
                clamped.scale,
            )
        state = self.aggregator.aggregate(clamped.samples, masks)
        self.last_packet = state

        dt = self._tick_period(state.t_effective)
        previous_band = self.estimator.band
        update = self.estimator.tick(dt, z=state.z, traffic_volume=self.traffic_volume)
        if update.band_changed:
            self.recorder.emit(
                HealthBandChanged(
                    node_id=self.node_id, timestamp=stamp, previous=previous_band, current=update.band, health=update.h
                )
            )
        if update.sustained_critical_s is not None:
            self.recorder.emit(
                SustainedCritical(node_id=self.node_id, timestamp=stamp, dwell_s=update.sustained_critical_s, health=update.h)
            )
        logger.debug("Node %s packet T=%d h=%.3f band=%s", self.node_id, state.t_effective, update.h, update.band.value)
        return PacketReport(
            node_id=self.node_id, state=state, clamp=clamped, health=update, dt=dt, timestamps=timestamps
        )

    async def run(self, stream: AsyncIterator[StreamItem]) -> List[PacketReport]:
        """Consume a sample stream until it ends, then flush the partial packet."""
        reports: List[PacketReport] = []
        async for item in stream:
            if isinstance(item, RawSample):
                report = self.push(item.values, None, item.timestamp)
            else:
                values, mask, timestamp = item
                report = self.push(values, mask, timestamp)
            if report is not None:
                reports.append(report)
                await asyncio.sleep(0)
        tail = self.flush()
        if tail is not None:
            reports.append(tail)
        return reports

    def gossip_entry(self) -> HealthReport:
        return self.view.publish(self.estimator.h)

    def receive(self, report: HealthReport) -> bool:
        return self.view.receive(report)

    def network_tick(self, diffuser: NetworkHealthDiffuser, dt: float) -> RowUpdate:
        """Apply this node's row of the self-healing dynamic to its own health."""
        update = diffuser.step_node(self.node_id, self.estimator.h, self.view, dt)
        for warning in update.warnings:
            self.recorder.emit(warning)
        previous_band = self.estimator.band
        health = self.estimator.adopt(update.h, dt=dt)
        if health.band_changed:
            self.recorder.emit(
                HealthBandChanged(node_id=self.node_id, previous=previous_band, current=health.band, health=health.h)
            )
        if health.sustained_critical_s is not None:
            self.recorder.emit(
                SustainedCritical(node_id=self.node_id, dwell_s=health.sustained_critical_s, health=health.h)
            )
        return update

    def report(self) -> dict:
        return {
            "node_id": self.node_id,
            "calibration_version": self.calibration.version,
            "health": self.estimator.h,
            "band": self.estimator.band.value,
            "sustained_critical": self.estimator.dwell.sustained,
            "samples_seen": self.samples_seen,
            "samples_rejected": self.samples_rejected,
            "error_rate": self.error_rate,
            "events": self.recorder.summary(),
        }


def gossip_round(nodes: Iterable[BiosignalNode], topology: NetworkTopology) -> int:
    """Every active node publishes its health to its current neighbours. Returns deliveries made."""
    by_id = {node.node_id: node for node in nodes}
    reports = {node_id: node.gossip_entry() for node_id, node in by_id.items() if node_id in topology.active_ids}
    delivered = 0
    for node_id, report in reports.items():
        for neighbor_id in topology.neighbors(node_id):
            neighbor = by_id.get(neighbor_id)
            if neighbor is not None and neighbor.receive(report):
                delivered += 1
    return delivered
