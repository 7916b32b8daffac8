import asyncio

import numpy as np
import pytest

from core.config import ClampConfig, DiffusionConfig, HealthConfig, NodeCalibration
from core.errors import CalibrationError
from core.events import EventKind
from core.models import HealthBand, RawSample
from core.stimulus import UniformStimulus, ZeroStimulus
from network.diffuser import NetworkHealthDiffuser
from network.topology import NetworkTopology
from streams.bus import StreamBus
from streams.node import BiosignalNode, gossip_round


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _calibration(node_id: int = 1, packet_size: int = 8, version: str = "1") -> NodeCalibration:
    cal = NodeCalibration.random(node_id, n=4, seed=node_id, version=version)
    return cal.model_copy(update={"packet_size": packet_size})


def _samples(count: int, seed: int = 0, d: int = 24) -> np.ndarray:
    return np.random.default_rng(seed).standard_normal((count, d))


def test_packets_close_every_t_samples_and_flush_partial():
    node = BiosignalNode(_calibration(), stimulus=ZeroStimulus())
    reports = [node.push(row, timestamp=i / 250) for i, row in enumerate(_samples(20))]
    closed = [r for r in reports if r is not None]
    assert [r.state.t_effective for r in closed] == [8, 8]
    assert node.buffered == 4
    tail = node.flush()
    assert tail.state.t_effective == 4
    assert tail.dt == pytest.approx(4 / 250)
    assert node.flush() is None


def test_packet_state_matches_aggregate_of_clamped_block():
    cal = _calibration()
    node = BiosignalNode(cal, stimulus=ZeroStimulus())
    block = _samples(8, seed=2)
    for row in block[:-1]:
        assert node.push(row) is None
    report = node.push(block[-1])
    expected = (cal.projection_matrix @ block.T).mean(axis=1)
    np.testing.assert_allclose(report.state.z, expected)
    assert report.clamp.violated is False


def test_malformed_samples_are_dropped_and_counted():
    node = BiosignalNode(_calibration())
    assert node.push([1.0, 2.0, 3.0], timestamp=0.5) is None
    assert node.push(np.ones(24), mask=[True] * 3) is None
    node.push(np.ones(24))
    assert node.samples_rejected == 2
    assert node.error_rate == pytest.approx(2 / 3)
    rejected = node.recorder.events(EventKind.SAMPLE_REJECTED)
    assert [e.error_type for e in rejected] == ["MalformedSampleError", "InvalidMaskError"]
    assert node.buffered == 1


def test_all_invalid_sample_warns_and_still_flows():
    node = BiosignalNode(_calibration())
    node.push(np.ones(24), mask=np.zeros(24, dtype=bool), timestamp=1.0)
    assert node.recorder.count(EventKind.NO_VALID_CHANNELS) == 1
    np.testing.assert_array_equal(node.last_resolved.x, np.zeros(4))
    assert node.buffered == 1


def test_violation_is_clamped_and_reported():
    bus = StreamBus()
    queue = bus.subscribe()
    node = BiosignalNode(_calibration(), clamp_config=ClampConfig(threshold=10.0), bus=bus)
    for row in _samples(8) * 100:
        report = node.push(row)
    assert report.clamp.violated
    assert node.clamp.cost(report.clamp.samples) <= 10.0 * (1 + 1e-9)
    violations = node.recorder.events(EventKind.BIOCOMPATIBILITY_VIOLATION)
    assert len(violations) == 1
    assert violations[0].scale == pytest.approx(report.clamp.scale)
    message = queue.get_nowait()
    assert message["kind"] == "biocompatibility_violation"
    assert message["event"]["j_bio"] == pytest.approx(report.clamp.j_bio)


def test_sustained_critical_is_emitted_once():
    config = HealthConfig(h_init=0.3, alpha=0.0, critical_dwell_s=0.05)
    node = BiosignalNode(_calibration(), health_config=config, stimulus=ZeroStimulus())
    for row in _samples(32):
        node.push(row)
    assert node.band == HealthBand.CRITICAL
    assert node.recorder.count(EventKind.SUSTAINED_CRITICAL) == 1
    assert node.report()["sustained_critical"] is True


def test_identical_runs_are_deterministic():
    def run():
        node = BiosignalNode(_calibration(), stimulus=UniformStimulus(0.1, seed=42))
        return [r.health.h for r in (node.push(row) for row in _samples(64, seed=9)) if r is not None]

    first = run()
    assert len(first) == 8
    assert first == run()


def test_recalibration_resets_health_and_keeps_dimensions():
    node = BiosignalNode(_calibration(), health_config=HealthConfig(h_init=0.6), stimulus=ZeroStimulus())
    node.estimator.adopt(0.1)
    node.push(np.ones(24))
    node.recalibrate(_calibration(version="2"))
    assert node.health == 0.6
    assert node.buffered == 0
    assert node.report()["calibration_version"] == "2"
    wider = NodeCalibration.random(1, n=5, seed=3)
    with pytest.raises(CalibrationError):
        node.recalibrate(wider)
    with pytest.raises(CalibrationError):
        node.recalibrate(_calibration(node_id=2))


def test_run_consumes_stream_and_flushes():
    node = BiosignalNode(_calibration(), stimulus=ZeroStimulus())
    rows = _samples(11)

    async def stream():
        for i, row in enumerate(rows):
            if i % 2:
                yield RawSample(values=row, timestamp=i / 250)
            else:
                yield row, None, i / 250

    reports = asyncio.run(node.run(stream()))
    assert [r.state.t_effective for r in reports] == [8, 3]


def test_network_tick_heals_failing_node():
    clock = FakeClock()
    topology = NetworkTopology.from_adjacency([0, 1, 2], np.array([[0, 1, 0], [1, 0, 1], [0, 1, 0]], dtype=float))
    nodes = [
        BiosignalNode(
            _calibration(node_id=i),
            health_config=HealthConfig(h_init=0.2 if i == 1 else 0.9),
            stimulus=ZeroStimulus(),
            clock=clock,
        )
        for i in range(3)
    ]
    diffuser = NetworkHealthDiffuser(topology, DiffusionConfig(gamma=0.2, mu=0.0), stimulus=ZeroStimulus())
    assert gossip_round(nodes, topology) == 4
    update = nodes[1].network_tick(diffuser, dt=1.0)
    assert update.h == pytest.approx(0.48)
    assert nodes[1].health == pytest.approx(0.48)
    assert nodes[1].band == HealthBand.DEGRADED
    assert update.partitioned == set()


def test_network_tick_proceeds_with_stale_neighbours():
    clock = FakeClock()
    topology = NetworkTopology.from_adjacency([0, 1], np.array([[0.0, 1.0], [1.0, 0.0]]))
    nodes = [
        BiosignalNode(
            _calibration(node_id=i),
            diffusion_config=DiffusionConfig(staleness_timeout_s=5.0),
            stimulus=ZeroStimulus(),
            clock=clock,
        )
        for i in range(2)
    ]
    gossip_round(nodes, topology)
    clock.now = 30.0
    diffuser = NetworkHealthDiffuser(topology, stimulus=ZeroStimulus())
    update = nodes[0].network_tick(diffuser, dt=1.0)
    assert update.partitioned == {1}
    assert nodes[0].recorder.count(EventKind.STALE_NEIGHBOR) == 1
    assert 0.0 <= update.h <= 1.0


def test_masked_out_marker_channel_keeps_sample():
    node = BiosignalNode(_calibration(), stimulus=ZeroStimulus())
    row = [0.5] * 23 + ["marker"]
    mask = [True] * 23 + [False]
    reports = [node.push(row, mask=mask, timestamp=i / 250) for i in range(8)]
    assert node.samples_rejected == 0
    assert reports[-1] is not None
    assert reports[-1].clamp.samples[-1].tolist() == [0.0] * 8


def test_withdrawn_node_network_tick_is_frozen():
    topology = NetworkTopology.from_adjacency([0, 1], np.array([[0.0, 1.0], [1.0, 0.0]]))
    node = BiosignalNode(_calibration(node_id=1), health_config=HealthConfig(h_init=0.2), stimulus=ZeroStimulus())
    diffuser = NetworkHealthDiffuser(topology, DiffusionConfig(mu=0.5), stimulus=ZeroStimulus())
    diffuser.set_health(1, 0.2)
    topology.withdraw(1)
    node.network_tick(diffuser, dt=1.0)
    assert diffuser.health(1) == 0.2
    assert node.health == 0.2


def test_network_ticks_drive_critical_dwell():
    topology = NetworkTopology([0, 1])
    node = BiosignalNode(
        _calibration(node_id=0),
        health_config=HealthConfig(h_init=0.3, critical_dwell_s=1.0),
        stimulus=ZeroStimulus(),
    )
    diffuser = NetworkHealthDiffuser(topology, DiffusionConfig(mu=0.0), stimulus=ZeroStimulus())
    node.network_tick(diffuser, dt=0.6)
    assert node.recorder.count(EventKind.SUSTAINED_CRITICAL) == 0
    node.network_tick(diffuser, dt=0.6)
    assert node.recorder.count(EventKind.SUSTAINED_CRITICAL) == 1
    event = node.recorder.events(EventKind.SUSTAINED_CRITICAL)[0]
    assert event.dwell_s == pytest.approx(1.2)
