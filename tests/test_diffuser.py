import numpy as np
import pytest

from core.config import DiffusionConfig
from core.stimulus import UniformStimulus, ZeroStimulus
from network.diffuser import NetworkHealthDiffuser, row_update
from network.gossip import HealthGossipView
from network.topology import NetworkTopology


def _complete_graph(n: int = 4) -> NetworkTopology:
    adjacency = np.ones((n, n)) - np.eye(n)
    return NetworkTopology.from_adjacency(range(n), adjacency)


def test_pure_diffusion_conserves_total_health():
    diffuser = NetworkHealthDiffuser(
        _complete_graph(), DiffusionConfig(gamma=0.2, mu=0.0), stimulus=ZeroStimulus()
    )
    diffuser.H = np.array([0.1, 0.5, 0.7, 0.3])
    H_next = diffuser.step(dt=0.1)
    assert H_next.sum() == pytest.approx(1.6)
    np.testing.assert_allclose(H_next, [0.124, 0.492, 0.676, 0.308])


def test_restoring_force_pulls_toward_reference():
    topology = NetworkTopology([0, 1])
    diffuser = NetworkHealthDiffuser(topology, DiffusionConfig(mu=0.5, h_ref=0.8), stimulus=ZeroStimulus())
    diffuser.H = np.array([0.2, 1.0])
    H_next = diffuser.step(dt=1.0)
    np.testing.assert_allclose(H_next, [0.5, 0.9])


def test_step_stays_in_unit_interval():
    topology = NetworkTopology.random(16, density=0.5, seed=2)
    diffuser = NetworkHealthDiffuser(topology, DiffusionConfig(gamma=5.0, beta=5.0), stimulus=UniformStimulus(0.05, seed=3))
    diffuser.H = np.random.default_rng(0).random(16)
    for _ in range(20):
        H = diffuser.step(dt=1.0)
        assert np.all((H >= 0.0) & (H <= 1.0))


def test_withdrawn_node_is_frozen_and_decoupled():
    topology = _complete_graph()
    diffuser = NetworkHealthDiffuser(topology, DiffusionConfig(mu=0.0), stimulus=ZeroStimulus())
    diffuser.H = np.array([0.1, 0.5, 0.7, 0.3])
    topology.withdraw(2)
    H_next = diffuser.step(dt=0.1)
    assert H_next[2] == 0.7
    # the remaining three still conserve their own total
    assert H_next[[0, 1, 3]].sum() == pytest.approx(0.9)


def test_new_nodes_start_at_reference():
    topology = NetworkTopology([0])
    diffuser = NetworkHealthDiffuser(topology, stimulus=ZeroStimulus())
    topology.add_node(7)
    assert diffuser.health(7) == pytest.approx(0.8)
    assert set(diffuser.vector()) == {0, 7}


def test_seeded_global_steps_are_reproducible():
    def run(seed):
        diffuser = NetworkHealthDiffuser(NetworkTopology.random(8, seed=1), stimulus=UniformStimulus(0.05, seed=seed))
        return [diffuser.step(dt=0.5).tolist() for _ in range(10)]

    assert run(5) == run(5)


def test_row_update_matches_global_row():
    topology = _complete_graph()
    config = DiffusionConfig(gamma=0.2, mu=0.05)
    diffuser = NetworkHealthDiffuser(topology, config, stimulus=ZeroStimulus())
    H = np.array([0.1, 0.5, 0.7, 0.3])
    diffuser.H = H.copy()
    H_next = diffuser.step(dt=0.1)
    values = {j: H[j] for j in (1, 2, 3)}
    h0, coupling = row_update(H[0], topology.neighbors(0), values, 0.1, config)
    assert h0 == pytest.approx(H_next[0])
    assert coupling == pytest.approx(-0.2 * (3 * 0.1 - 1.5))


def test_row_update_ignores_unknown_neighbours():
    config = DiffusionConfig(gamma=1.0, mu=0.0)
    h, coupling = row_update(0.5, {1: 1.0, 2: 1.0}, {1: 0.7}, 1.0, config)
    assert coupling == pytest.approx(0.2)
    assert h == pytest.approx(0.7)


def test_withdrawn_node_row_step_leaves_entry_frozen():
    topology = NetworkTopology.from_adjacency([0, 1], np.array([[0.0, 1.0], [1.0, 0.0]]))
    diffuser = NetworkHealthDiffuser(topology, DiffusionConfig(mu=0.5), stimulus=ZeroStimulus())
    diffuser.set_health(1, 0.2)
    topology.withdraw(1)
    update = diffuser.step_node(1, 0.2, HealthGossipView(1), dt=1.0)
    assert update.h == update.h_prev == 0.2
    assert diffuser.health(1) == 0.2


def test_config_seed_makes_default_stimulus_reproducible():
    def run():
        diffuser = NetworkHealthDiffuser(NetworkTopology.random(6, seed=2), DiffusionConfig(seed=9))
        return [diffuser.step(dt=0.5).tolist() for _ in range(5)]

    assert run() == run()
