from __future__ import annotations

import logging
from typing import List

import numpy as np

from core.config import DiffusionConfig, HealthConfig, NodeCalibration
from core.stimulus import UniformStimulus
from network.diffuser import NetworkHealthDiffuser
from network.topology import NetworkTopology
from streams.node import BiosignalNode, gossip_round


def build_swarm(n_nodes: int = 6, seed: int = 7) -> tuple[List[BiosignalNode], NetworkTopology]:
    topology = NetworkTopology.random(n_nodes, density=0.5, seed=seed)
    nodes = [
        BiosignalNode(
            NodeCalibration.random(i, n=32, seed=seed + i),
            health_config=HealthConfig(h_init=0.3 if i == 0 else 0.85),
            stimulus=UniformStimulus(0.1, seed=seed + 100 + i),
        )
        for i in topology.node_ids
    ]
    return nodes, topology


def run_demo(packets: int = 20, seed: int = 7) -> None:
    nodes, topology = build_swarm(seed=seed)
    diffuser = NetworkHealthDiffuser(topology, DiffusionConfig(), stimulus=UniformStimulus(0.05, seed=seed))
    rng = np.random.default_rng(seed)
    d = nodes[0].calibration.d
    for _ in range(packets):
        for node in nodes:
            for _ in range(node.calibration.packet_size):
                mask = rng.random(d) > 0.1
                node.push(rng.standard_normal(d) * 20.0, mask=mask)
        gossip_round(nodes, topology)
        for node in nodes:
            node.network_tick(diffuser, dt=nodes[0].calibration.packet_duration_s)

    for node in nodes:
        report = node.report()
        print(f"node {report['node_id']}: h={report['health']:.3f} band={report['band']} events={report['events']}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run_demo()
