from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

import numpy as np

from core.config import DiffusionConfig
from core.events import StaleNeighborWarning
from core.models import NodeStatus
from core.numeric import clip_unit
from core.stimulus import StimulusSource, UniformStimulus
from network.gossip import HealthGossipView
from network.topology import NetworkTopology

logger = logging.getLogger(__name__)


@dataclass
class RowUpdate:
    node_id: int
    h_prev: float
    h: float
    coupling: float
    stimulus: float
    partitioned: Set[int] = field(default_factory=set)
    warnings: List[StaleNeighborWarning] = field(default_factory=list)


def row_update(
    h_i: float,
    neighbor_weights: Dict[int, float],
    neighbor_values: Dict[int, float],
    dt: float,
    config: DiffusionConfig,
    u: float = 0.0,
) -> tuple[float, float]:
    """One node's row of H <- clip(H + dt * (-gamma L H - mu (H - h_ref) + beta U), 0, 1).

    (L H)_i = sum_j a_ij (h_i - h_j). Neighbours with no known value are left out.
    Returns (h_next, coupling) where coupling is the -gamma (L H)_i term.
    """
    laplacian_row = sum(w * (h_i - neighbor_values[j]) for j, w in neighbor_weights.items() if j in neighbor_values)
    coupling = -config.gamma * laplacian_row
    drift = coupling - config.mu * (h_i - config.h_ref) + config.beta * u
    return clip_unit(h_i + dt * drift), coupling


class NetworkHealthDiffuser:
    """Graph-coupled self-healing dynamic over the network health vector H."""

    def __init__(
        self,
        topology: NetworkTopology,
        config: DiffusionConfig | None = None,
        stimulus: StimulusSource | None = None,
    ):
        self.topology = topology
        self.config = config or DiffusionConfig()
        self.stimulus = stimulus or UniformStimulus(self.config.stimulus_amplitude, seed=self.config.seed)
        self.H = np.full(len(topology), self.config.h_ref, dtype=float)

    def _sync(self) -> None:
        missing = len(self.topology) - self.H.size
        if missing > 0:
            self.H = np.concatenate([self.H, np.full(missing, self.config.h_ref)])

    def health(self, node_id: int) -> float:
        self._sync()
        return float(self.H[self.topology.slot(node_id)])

    def set_health(self, node_id: int, value: float) -> None:
        self._sync()
        self.H[self.topology.slot(node_id)] = clip_unit(value)

    def vector(self) -> Dict[int, float]:
        self._sync()
        return {node_id: float(self.H[i]) for i, node_id in enumerate(self.topology.node_ids)}

    def step(self, dt: float, drive: Optional[np.ndarray] = None) -> np.ndarray:
        """Global update of every active slot. Withdrawn slots keep their frozen value."""
        if dt < 0:
            raise ValueError("dt must be non-negative")
        self._sync()
        H = self.H
        L = self.topology.laplacian()
        if drive is None:
            drive = self.stimulus.draw(H.size)
        U = np.asarray(drive, dtype=float)
        if U.shape != H.shape:
            raise ValueError(f"Drive has shape {U.shape}, expected {H.shape}")
        H_next = clip_unit(
            H + dt * (-self.config.gamma * (L @ H) - self.config.mu * (H - self.config.h_ref) + self.config.beta * U)
        )
        for node_id in self.topology.node_ids:
            if self.topology.status(node_id) == NodeStatus.WITHDRAWN:
                slot = self.topology.slot(node_id)
                H_next[slot] = H[slot]
        self.H = H_next
        logger.debug("Diffusion step over %d slots, mean health %.3f", H.size, float(H_next.mean()))
        return self.H.copy()

    def step_node(self, node_id: int, own_health: float, view: HealthGossipView, dt: float) -> RowUpdate:
        """Row update computed by a node from its own replica; never waits on neighbours."""
        if self.topology.status(node_id) == NodeStatus.WITHDRAWN:
            # frozen: neither the node's own value nor its H slot moves
            return RowUpdate(node_id=node_id, h_prev=own_health, h=own_health, coupling=0.0, stimulus=0.0)
        weights = self.topology.neighbors(node_id)
        snap = view.snapshot(weights.keys())
        u = float(self.stimulus.draw(1)[0])
        h_next, coupling = row_update(own_health, weights, snap.values, dt, self.config, u=u)
        self.set_health(node_id, h_next)
        for neighbor_id, value in snap.values.items():
            self.set_health(neighbor_id, value)
        return RowUpdate(
            node_id=node_id,
            h_prev=own_health,
            h=h_next,
            coupling=coupling,
            stimulus=u,
            partitioned=snap.partitioned,
            warnings=snap.warnings,
        )
