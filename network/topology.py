from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence

import networkx as nx
import numpy as np

from core.errors import NetworkTopologyError
from core.models import NodeStatus

logger = logging.getLogger(__name__)


def validate_adjacency(adjacency: np.ndarray, size: int) -> np.ndarray:
    arr = np.asarray(adjacency, dtype=float)
    if arr.shape != (size, size):
        raise NetworkTopologyError(f"Adjacency has shape {arr.shape}, expected ({size}, {size})")
    if not np.isfinite(arr).all():
        raise NetworkTopologyError("Adjacency contains non-finite weights")
    if (arr < 0).any():
        raise NetworkTopologyError("Adjacency contains negative weights")
    if not np.allclose(arr, arr.T):
        raise NetworkTopologyError("Adjacency is not symmetric")
    if np.any(np.diag(arr) != 0):
        raise NetworkTopologyError("Adjacency diagonal must be zero")
    return arr


class NetworkTopology:
    """Weighted undirected node graph with stable arena slots.

    Node ids map to slots that are never reused, so joins and withdrawals never
    shift another node's index. Withdrawn nodes keep their slot with no edges.
    """

    def __init__(self, node_ids: Iterable[int] = ()):
        self.graph = nx.Graph()
        self._slots: Dict[int, int] = {}
        self._ids: List[int] = []
        self._status: Dict[int, NodeStatus] = {}
        self.version = 0
        for node_id in node_ids:
            self.add_node(node_id)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, node_id: int) -> bool:
        return node_id in self._slots

    @property
    def node_ids(self) -> List[int]:
        return list(self._ids)

    @property
    def active_ids(self) -> List[int]:
        return [n for n in self._ids if self._status[n] != NodeStatus.WITHDRAWN]

    def slot(self, node_id: int) -> int:
        try:
            return self._slots[node_id]
        except KeyError:
            raise NetworkTopologyError(f"Unknown node {node_id}") from None

    def status(self, node_id: int) -> NodeStatus:
        self.slot(node_id)
        return self._status[node_id]

    def add_node(self, node_id: int) -> int:
        if node_id in self._slots:
            if self._status[node_id] == NodeStatus.WITHDRAWN:
                self._status[node_id] = NodeStatus.ACTIVE
                logger.info("Node %s rejoined at slot %d", node_id, self._slots[node_id])
            return self._slots[node_id]
        slot = len(self._ids)
        self._slots[node_id] = slot
        self._ids.append(node_id)
        self._status[node_id] = NodeStatus.ACTIVE
        self.graph.add_node(node_id)
        self.version += 1
        logger.info("Node %s joined at slot %d", node_id, slot)
        return slot

    def withdraw(self, node_id: int) -> None:
        self.slot(node_id)
        self.graph.remove_edges_from(list(self.graph.edges(node_id)))
        self._status[node_id] = NodeStatus.WITHDRAWN
        self.version += 1
        logger.info("Node %s withdrawn", node_id)

    def set_edge(self, u: int, v: int, weight: float) -> None:
        for node_id in (u, v):
            if self.status(node_id) == NodeStatus.WITHDRAWN:
                raise NetworkTopologyError(f"Node {node_id} is withdrawn")
        if u == v:
            raise NetworkTopologyError("Self loops are not allowed")
        if not np.isfinite(weight) or weight < 0:
            raise NetworkTopologyError(f"Edge weight must be finite and non-negative, got {weight}")
        if weight == 0:
            if self.graph.has_edge(u, v):
                self.graph.remove_edge(u, v)
        else:
            self.graph.add_edge(u, v, weight=float(weight))
        self.version += 1

    def update_from_adjacency(self, node_ids: Sequence[int], adjacency: np.ndarray) -> None:
        """Replace the topology with a full membership snapshot.

        Listed nodes become active with exactly the given edges; known nodes missing
        from the snapshot are withdrawn. On validation failure nothing changes.
        """
        ids = list(node_ids)
        if len(set(ids)) != len(ids):
            raise NetworkTopologyError("Duplicate node ids in topology update")
        arr = validate_adjacency(adjacency, len(ids))
        for node_id in ids:
            self.add_node(node_id)
        for node_id in self._ids:
            if node_id not in ids and self._status[node_id] != NodeStatus.WITHDRAWN:
                self.withdraw(node_id)
        self.graph.remove_edges_from(list(self.graph.edges()))
        rows, cols = np.nonzero(np.triu(arr, k=1))
        self.graph.add_weighted_edges_from((ids[i], ids[j], float(arr[i, j])) for i, j in zip(rows, cols))
        self.version += 1

    def neighbors(self, node_id: int) -> Dict[int, float]:
        self.slot(node_id)
        return {nbr: float(data.get("weight", 1.0)) for nbr, data in self.graph[node_id].items()}

    def adjacency(self) -> np.ndarray:
        """Slot-ordered adjacency; withdrawn slots are zero rows and columns."""
        if not self._ids:
            return np.zeros((0, 0))
        return nx.to_numpy_array(self.graph, nodelist=self._ids, weight="weight")

    def laplacian(self) -> np.ndarray:
        a = self.adjacency()
        return np.diag(a.sum(axis=1)) - a

    def is_connected(self) -> bool:
        active = self.active_ids
        if not active:
            return False
        return nx.is_connected(self.graph.subgraph(active))

    @classmethod
    def from_adjacency(cls, node_ids: Sequence[int], adjacency: np.ndarray) -> "NetworkTopology":
        topology = cls()
        topology.update_from_adjacency(node_ids, adjacency)
        return topology

    @classmethod
    def random(cls, n_nodes: int, density: float = 0.3, seed: int = 0) -> "NetworkTopology":
        """Seeded demo topology. Production topologies come from the discovery layer."""
        rng = np.random.default_rng(seed)
        weights = rng.random((n_nodes, n_nodes))
        weights = 0.5 * (weights + weights.T)
        keep = np.triu(rng.random((n_nodes, n_nodes)) < density, k=1)
        keep = keep | keep.T
        return cls.from_adjacency(range(n_nodes), np.where(keep, weights, 0.0))
