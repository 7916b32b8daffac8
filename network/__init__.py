"""Swarm topology, gossip replicas and Laplacian self-healing."""

from network.diffuser import NetworkHealthDiffuser, RowUpdate, row_update
from network.gossip import HealthGossipView, HealthReport, NeighborSnapshot
from network.topology import NetworkTopology, validate_adjacency

__all__ = [
    "NetworkTopology",
    "validate_adjacency",
    "HealthGossipView",
    "HealthReport",
    "NeighborSnapshot",
    "NetworkHealthDiffuser",
    "RowUpdate",
    "row_update",
]
