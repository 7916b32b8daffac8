"""Node runtime and in-process event bus."""

from streams.bus import StreamBus
from streams.node import BiosignalNode, PacketReport, gossip_round

__all__ = [
    "BiosignalNode",
    "PacketReport",
    "StreamBus",
    "gossip_round",
]
