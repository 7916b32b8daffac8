"""Per-sample and per-packet resolution of multi-channel biosignal streams."""

from somatic.aggregator import PacketAggregator
from somatic.biocompat import BiocompatibilityClamp, ClampResult, biocompatibility_cost
from somatic.projector import MaskedStateProjector
from somatic.validity import coerce_sample

__all__ = [
    "MaskedStateProjector",
    "PacketAggregator",
    "BiocompatibilityClamp",
    "ClampResult",
    "biocompatibility_cost",
    "coerce_sample",
]
