from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, Field


class ChannelGroup(str, Enum):
    EEG = "EEG"
    EMG = "EMG"
    EOG = "EOG"
    PPG = "PPG"
    EDA = "EDA"
    MISC = "misc"


GROUP_ORDER: Tuple[ChannelGroup, ...] = (
    ChannelGroup.EEG,
    ChannelGroup.EMG,
    ChannelGroup.EOG,
    ChannelGroup.PPG,
    ChannelGroup.EDA,
    ChannelGroup.MISC,
)


class ChannelSchema(BaseModel):
    """Fixed channel layout for a node type. Channels are laid out group by group in GROUP_ORDER."""

    model_config = {"frozen": True}

    eeg: int = Field(10, ge=0)
    emg: int = Field(4, ge=0)
    eog: int = Field(2, ge=0)
    ppg: int = Field(2, ge=0)
    eda: int = Field(1, ge=0)
    misc: int = Field(5, ge=0)

    def group_sizes(self) -> Dict[ChannelGroup, int]:
        return {
            ChannelGroup.EEG: self.eeg,
            ChannelGroup.EMG: self.emg,
            ChannelGroup.EOG: self.eog,
            ChannelGroup.PPG: self.ppg,
            ChannelGroup.EDA: self.eda,
            ChannelGroup.MISC: self.misc,
        }

    @property
    def d(self) -> int:
        return sum(self.group_sizes().values())

    def group_slices(self) -> Dict[ChannelGroup, slice]:
        slices: Dict[ChannelGroup, slice] = {}
        start = 0
        for group in GROUP_ORDER:
            size = self.group_sizes()[group]
            slices[group] = slice(start, start + size)
            start += size
        return slices

    def channel_groups(self) -> List[ChannelGroup]:
        groups: List[ChannelGroup] = []
        for group in GROUP_ORDER:
            groups.extend([group] * self.group_sizes()[group])
        return groups

    def channel_vector(self, per_group: Dict[ChannelGroup, float], default: float = 0.0) -> np.ndarray:
        """Expand a per-group value table into one value per channel."""
        return np.array([float(per_group.get(g, default)) for g in self.channel_groups()], dtype=float)


class HealthBand(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"


class NodeStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PARTITIONED = "PARTITIONED"
    WITHDRAWN = "WITHDRAWN"


@dataclass
class RawSample:
    values: np.ndarray
    timestamp: float = 0.0


@dataclass
class ResolvedState:
    x: np.ndarray
    valid_channels: int
    scale: float
    values: Optional[np.ndarray] = None

    @property
    def usable(self) -> bool:
        # a zero state from a fully masked sample means "unknown", not "measured"
        return self.valid_channels > 0


@dataclass
class Packet:
    """d×T block of consecutive samples. masks is either length d (shared) or d×T."""

    samples: np.ndarray
    masks: Optional[np.ndarray] = None
    timestamps: List[float] = field(default_factory=list)

    @property
    def length(self) -> int:
        return int(self.samples.shape[1])


@dataclass
class PacketState:
    z: np.ndarray
    t_effective: int
    unusable_columns: int = 0
