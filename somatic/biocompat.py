from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from core.config import ClampConfig
from core.errors import MalformedSampleError
from core.models import ChannelSchema


@dataclass
class ClampResult:
    samples: np.ndarray
    violated: bool
    j_bio: float
    scale: float = 1.0


def biocompatibility_cost(samples: np.ndarray, weights: np.ndarray) -> float:
    """Squared Frobenius norm of diag(weights) · samples."""
    weighted = weights[:, None] * samples
    return float(np.sum(weighted * weighted))


class BiocompatibilityClamp:
    """Bounds the weighted energy of a packet. Violations are resolved by scaling, never by dropping."""

    def __init__(self, schema: ChannelSchema, config: ClampConfig | None = None):
        self.config = config or ClampConfig()
        self.weights = schema.channel_vector(self.config.group_weights)

    @property
    def threshold(self) -> float:
        return self.config.threshold

    def cost(self, samples: np.ndarray) -> float:
        return biocompatibility_cost(np.asarray(samples, dtype=float), self.weights)

    def clamp(self, samples: np.ndarray) -> ClampResult:
        block = np.asarray(samples, dtype=float)
        if block.ndim == 1:
            block = block[:, None]
        if block.shape[0] != self.weights.size:
            raise MalformedSampleError(expected=self.weights.size, actual=int(block.shape[0]))
        j_bio = biocompatibility_cost(block, self.weights)
        if j_bio <= self.config.threshold:
            return ClampResult(samples=block, violated=False, j_bio=j_bio)
        scale = float(np.sqrt(self.config.threshold / (j_bio + self.config.epsilon)))
        return ClampResult(samples=scale * block, violated=True, j_bio=j_bio, scale=scale)
