from __future__ import annotations

from typing import Optional, Sequence, Tuple

import numpy as np

from core.errors import InvalidMaskError, MalformedSampleError
from core.models import ResolvedState


def coerce_values(sample: Sequence) -> Tuple[np.ndarray, np.ndarray]:
    """Float vector plus a flag per entry telling whether it was numeric. Non-numeric entries become 0."""
    try:
        values = np.asarray(sample, dtype=float)
        return values, np.ones(values.shape, dtype=bool)
    except (TypeError, ValueError):
        pass
    values = np.zeros(len(sample), dtype=float)
    numeric = np.zeros(len(sample), dtype=bool)
    for i, raw in enumerate(sample):
        try:
            values[i] = float(raw)
        except (TypeError, ValueError):
            continue
        numeric[i] = True
    return values, numeric


def check_mask(mask, d: int, timestamp: Optional[float] = None) -> np.ndarray:
    arr = np.asarray(mask)
    if arr.ndim != 1 or arr.shape[0] != d:
        raise InvalidMaskError(f"Mask has shape {arr.shape}, expected ({d},)", timestamp=timestamp)
    if arr.dtype != bool:
        # accept 0/1 integer masks, nothing else
        if not np.isin(arr, (0, 1)).all():
            raise InvalidMaskError("Mask entries must be boolean or 0/1", timestamp=timestamp)
        arr = arr.astype(bool)
    return arr


class MaskedStateProjector:
    """Projects a raw sample into the node state space, compensating for missing channels."""

    def __init__(self, projection: np.ndarray):
        self.projection = np.asarray(projection, dtype=float)
        if self.projection.ndim != 2:
            raise ValueError("projection must be an n×d matrix")

    @property
    def n(self) -> int:
        return int(self.projection.shape[0])

    @property
    def d(self) -> int:
        return int(self.projection.shape[1])

    def resolve(self, sample: Sequence, mask, timestamp: Optional[float] = None) -> ResolvedState:
        if not hasattr(sample, "__len__") or len(sample) != self.d:
            actual = len(sample) if hasattr(sample, "__len__") else 1
            raise MalformedSampleError(expected=self.d, actual=actual, timestamp=timestamp)
        valid = check_mask(mask, self.d, timestamp=timestamp)
        values, numeric = coerce_values(sample)
        if values.ndim != 1:
            raise MalformedSampleError(expected=self.d, actual=int(values.size), timestamp=timestamp)
        unreadable = np.flatnonzero(valid & ~numeric)
        if unreadable.size:
            raise MalformedSampleError(
                expected=self.d,
                actual=self.d,
                timestamp=timestamp,
                reason=f"Channels {unreadable.tolist()} are marked valid but not numeric",
            )
        count = int(valid.sum())
        scale = self.d / max(1, count)
        s_valid = np.where(valid, values, 0.0)
        x = self.projection @ (scale * s_valid)
        return ResolvedState(x=x, valid_channels=count, scale=scale, values=values)

    def resolve_block(self, samples: np.ndarray, masks: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Column-wise resolve of a d×T block with a d×T mask. Returns (X n×T, valid counts per column)."""
        counts = masks.sum(axis=0)
        scales = self.d / np.maximum(1, counts)
        s_valid = np.where(masks, samples, 0.0) * scales
        return self.projection @ s_valid, counts
