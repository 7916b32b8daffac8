from __future__ import annotations

from typing import Optional

import numpy as np

from core.errors import InvalidMaskError, MalformedSampleError
from core.models import Packet, PacketState
from somatic.projector import MaskedStateProjector, check_mask


class PacketAggregator:
    """Temporal compression of a packet into the mean of its resolved states."""

    def __init__(self, projector: MaskedStateProjector):
        self.projector = projector

    def _expand_masks(self, masks: Optional[np.ndarray], d: int, t: int) -> np.ndarray:
        if masks is None:
            return np.ones((d, t), dtype=bool)
        arr = np.asarray(masks)
        if arr.ndim == 1:
            shared = check_mask(arr, d)
            return np.repeat(shared[:, None], t, axis=1)
        if arr.shape != (d, t):
            raise InvalidMaskError(f"Packet mask has shape {arr.shape}, expected ({d}, {t}) or ({d},)")
        if arr.dtype != bool:
            if not np.isin(arr, (0, 1)).all():
                raise InvalidMaskError("Mask entries must be boolean or 0/1")
            arr = arr.astype(bool)
        return arr

    def aggregate(self, samples: np.ndarray, masks: Optional[np.ndarray] = None) -> PacketState:
        block = np.asarray(samples, dtype=float)
        d = self.projector.d
        if block.ndim != 2 or block.shape[0] != d:
            raise MalformedSampleError(expected=d, actual=int(block.shape[0]) if block.ndim else 0)
        t_effective = int(block.shape[1])
        if t_effective == 0:
            raise MalformedSampleError(expected=d, actual=0)
        full_masks = self._expand_masks(masks, d, t_effective)
        X, counts = self.projector.resolve_block(block, full_masks)
        # divisor is the number of columns present, never the configured packet size
        z = X.sum(axis=1) / t_effective
        return PacketState(z=z, t_effective=t_effective, unusable_columns=int((counts == 0).sum()))

    def aggregate_packet(self, packet: Packet) -> PacketState:
        return self.aggregate(packet.samples, packet.masks)
