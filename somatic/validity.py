from __future__ import annotations

import math
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from core.errors import MalformedSampleError
from core.models import ChannelGroup, ChannelSchema


def _to_float(raw: Any) -> Optional[float]:
    if isinstance(raw, bool) or raw is None:
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def coerce_sample(
    raw_values: Sequence[Any],
    schema: ChannelSchema,
    ranges: Optional[Dict[ChannelGroup, Tuple[float, float]]] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """Turn a heterogeneous raw row into (values, mask).

    Non-numeric, NaN/inf and out-of-range entries are zeroed and marked invalid.
    A row whose length differs from the schema raises MalformedSampleError.
    """
    if len(raw_values) != schema.d:
        raise MalformedSampleError(expected=schema.d, actual=len(raw_values))
    ranges = ranges or {}
    groups = schema.channel_groups()
    values = np.zeros(schema.d, dtype=float)
    mask = np.zeros(schema.d, dtype=bool)
    for i, raw in enumerate(raw_values):
        value = _to_float(raw)
        if value is None:
            continue
        bounds = ranges.get(groups[i])
        if bounds is not None and not (bounds[0] <= value <= bounds[1]):
            continue
        values[i] = value
        mask[i] = True
    return values, mask
