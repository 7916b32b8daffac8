from __future__ import annotations

import numpy as np


def clip_unit(value):
    """Clip a scalar or array into [0, 1]."""
    if np.isscalar(value):
        return float(min(max(value, 0.0), 1.0))
    return np.clip(value, 0.0, 1.0)
