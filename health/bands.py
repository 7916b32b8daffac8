from __future__ import annotations

from typing import Optional

from core.models import HealthBand


def classify_band(h: float, healthy_above: float = 0.8, critical_below: float = 0.4) -> HealthBand:
    if h >= healthy_above:
        return HealthBand.HEALTHY
    if h >= critical_below:
        return HealthBand.DEGRADED
    return HealthBand.CRITICAL


class CriticalDwellTracker:
    """Accumulates tick time spent in CRITICAL. Reports once per excursion when the dwell limit is reached."""

    def __init__(self, dwell_s: float):
        self.dwell_s = dwell_s
        self.elapsed_s = 0.0
        self._reported = False

    def update(self, band: HealthBand, dt: float) -> Optional[float]:
        if band != HealthBand.CRITICAL:
            self.elapsed_s = 0.0
            self._reported = False
            return None
        self.elapsed_s += dt
        if self.elapsed_s >= self.dwell_s and not self._reported:
            self._reported = True
            return self.elapsed_s
        return None

    @property
    def sustained(self) -> bool:
        return self._reported

    def reset(self) -> None:
        self.elapsed_s = 0.0
        self._reported = False
