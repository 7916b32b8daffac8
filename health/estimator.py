from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from core.config import HealthConfig
from core.models import HealthBand
from core.numeric import clip_unit
from core.stimulus import StimulusSource, UniformStimulus
from health.bands import CriticalDwellTracker, classify_band

logger = logging.getLogger(__name__)


@dataclass
class HealthUpdate:
    h_prev: float
    h: float
    h_obs: Optional[float]
    stimulus: float
    self_test: bool
    band: HealthBand
    band_changed: bool
    sustained_critical_s: Optional[float] = None


class NodeHealthEstimator:
    """Scalar node health decaying toward h_ref, kept informative by a bounded self-test stimulus.

    The recurrence h <- clip(h + dt * (-alpha * (h - target) + beta * u), 0, 1) is authoritative.
    The observation h_obs = clip(w_h . z, 0, 1) only moves the target when observation_blend > 0.
    """

    def __init__(
        self,
        weights: np.ndarray,
        config: HealthConfig | None = None,
        stimulus: StimulusSource | None = None,
    ):
        self.config = config or HealthConfig()
        self.weights = np.asarray(weights, dtype=float)
        self.stimulus = stimulus or UniformStimulus(self.config.stimulus_amplitude, seed=self.config.seed)
        self.h = self.config.initial_health
        self.band = self._classify(self.h)
        self.dwell = CriticalDwellTracker(self.config.critical_dwell_s)
        self.ticks = 0

    def _classify(self, h: float) -> HealthBand:
        return classify_band(h, self.config.healthy_above, self.config.critical_below)

    def observe(self, z: np.ndarray) -> float:
        return clip_unit(float(self.weights @ np.asarray(z, dtype=float)))

    def target(self, h_obs: Optional[float]) -> float:
        blend = self.config.observation_blend
        if h_obs is None or blend == 0.0:
            return self.config.h_ref
        return (1.0 - blend) * self.config.h_ref + blend * h_obs

    def tick(self, dt: float, z: Optional[np.ndarray] = None, traffic_volume: float = 0.0) -> HealthUpdate:
        if dt < 0:
            raise ValueError("dt must be non-negative")
        h_obs = self.observe(z) if z is not None else None
        self_test = traffic_volume < self.config.traffic_floor
        u = float(self.stimulus.draw(1)[0]) if self_test else 0.0
        h_prev = self.h
        drift = -self.config.alpha * (h_prev - self.target(h_obs)) + self.config.beta * u
        self.h = clip_unit(h_prev + dt * drift)
        self.ticks += 1
        band, changed, sustained = self._settle(dt)
        return HealthUpdate(
            h_prev=h_prev,
            h=self.h,
            h_obs=h_obs,
            stimulus=u,
            self_test=self_test,
            band=band,
            band_changed=changed,
            sustained_critical_s=sustained,
        )

    def _settle(self, dt: float) -> Tuple[HealthBand, bool, Optional[float]]:
        band = self._classify(self.h)
        changed = band != self.band
        if changed:
            logger.info("Health band %s -> %s (h=%.3f)", self.band.value, band.value, self.h)
        self.band = band
        sustained = self.dwell.update(band, dt)
        if sustained is not None:
            logger.warning("Health CRITICAL for %.1fs (h=%.3f)", sustained, self.h)
        return band, changed, sustained

    def adopt(self, h: float, dt: float = 0.0) -> HealthUpdate:
        """Take over a value computed elsewhere, e.g. the network self-healing row update.

        dt is the time the value covers and counts toward the critical dwell like a packet tick.
        """
        if dt < 0:
            raise ValueError("dt must be non-negative")
        h_prev = self.h
        self.h = clip_unit(h)
        band, changed, sustained = self._settle(dt)
        return HealthUpdate(
            h_prev=h_prev,
            h=self.h,
            h_obs=None,
            stimulus=0.0,
            self_test=False,
            band=band,
            band_changed=changed,
            sustained_critical_s=sustained,
        )

    def reset(self, h: Optional[float] = None) -> None:
        """Re-establish health after recalibration."""
        self.h = clip_unit(self.config.initial_health if h is None else h)
        self.band = self._classify(self.h)
        self.dwell.reset()
        self.ticks = 0
