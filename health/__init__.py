from health.bands import CriticalDwellTracker, classify_band
from health.estimator import HealthUpdate, NodeHealthEstimator

__all__ = ["NodeHealthEstimator", "HealthUpdate", "classify_band", "CriticalDwellTracker"]
