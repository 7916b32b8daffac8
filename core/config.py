from __future__ import annotations

import os
from typing import Dict, List, Optional

import numpy as np
from pydantic import BaseModel, Field, model_validator

from core.models import ChannelGroup, ChannelSchema

DEFAULT_BIO_WEIGHTS: Dict[ChannelGroup, float] = {
    ChannelGroup.EEG: 1.0,
    ChannelGroup.EMG: 1.5,
    ChannelGroup.EOG: 1.2,
    ChannelGroup.PPG: 1.4,
    ChannelGroup.EDA: 1.3,
    ChannelGroup.MISC: 0.5,
}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_optional_int(name: str) -> Optional[int]:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else None


class ClampConfig(BaseModel):
    threshold: float = Field(1e4, gt=0.0)
    epsilon: float = Field(1e-9, gt=0.0)
    group_weights: Dict[ChannelGroup, float] = Field(default_factory=lambda: dict(DEFAULT_BIO_WEIGHTS))

    @classmethod
    def from_env(cls) -> "ClampConfig":
        return cls(
            threshold=_env_float("RESOLVER_BIO_THRESHOLD", 1e4),
            epsilon=_env_float("RESOLVER_BIO_EPSILON", 1e-9),
        )


class HealthConfig(BaseModel):
    h_ref: float = Field(0.8, gt=0.0, le=1.0)
    h_init: Optional[float] = Field(None, ge=0.0, le=1.0)
    alpha: float = Field(0.1, ge=0.0)
    beta: float = Field(0.05, ge=0.0)
    stimulus_amplitude: float = Field(0.1, ge=0.0)
    traffic_floor: float = Field(1.0, ge=0.0)
    observation_blend: float = Field(0.0, ge=0.0, le=1.0)
    critical_dwell_s: float = Field(5.0, ge=0.0)
    tick_period_s: Optional[float] = Field(None, gt=0.0)
    seed: Optional[int] = None
    healthy_above: float = Field(0.8, gt=0.0, le=1.0)
    critical_below: float = Field(0.4, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_bands(self) -> "HealthConfig":
        if self.critical_below > self.healthy_above:
            raise ValueError("critical_below must not exceed healthy_above")
        return self

    @property
    def initial_health(self) -> float:
        return self.h_ref if self.h_init is None else self.h_init

    @classmethod
    def from_env(cls) -> "HealthConfig":
        tick = os.getenv("RESOLVER_HEALTH_TICK_S")
        return cls(
            h_ref=_env_float("RESOLVER_HEALTH_H_REF", 0.8),
            alpha=_env_float("RESOLVER_HEALTH_ALPHA", 0.1),
            beta=_env_float("RESOLVER_HEALTH_BETA", 0.05),
            stimulus_amplitude=_env_float("RESOLVER_HEALTH_STIMULUS", 0.1),
            traffic_floor=_env_float("RESOLVER_TRAFFIC_FLOOR", 1.0),
            observation_blend=_env_float("RESOLVER_HEALTH_OBS_BLEND", 0.0),
            critical_dwell_s=_env_float("RESOLVER_CRITICAL_DWELL_S", 5.0),
            tick_period_s=float(tick) if tick else None,
            seed=_env_optional_int("RESOLVER_HEALTH_SEED"),
        )


class DiffusionConfig(BaseModel):
    h_ref: float = Field(0.8, gt=0.0, le=1.0)
    gamma: float = Field(0.2, ge=0.0)
    mu: float = Field(0.05, ge=0.0)
    beta: float = Field(0.05, ge=0.0)
    stimulus_amplitude: float = Field(0.05, ge=0.0)
    staleness_timeout_s: float = Field(10.0, gt=0.0)
    seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> "DiffusionConfig":
        return cls(
            h_ref=_env_float("RESOLVER_HEALTH_H_REF", 0.8),
            gamma=_env_float("RESOLVER_DIFFUSION_GAMMA", 0.2),
            mu=_env_float("RESOLVER_DIFFUSION_MU", 0.05),
            beta=_env_float("RESOLVER_DIFFUSION_BETA", 0.05),
            stimulus_amplitude=_env_float("RESOLVER_DIFFUSION_STIMULUS", 0.05),
            staleness_timeout_s=_env_float("RESOLVER_STALENESS_TIMEOUT_S", 10.0),
            seed=_env_optional_int("RESOLVER_DIFFUSION_SEED"),
        )


class NodeCalibration(BaseModel):
    """Per-node calibration artifact. Built once, versioned, never regenerated at runtime."""

    node_id: int
    version: str = "1"
    channel_schema: ChannelSchema = Field(default_factory=ChannelSchema)
    projection: List[List[float]]
    health_weights: List[float]
    packet_size: int = Field(64, gt=0)
    sample_rate_hz: float = Field(250.0, gt=0.0)

    @model_validator(mode="after")
    def _check_shapes(self) -> "NodeCalibration":
        rows = {len(row) for row in self.projection}
        if not self.projection or len(rows) != 1:
            raise ValueError("projection must be a non-empty rectangular matrix")
        d = rows.pop()
        if d != self.channel_schema.d:
            raise ValueError(f"projection has {d} columns, schema defines {self.channel_schema.d} channels")
        if len(self.health_weights) != len(self.projection):
            raise ValueError(
                f"health_weights has length {len(self.health_weights)}, state dimension is {len(self.projection)}"
            )
        return self

    @property
    def n(self) -> int:
        return len(self.projection)

    @property
    def d(self) -> int:
        return self.channel_schema.d

    @property
    def projection_matrix(self) -> np.ndarray:
        return np.asarray(self.projection, dtype=float)

    @property
    def weight_vector(self) -> np.ndarray:
        return np.asarray(self.health_weights, dtype=float)

    @property
    def packet_duration_s(self) -> float:
        return self.packet_size / self.sample_rate_hz

    @classmethod
    def random(
        cls,
        node_id: int,
        n: int = 32,
        schema: Optional[ChannelSchema] = None,
        seed: int = 0,
        version: str = "1",
    ) -> "NodeCalibration":
        """Seeded calibration for demos and tests. Production calibrations come from the config layer."""
        schema = schema or ChannelSchema()
        rng = np.random.default_rng(seed)
        return cls(
            node_id=node_id,
            version=version,
            channel_schema=schema,
            projection=rng.standard_normal((n, schema.d)).tolist(),
            health_weights=rng.standard_normal(n).tolist(),
            packet_size=_env_int("RESOLVER_PACKET_SIZE", 64),
            sample_rate_hz=_env_float("RESOLVER_SAMPLE_RATE_HZ", 250.0),
        )
