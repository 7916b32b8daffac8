from __future__ import annotations

from typing import Optional, Protocol, Sequence

import numpy as np


class StimulusSource(Protocol):
    """Bounded maintenance stimulus. draw(size) returns values within [-amplitude, amplitude]."""

    amplitude: float

    def draw(self, size: int = 1) -> np.ndarray:
        ...


class UniformStimulus:
    """Uniform stimulus in [-amplitude, amplitude] from a private, seedable generator."""

    def __init__(self, amplitude: float = 0.1, seed: Optional[int] = None):
        if amplitude < 0:
            raise ValueError("amplitude must be non-negative")
        self.amplitude = amplitude
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def draw(self, size: int = 1) -> np.ndarray:
        return self.amplitude * (2.0 * self._rng.random(size) - 1.0)

    def reseed(self, seed: Optional[int] = None) -> None:
        self.seed = seed
        self._rng = np.random.default_rng(seed)


class PatternStimulus:
    """Deterministic cyclic test pattern, clipped to the configured amplitude."""

    def __init__(self, pattern: Sequence[float], amplitude: float = 0.1):
        if not pattern:
            raise ValueError("pattern must not be empty")
        self.amplitude = amplitude
        self.pattern = np.clip(np.asarray(pattern, dtype=float), -amplitude, amplitude)
        self._cursor = 0

    def draw(self, size: int = 1) -> np.ndarray:
        idx = (self._cursor + np.arange(size)) % self.pattern.size
        self._cursor = int((self._cursor + size) % self.pattern.size)
        return self.pattern[idx]


class ZeroStimulus:
    amplitude = 0.0

    def draw(self, size: int = 1) -> np.ndarray:
        return np.zeros(size)
