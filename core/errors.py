from __future__ import annotations


class ResolverError(ValueError):
    """Base class for recoverable input errors raised by the resolver core."""


class MalformedSampleError(ResolverError):
    def __init__(self, expected: int, actual: int, timestamp: float | None = None, reason: str | None = None):
        self.expected = expected
        self.actual = actual
        self.timestamp = timestamp
        super().__init__(reason or f"Sample has {actual} channels, schema expects {expected}")


class InvalidMaskError(ResolverError):
    def __init__(self, message: str, timestamp: float | None = None):
        self.timestamp = timestamp
        super().__init__(message)


class NetworkTopologyError(ResolverError):
    pass


class CalibrationError(ResolverError):
    pass
