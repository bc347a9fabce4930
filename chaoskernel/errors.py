"""Exception types raised by the chaoskernel evolution kernel."""

from typing import Any, Optional, Tuple


class ChaosKernelError(Exception):
    """Base class for all kernel errors."""


class DimensionError(ChaosKernelError, ValueError):
    """State vector is empty or does not match the rule's output size."""


class ConfigError(ChaosKernelError, ValueError):
    """Integration configuration (or recorder arguments) missing or invalid."""


class UnknownParameterError(ChaosKernelError, KeyError):
    """A parameter key does not exist in the parameter container."""

    def __init__(self, key: Any):
        super().__init__(key)
        self.key = key

    def __str__(self) -> str:
        return f"Unknown parameter: {self.key!r}"


class StepError(ChaosKernelError, RuntimeError):
    """Failure while advancing a system.

    Attributes:
        time: System time at which the failure occurred (last valid time).
        last_index: Index of the last successfully recorded sample when the
            error surfaced from a trajectory recording, else None.
        last_time: Time stamp of that sample, else None.
        partial: ``(StateSpaceSet, times)`` prefix recorded before the
            failure, or None if no sample had been recorded.
    """

    def __init__(self, message: str, time: Optional[float] = None):
        super().__init__(message)
        self.time = time
        self.last_index: Optional[int] = None
        self.last_time: Optional[float] = None
        self.partial: Optional[Tuple[Any, Any]] = None

    def annotate(self, last_index: Optional[int], last_time: Optional[float], partial=None) -> "StepError":
        """Attach trajectory context and return self for re-raising."""
        self.last_index = last_index
        self.last_time = last_time
        self.partial = partial
        return self


class DivergedError(StepError):
    """The rule produced a non-finite value; the handle is terminal."""


class IntegrationFailure(StepError):
    """The integration backend could not maintain the requested tolerance."""
