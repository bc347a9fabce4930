"""Integration configuration for continuous-time systems."""

import copy
import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, List, Optional

import numpy as np
import yaml

from chaoskernel.errors import ConfigError

logger = logging.getLogger(__name__)

ADAPTIVE_METHODS = ("RK45", "RK23", "DOP853", "Radau", "BDF")
FIXED_STEP_METHODS = ("RK4", "Euler")


@dataclass
class IntegratorConfig:
    """Settings handed to the integration backend.

    Attributes:
        method: Name of a scipy ``OdeSolver`` (adaptive) or one of the
            fixed-step schemes ``RK4`` / ``Euler``.
        rtol: Relative error tolerance (adaptive methods).
        atol: Absolute error tolerance (adaptive methods).
        dt: Step size for fixed-step methods. Ignored by adaptive methods.
        first_step: Initial step size for adaptive methods. None lets the
            solver choose.
        max_step: Upper bound on adaptive step size.
        min_step: An adaptive step smaller than this is treated as
            step-size underflow and raises ``IntegrationFailure``.
    """

    method: str = "RK45"
    rtol: float = 1e-6
    atol: float = 1e-6
    dt: Optional[float] = None
    first_step: Optional[float] = None
    max_step: float = np.inf
    min_step: float = 1e-12

    @property
    def fixed_step(self) -> bool:
        return self.method in FIXED_STEP_METHODS

    def validate(self) -> List[str]:
        """Check method name, tolerances and step sizes.

        Returns:
            List of validation error strings (empty if valid).
        """
        errors: List[str] = []
        if self.method not in ADAPTIVE_METHODS + FIXED_STEP_METHODS:
            errors.append(
                f"unknown method {self.method!r}; expected one of "
                f"{list(ADAPTIVE_METHODS + FIXED_STEP_METHODS)}"
            )
        if self.fixed_step:
            if self.dt is None:
                errors.append(f"dt is required for fixed-step method {self.method}")
            elif not np.isfinite(self.dt) or self.dt <= 0:
                errors.append(f"dt must be a positive finite number, got {self.dt}")
        if not self.rtol > 0:
            errors.append(f"rtol must be positive, got {self.rtol}")
        if not self.atol > 0:
            errors.append(f"atol must be positive, got {self.atol}")
        if not self.max_step > 0:
            errors.append(f"max_step must be positive, got {self.max_step}")
        if self.min_step < 0:
            errors.append(f"min_step must be non-negative, got {self.min_step}")
        if self.first_step is not None and not self.first_step > 0:
            errors.append(f"first_step must be positive, got {self.first_step}")
        return errors

    def check(self) -> "IntegratorConfig":
        """Raise ConfigError if the config is invalid, else return self."""
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a YAML/JSON-serializable dict."""
        data = asdict(self)
        if not np.isfinite(data["max_step"]):
            data["max_step"] = None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IntegratorConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"unknown integrator config keys: {unknown}")
        values = dict(data)
        if values.get("max_step") is None:
            values.pop("max_step", None)
        for key in ("rtol", "atol", "dt", "first_step", "max_step", "min_step"):
            if values.get(key) is not None:
                values[key] = float(values[key])
        return cls(**values)


DEFAULT_INTEGRATOR_CONFIG: Dict[str, Any] = IntegratorConfig().to_dict()


def _deep_update(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """Merge nested dictionaries recursively."""
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_update(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_integrator_config(config_path: Optional[str]) -> IntegratorConfig:
    """Load YAML integrator settings and merge onto defaults.

    The file may either hold the settings at the top level or under an
    ``integrator`` key.
    """
    if config_path is None:
        return IntegratorConfig()

    with open(config_path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ConfigError("Integrator config must be a YAML mapping/object")

    section = loaded.get("integrator", loaded)
    if not isinstance(section, dict):
        raise ConfigError("'integrator' section must be a mapping")

    logger.debug("Loaded integrator config from %s: %s", config_path, section)
    return IntegratorConfig.from_dict(_deep_update(DEFAULT_INTEGRATOR_CONFIG, section)).check()
