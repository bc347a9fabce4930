"""Predefined dynamical systems.

Provides the rules, default parameters and default initial conditions of
the classic example systems (Henon, logistic, standard and Ikeda maps;
Lorenz-63, Lorenz-96, Roessler, Van der Pol and Duffing flows), plus
constructors returning ready-to-step handles.
"""

import math
from typing import Any, Dict, Optional, Tuple

import numpy as np

from chaoskernel.config import IntegratorConfig
from chaoskernel.rules import EvolutionRule, continuous_rule, discrete_rule
from chaoskernel.system import ContinuousDynamicalSystem, DiscreteDynamicalSystem, DynamicalSystem


# ---------------------------------------------------------------------------
# Vector fields: f(u, p, t) -> du/dt
# ---------------------------------------------------------------------------

@continuous_rule(name="lorenz63")
def _lorenz63(u: np.ndarray, p: Dict[str, float], t: float) -> np.ndarray:
    """Lorenz 1963 attractor."""
    x, y, z = u
    return np.array([p["sigma"] * (y - x), x * (p["rho"] - z) - y, x * y - p["beta"] * z])


@continuous_rule(name="rossler")
def _rossler(u: np.ndarray, p: Dict[str, float], t: float) -> np.ndarray:
    """Roessler attractor."""
    x, y, z = u
    return np.array([-y - z, x + p["a"] * y, p["b"] + z * (x - p["c"])])


@continuous_rule(name="lorenz96")
def _lorenz96(du: np.ndarray, u: np.ndarray, p: Dict[str, float], t: float) -> None:
    """Lorenz 1996 model; the number of sites is the state dimension (>= 4)."""
    du[:] = (np.roll(u, -1) - np.roll(u, 2)) * np.roll(u, 1) - u + p["F"]


@continuous_rule(name="van_der_pol")
def _van_der_pol(u: np.ndarray, p: Dict[str, float], t: float) -> np.ndarray:
    """Van der Pol oscillator, optionally forced with F*sin(omega*t)."""
    x, v = u
    return np.array([v, p["mu"] * (1.0 - x ** 2) * v - x + p["F"] * np.sin(p["omega"] * t)])


@continuous_rule(name="duffing")
def _duffing(u: np.ndarray, p: Dict[str, float], t: float) -> np.ndarray:
    """Forced Duffing oscillator."""
    x, v = u
    return np.array([v, -p["delta"] * v - p["alpha"] * x - p["beta"] * x ** 3 + p["gamma"] * np.cos(p["omega"] * t)])


# ---------------------------------------------------------------------------
# Maps: f(u, p, n) -> u[n+1]
# ---------------------------------------------------------------------------

@discrete_rule(name="henon")
def _henon(u: np.ndarray, p: Dict[str, float], n: int) -> np.ndarray:
    """Henon map."""
    x, y = u
    return np.array([1.0 - p["a"] * x ** 2 + y, p["b"] * x])


@discrete_rule(name="logistic")
def _logistic(u: np.ndarray, p: Dict[str, float], n: int) -> np.ndarray:
    """Logistic map x_{n+1} = r*x_n*(1-x_n)."""
    x = u[0]
    return np.array([p["r"] * x * (1.0 - x)])


@discrete_rule(name="standard_map")
def _standard_map(u: np.ndarray, p: Dict[str, float], n: int) -> np.ndarray:
    """Chirikov standard map."""
    theta, mom = u
    mom_new = mom + p["K"] * np.sin(theta)
    return np.array([(theta + mom_new) % (2.0 * np.pi), mom_new])


@discrete_rule(name="ikeda")
def _ikeda(u: np.ndarray, p: Dict[str, float], n: int) -> np.ndarray:
    """Ikeda map."""
    x, y = u
    tn = 0.4 - 6.0 / (1.0 + x ** 2 + y ** 2)
    ct, st = np.cos(tn), np.sin(tn)
    return np.array([1.0 + p["u"] * (x * ct - y * st), p["u"] * (x * st + y * ct)])


# ---------------------------------------------------------------------------
# Registry and defaults
# ---------------------------------------------------------------------------

SYSTEM_REGISTRY: Dict[str, EvolutionRule] = {
    "lorenz63": _lorenz63,
    "rossler": _rossler,
    "lorenz96": _lorenz96,
    "van_der_pol": _van_der_pol,
    "duffing": _duffing,
    "henon": _henon,
    "logistic": _logistic,
    "standard_map": _standard_map,
    "ikeda": _ikeda,
}

DEFAULT_PARAMS: Dict[str, Dict[str, float]] = {
    "lorenz63": {"sigma": 10.0, "rho": 28.0, "beta": 8.0 / 3.0},
    "rossler": {"a": 0.2, "b": 0.2, "c": 5.7},
    "lorenz96": {"F": 8.0},
    "van_der_pol": {"mu": 1.0, "F": 0.0, "omega": 1.0},
    "duffing": {"delta": 0.3, "alpha": -1.0, "beta": 1.0, "gamma": 0.5, "omega": 1.2},
    "henon": {"a": 1.4, "b": 0.3},
    "logistic": {"r": 4.0},
    "standard_map": {"K": 0.97},
    "ikeda": {"u": 0.9},
}

_DEFAULT_ICS: Dict[str, np.ndarray] = {
    "lorenz63": np.array([1.0, 1.0, 1.0]),
    "rossler": np.array([1.0, 1.0, 0.0]),
    "lorenz96": np.array([0.01, 0.0, 0.0, 0.0, 0.0]),
    "van_der_pol": np.array([2.0, 0.0]),
    "duffing": np.array([0.1, 0.0]),
    "henon": np.array([0.0, 0.0]),
    "logistic": np.array([0.1]),
    "standard_map": np.array([0.1, 0.0]),
    "ikeda": np.array([0.1, 0.1]),
}


def default_integrator_config() -> IntegratorConfig:
    """Tight-tolerance high-order config used for the predefined flows."""
    return IntegratorConfig(method="DOP853", rtol=1e-9, atol=1e-9)


def get_system_type(system_id: str) -> str:
    """Return 'ode' or 'map' for a system."""
    if system_id not in SYSTEM_REGISTRY:
        raise ValueError(f"Unknown system: {system_id}")
    return "map" if SYSTEM_REGISTRY[system_id].is_discrete else "ode"


def get_default_ic(system_id: str) -> np.ndarray:
    """Return default initial conditions for a system (a fresh copy)."""
    if system_id not in _DEFAULT_ICS:
        raise ValueError(f"Unknown system: {system_id}")
    return _DEFAULT_ICS[system_id].copy()


def make_system(
    system_id: str,
    u0: Optional[Any] = None,
    params: Optional[Dict[str, float]] = None,
    config: Optional[IntegratorConfig] = None,
) -> DynamicalSystem:
    """Build a handle for a registered system.

    Args:
        system_id: Key of ``SYSTEM_REGISTRY`` (e.g. 'henon', 'lorenz63').
        u0: Initial state. Defaults to ``get_default_ic(system_id)``.
        params: Parameter overrides merged onto ``DEFAULT_PARAMS``. Unknown
            names are rejected.
        config: Integrator settings for flows; defaults to
            ``default_integrator_config()``. Must be None for maps.

    Returns:
        A DiscreteDynamicalSystem or ContinuousDynamicalSystem.
    """
    rule = SYSTEM_REGISTRY.get(system_id)
    if rule is None:
        raise ValueError(f"Unknown system: {system_id}")

    merged = dict(DEFAULT_PARAMS[system_id])
    for key, value in (params or {}).items():
        if key not in merged:
            raise ValueError(f"Unknown parameter {key!r} for {system_id}; expected one of {sorted(merged)}")
        merged[key] = value

    if u0 is None:
        u0 = get_default_ic(system_id)

    if rule.is_discrete:
        return DiscreteDynamicalSystem(rule, u0, merged)
    return ContinuousDynamicalSystem(rule, u0, merged, config=config or default_integrator_config())


def henon(u0=None, a: float = 1.4, b: float = 0.3) -> DynamicalSystem:
    return make_system("henon", u0, {"a": a, "b": b})


def logistic(u0=None, r: float = 4.0) -> DynamicalSystem:
    return make_system("logistic", u0, {"r": r})


def lorenz63(u0=None, sigma: float = 10.0, rho: float = 28.0, beta: float = 8.0 / 3.0,
             config: Optional[IntegratorConfig] = None) -> DynamicalSystem:
    return make_system("lorenz63", u0, {"sigma": sigma, "rho": rho, "beta": beta}, config)


def lorenz96(N: int = 5, F: float = 8.0, u0=None, config: Optional[IntegratorConfig] = None) -> DynamicalSystem:
    """Lorenz-96 with ``N`` sites; the default state perturbs the first site by 0.01."""
    if u0 is None:
        if N < 4:
            raise ValueError(f"Lorenz-96 needs at least 4 sites, got {N}")
        u0 = np.zeros(N)
        u0[0] = 0.01
    return make_system("lorenz96", u0, {"F": F}, config)


def rossler(u0=None, a: float = 0.2, b: float = 0.2, c: float = 5.7,
            config: Optional[IntegratorConfig] = None) -> DynamicalSystem:
    return make_system("rossler", u0, {"a": a, "b": b, "c": c}, config)


def van_der_pol(u0=None, mu: float = 1.0, F: float = 0.0, omega: float = 1.0,
                config: Optional[IntegratorConfig] = None) -> DynamicalSystem:
    return make_system("van_der_pol", u0, {"mu": mu, "F": F, "omega": omega}, config)


def henon_fixed_points(a: float = 1.4, b: float = 0.3) -> Tuple[np.ndarray, np.ndarray]:
    """The two fixed points of the Henon map, solving a*x^2 + (1-b)*x - 1 = 0."""
    disc = (1.0 - b) ** 2 + 4.0 * a
    if a == 0 or disc < 0:
        raise ValueError(f"Henon map has no real fixed points for a={a}, b={b}")
    roots = [(-(1.0 - b) + s * math.sqrt(disc)) / (2.0 * a) for s in (1.0, -1.0)]
    return tuple(np.array([x, b * x]) for x in roots)
