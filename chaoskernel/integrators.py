"""Numerical integration backend for continuous-time systems.

Adaptive methods are scipy ``OdeSolver`` classes driven one step at a
time; the fixed-step classic Runge-Kutta and forward Euler schemes are
written out here. Every routine advances from ``t`` toward a stop time and
never past it.
"""

import logging
from typing import Any, Callable, Optional, Tuple

import numpy as np
from scipy.integrate import BDF, DOP853, RK23, RK45, OdeSolver, Radau

from chaoskernel.config import IntegratorConfig
from chaoskernel.errors import DivergedError, IntegrationFailure
from chaoskernel.rules import EvolutionRule

logger = logging.getLogger(__name__)

Rhs = Callable[[float, np.ndarray], np.ndarray]

_SOLVERS = {
    "RK45": RK45,
    "RK23": RK23,
    "DOP853": DOP853,
    "Radau": Radau,
    "BDF": BDF,
}


# ---------------------------------------------------------------------------
# Fixed-step schemes
# ---------------------------------------------------------------------------

def euler_step(rhs: Rhs, t: float, y: np.ndarray, h: float) -> np.ndarray:
    """Forward Euler step."""
    return y + h * rhs(t, y)


def rk4_step(rhs: Rhs, t: float, y: np.ndarray, h: float) -> np.ndarray:
    """Classic fourth-order Runge-Kutta step."""
    k1 = rhs(t, y)
    k2 = rhs(t + 0.5 * h, y + 0.5 * h * k1)
    k3 = rhs(t + 0.5 * h, y + 0.5 * h * k2)
    k4 = rhs(t + h, y + h * k3)
    return y + (h / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)


_FIXED_STEPPERS = {
    "RK4": rk4_step,
    "Euler": euler_step,
}


def fixed_step(
    rhs: Rhs,
    t: float,
    y: np.ndarray,
    config: IntegratorConfig,
    t_bound: float = np.inf,
) -> Tuple[np.ndarray, float]:
    """Take one fixed-size step, clipped so that it lands exactly on ``t_bound``.

    Returns:
        Tuple of (new_state, new_time).
    """
    stepper = _FIXED_STEPPERS[config.method]
    h = config.dt
    # snap onto the bound when within rounding of it
    if np.isfinite(t_bound) and t + h >= t_bound - 1e-12 * max(1.0, abs(t_bound)):
        h = t_bound - t
        t_new = t_bound
    else:
        t_new = t + h
    y_new = stepper(rhs, t, y, h)
    if not np.all(np.isfinite(y_new)):
        raise DivergedError(
            f"Non-finite state produced by {config.method} step at t={t:.6g}", time=t,
        )
    return y_new, t_new


# ---------------------------------------------------------------------------
# Adaptive scipy solvers
# ---------------------------------------------------------------------------

class WatchedRhs:
    """Right-hand side ``f(t, y)`` recording the first time it returned a non-finite value.

    Evaluations inside rejected trial steps count too, since scipy solvers
    answer a NaN derivative by shrinking the step. The record is reset
    before every solver construction and every solver step.
    """

    def __init__(self, rhs: Rhs):
        self.rhs = rhs
        self.nonfinite_at: Optional[float] = None

    def reset(self) -> None:
        self.nonfinite_at = None

    def __call__(self, t: float, y: np.ndarray) -> np.ndarray:
        dy = self.rhs(t, y)
        if self.nonfinite_at is None and not np.all(np.isfinite(dy)):
            self.nonfinite_at = float(t)
        return dy


def _failure(rhs: WatchedRhs, y: np.ndarray, config: IntegratorConfig, t_before: float, reason: str):
    """DivergedError if the rule went non-finite during the attempt, else IntegrationFailure."""
    if rhs.nonfinite_at is not None:
        return DivergedError(
            f"Non-finite derivative at t={rhs.nonfinite_at:.6g} during {config.method} step "
            f"from t={t_before:.6g}: {reason}",
            time=t_before,
        )
    if not np.all(np.isfinite(y)):
        return DivergedError(
            f"Non-finite state in {config.method} step from t={t_before:.6g}: {reason}", time=t_before,
        )
    return IntegrationFailure(f"{config.method} failed at t={t_before:.6g}: {reason}", time=t_before)


def make_solver(
    rhs: WatchedRhs,
    t0: float,
    y0: np.ndarray,
    config: IntegratorConfig,
    t_bound: float = np.inf,
    first_step: Optional[float] = None,
) -> OdeSolver:
    """Instantiate the scipy solver named by ``config.method``.

    Args:
        rhs: Watched right-hand side ``f(t, y)``.
        t0: Start time.
        y0: Start state (copied by the solver).
        config: Integration settings.
        t_bound: Stop time; the solver never steps past it.
        first_step: Step size carried over from a previous solver, used in
            preference to ``config.first_step``.

    Raises:
        DivergedError: The derivative is non-finite at the start point.
        IntegrationFailure: scipy rejected the start point for another reason.
    """
    solver_cls = _SOLVERS[config.method]
    logger.debug("Building %s solver at t=%.6g (t_bound=%s)", config.method, t0, t_bound)
    h0 = first_step if first_step is not None else config.first_step
    if h0 is not None and np.isfinite(t_bound):
        h0 = min(h0, t_bound - t0)
    y0 = np.array(y0, dtype=float)
    rhs.reset()
    try:
        solver = solver_cls(
            rhs,
            t0,
            y0,
            t_bound,
            rtol=config.rtol,
            atol=config.atol,
            max_step=config.max_step,
            first_step=h0,
        )
    except (ValueError, np.linalg.LinAlgError) as e:
        raise _failure(rhs, y0, config, t0, str(e)) from e
    # a non-finite trial evaluation while picking the first step is left to step control
    if rhs.nonfinite_at is not None and not np.all(np.isfinite(rhs.rhs(t0, y0))):
        raise DivergedError(f"Non-finite derivative at the start point t={t0:.6g}", time=t0)
    return solver


def solver_step(solver: OdeSolver, rhs: WatchedRhs, config: IntegratorConfig) -> Tuple[np.ndarray, float]:
    """Advance a scipy solver by one accepted step.

    Args:
        solver: Solver built by ``make_solver`` around ``rhs``.
        rhs: The watched right-hand side the solver evaluates.
        config: Integration settings.

    Raises:
        IntegrationFailure: The solver rejected its step down to step-size
            underflow, or the accepted step was below ``config.min_step``.
        DivergedError: Any of those failures (or a scipy error) after the
            rule produced a non-finite derivative, or a non-finite state.

    Returns:
        Tuple of (new_state, new_time) as fresh values.
    """
    t_before = solver.t
    rhs.reset()
    try:
        message = solver.step()
    except (ValueError, np.linalg.LinAlgError) as e:
        raise _failure(rhs, solver.y, config, t_before, str(e)) from e
    if solver.status == "failed":
        raise _failure(rhs, solver.y, config, t_before, message)

    if not np.all(np.isfinite(solver.y)):
        raise DivergedError(
            f"Non-finite state produced by {config.method} at t={solver.t:.6g}", time=t_before,
        )

    h = solver.t - t_before
    if h < config.min_step and solver.t != solver.t_bound:
        raise _failure(
            rhs, solver.y, config, t_before,
            f"step size {h:.3g} fell below min_step={config.min_step:.3g}",
        )
    return solver.y.copy(), float(solver.t)


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def integrate(
    rule: EvolutionRule,
    state: np.ndarray,
    params: Any,
    t_from: float,
    t_to: float,
    config: IntegratorConfig,
) -> Tuple[np.ndarray, float]:
    """Take a single integration step from ``t_from`` toward ``t_to``.

    The achieved time is solver dependent for adaptive methods and never
    exceeds ``t_to``.

    Args:
        rule: Continuous-time evolution rule.
        state: State at ``t_from`` (not modified).
        params: Parameter container handed to the rule.
        t_from: Start time.
        t_to: Stop time, must be greater than ``t_from``.
        config: Integration settings.

    Returns:
        Tuple of (new_state, achieved_time).
    """
    if not t_to > t_from:
        raise ValueError(f"t_to ({t_to}) must be greater than t_from ({t_from})")
    rhs = WatchedRhs(rule.as_rhs(params))
    if config.fixed_step:
        return fixed_step(rhs, t_from, np.asarray(state, dtype=float), config, t_bound=t_to)
    solver = make_solver(rhs, t_from, state, config, t_bound=t_to)
    return solver_step(solver, rhs, config)
