"""Dynamical system handles: one concrete instance of a map or a flow.

A handle owns its state vector, parameter container and current time, and
``step`` is the only way to mutate them. Handles are not safe for
concurrent mutation; parallel work should use one handle per unit of work
(see ``DynamicalSystem.reconstruct``).
"""

import copy
import logging
from typing import Any, Dict, Hashable, List, Optional, Sequence

import numpy as np
from scipy.integrate import OdeSolver

from chaoskernel.config import IntegratorConfig
from chaoskernel.errors import (
    ConfigError,
    DimensionError,
    DivergedError,
    IntegrationFailure,
    UnknownParameterError,
)
from chaoskernel.integrators import WatchedRhs, fixed_step, make_solver, solver_step
from chaoskernel.rules import EvolutionRule, TimeKind

logger = logging.getLogger(__name__)


def _as_state_vector(u0: Any) -> np.ndarray:
    """Copy ``u0`` into a fresh 1-D float array, rejecting empty input."""
    try:
        u = np.array(u0, dtype=float)
    except (TypeError, ValueError) as e:
        raise DimensionError(f"Initial state is not a numeric vector: {e}") from e
    if u.ndim != 1:
        raise DimensionError(f"Initial state must be 1-D, got shape {u.shape}")
    if u.size == 0:
        raise DimensionError("Initial state must not be empty")
    return u


def _copy_params(params: Any) -> Any:
    if isinstance(params, tuple):
        return list(params)
    return copy.deepcopy(params)


class DynamicalSystem:
    """Base handle shared by discrete maps and continuous flows.

    Args:
        rule: The evolution rule.
        u0: Initial state; copied.
        params: Parameter container (dict, sequence, array or an object with
            attributes); deep-copied and passed to the rule on every call.
        t0: Initial time.
        param_names: Optional names for the entries of an ordered parameter
            container, resolved to indices once here.

    Construction evaluates the rule once at ``(u0, params, t0)`` to check its
    output shape. Rules with side effects (counters, logs) see that call.
    """

    time_kind: TimeKind

    def __init__(
        self,
        rule: EvolutionRule,
        u0: Any,
        params: Any = None,
        t0: float = 0.0,
        param_names: Optional[Sequence[str]] = None,
    ):
        self._rule = rule
        self._u = _as_state_vector(u0)
        self._u0 = self._u.copy()
        self._p = _copy_params(params)
        self._t = t0
        self._t0 = t0
        self._diverged = False
        self._param_names = list(param_names) if param_names is not None else None
        self._param_index = self._build_param_index(self._param_names)
        self._check_rule_arity()

    # -- construction helpers -------------------------------------------------

    def _build_param_index(self, names: Optional[List[str]]) -> Dict[str, int]:
        if names is None:
            return {}
        if isinstance(self._p, dict) or not hasattr(self._p, "__len__"):
            raise ConfigError("param_names only applies to ordered parameter containers")
        if len(names) != len(self._p):
            raise ConfigError(
                f"param_names has {len(names)} entries but the parameter container has {len(self._p)}"
            )
        return {name: i for i, name in enumerate(names)}

    def _check_rule_arity(self) -> None:
        """Evaluate the rule once at the initial point and check its output size."""
        try:
            out = self._rule.evaluate(self._u.copy(), self._p, self._t)
        except (ValueError, IndexError) as e:
            raise DimensionError(
                f"Rule {self._rule.name!r} cannot be evaluated on a state of dimension {self.dimension}: {e}"
            ) from e
        if np.shape(out) != self._u.shape:
            raise DimensionError(
                f"Rule {self._rule.name!r} returned shape {np.shape(out)} for a state of shape {self._u.shape}"
            )

    # -- read-only views --------------------------------------------------------

    @property
    def rule(self) -> EvolutionRule:
        return self._rule

    @property
    def dimension(self) -> int:
        return self._u.size

    @property
    def is_diverged(self) -> bool:
        return self._diverged

    @property
    def parameters(self) -> Any:
        """A copy of the parameter container."""
        return copy.deepcopy(self._p)

    @property
    def param_names(self) -> Optional[List[str]]:
        return list(self._param_names) if self._param_names is not None else None

    def current_state(self) -> np.ndarray:
        return self._u.copy()

    def current_time(self) -> float:
        return self._t

    def initial_state(self) -> np.ndarray:
        return self._u0.copy()

    # -- parameters -------------------------------------------------------------

    def _resolve_key(self, key: Hashable) -> Hashable:
        """Map ``key`` onto the container's own addressing, or raise."""
        p = self._p
        if isinstance(p, dict):
            if key in p:
                return key
            raise UnknownParameterError(key)
        if isinstance(p, (list, np.ndarray)):
            if isinstance(key, str):
                if key in self._param_index:
                    return self._param_index[key]
                raise UnknownParameterError(key)
            if isinstance(key, (int, np.integer)) and not isinstance(key, bool) and -len(p) <= key < len(p):
                return int(key)
            raise UnknownParameterError(key)
        if p is not None and isinstance(key, str) and hasattr(p, key) and not key.startswith("_"):
            return key
        raise UnknownParameterError(key)

    def get_parameter(self, key: Hashable) -> Any:
        resolved = self._resolve_key(key)
        if isinstance(self._p, (dict, list, np.ndarray)):
            return copy.deepcopy(self._p[resolved])
        return copy.deepcopy(getattr(self._p, resolved))

    def set_parameter(self, key: Hashable, value: Any) -> None:
        """Replace one field of the parameter container.

        State and time are left untouched.

        Raises:
            UnknownParameterError: ``key`` does not exist in the container.
        """
        resolved = self._resolve_key(key)
        if isinstance(self._p, (dict, list, np.ndarray)):
            self._p[resolved] = value
        else:
            setattr(self._p, resolved, value)
        logger.debug("Set parameter %r=%r on %s", key, value, self._rule.name)
        self._on_parameter_change()

    def _on_parameter_change(self) -> None:
        pass

    # -- stepping ---------------------------------------------------------------

    def _ensure_live(self) -> None:
        if self._diverged:
            raise DivergedError(
                f"System {self._rule.name!r} diverged at t={self._t}; reconstruct it to continue",
                time=self._t,
            )

    def _mark_diverged(self, err: DivergedError) -> None:
        self._diverged = True
        logger.info("System %r diverged at t=%s: %s", self._rule.name, self._t, err)

    def _step_once(self) -> None:
        raise NotImplementedError

    def _step_to(self, t_target: float) -> None:
        raise NotImplementedError

    def step(self, n: int = 1, until: Optional[float] = None) -> "DynamicalSystem":
        """Advance the system.

        Args:
            n: Number of single steps (iterations for maps, solver steps for
                flows). Ignored when ``until`` is given.
            until: Absolute stop time; steps are repeated until the current
                time reaches it.

        Returns:
            self, to allow chaining.

        Raises:
            DivergedError: The rule produced a non-finite value now or earlier.
            IntegrationFailure: The integration backend failed (flows only).
        """
        if until is not None:
            return self.step_until(until)
        if n < 0:
            raise ValueError(f"n must be non-negative, got {n}")
        self._ensure_live()
        for _ in range(int(n)):
            self._step_once()
        return self

    def step_until(self, t_target: float) -> "DynamicalSystem":
        """Repeat single steps until the current time is at least ``t_target``."""
        self._ensure_live()
        if self._t < t_target:
            self._step_to(t_target)
        return self

    # -- reconstruction -----------------------------------------------------------

    def _constructor_kwargs(self) -> Dict[str, Any]:
        return {"param_names": self._param_names}

    def reconstruct(self, u0: Any = None, t0: Optional[float] = None, params: Any = None) -> "DynamicalSystem":
        """Build an independent, fresh handle from the same rule.

        Args:
            u0: Initial state; defaults to this handle's initial state.
            t0: Initial time; defaults to this handle's initial time.
            params: Parameter container; defaults to a copy of the current one.
        """
        return type(self)(
            self._rule,
            self._u0 if u0 is None else u0,
            self._p if params is None else params,
            t0=self._t0 if t0 is None else t0,
            **self._constructor_kwargs(),
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(rule={self._rule.name!r}, dimension={self.dimension}, "
            f"t={self._t}, state={self._u.tolist()}, diverged={self._diverged})"
        )


class DiscreteDynamicalSystem(DynamicalSystem):
    """Iterated map ``u[n+1] = f(u[n], p, n)``; time counts iterations."""

    time_kind = TimeKind.DISCRETE

    def __init__(
        self,
        rule: Any,
        u0: Any,
        params: Any = None,
        t0: int = 0,
        param_names: Optional[Sequence[str]] = None,
        inplace: Optional[bool] = None,
    ):
        rule = EvolutionRule.build(rule, TimeKind.DISCRETE, inplace=inplace)
        if not rule.is_discrete:
            raise ConfigError(
                f"Rule {rule.name!r} is continuous-time; use ContinuousDynamicalSystem with an IntegratorConfig"
            )
        super().__init__(rule, u0, params, t0=int(t0), param_names=param_names)

    def _step_once(self) -> None:
        u_new = self._rule.evaluate(self._u.copy(), self._p, self._t)
        if not np.all(np.isfinite(u_new)):
            err = DivergedError(
                f"Map {self._rule.name!r} produced a non-finite state at n={self._t}", time=self._t,
            )
            self._mark_diverged(err)
            raise err
        self._u = u_new
        self._t += 1

    def _step_to(self, t_target: float) -> None:
        while self._t < t_target:
            self._step_once()


class ContinuousDynamicalSystem(DynamicalSystem):
    """Flow ``du/dt = f(u, p, t)`` advanced by the integration backend.

    Adaptive methods keep a scipy solver alive between steps so that its
    step-size history carries over; the solver is rebuilt whenever the
    stop time or a parameter changes.
    """

    time_kind = TimeKind.CONTINUOUS

    def __init__(
        self,
        rule: Any,
        u0: Any,
        params: Any = None,
        config: Optional[IntegratorConfig] = None,
        t0: float = 0.0,
        param_names: Optional[Sequence[str]] = None,
        inplace: Optional[bool] = None,
    ):
        rule = EvolutionRule.build(rule, TimeKind.CONTINUOUS, inplace=inplace)
        if rule.is_discrete:
            raise ConfigError(f"Rule {rule.name!r} is discrete-time; use DiscreteDynamicalSystem")
        if config is None:
            raise ConfigError(f"Continuous rule {rule.name!r} requires an IntegratorConfig")
        if not isinstance(config, IntegratorConfig):
            raise ConfigError(f"config must be an IntegratorConfig, got {type(config).__name__}")
        self._config = copy.deepcopy(config).check()
        self._solver: Optional[OdeSolver] = None
        self._last_h: Optional[float] = None
        super().__init__(rule, u0, params, t0=float(t0), param_names=param_names)
        self._rhs = WatchedRhs(self._rule.as_rhs(self._p))

    @property
    def config(self) -> IntegratorConfig:
        return copy.deepcopy(self._config)

    def _constructor_kwargs(self) -> Dict[str, Any]:
        return {"config": self._config, "param_names": self._param_names}

    def _on_parameter_change(self) -> None:
        self._solver = None

    def _advance(self, t_bound: float) -> None:
        """One backend step toward ``t_bound``, committing the result."""
        try:
            if self._config.fixed_step:
                u_new, t_new = fixed_step(self._rhs, self._t, self._u, self._config, t_bound=t_bound)
            else:
                solver = self._solver
                if solver is None or solver.t_bound != t_bound or solver.status != "running":
                    solver = make_solver(
                        self._rhs, self._t, self._u, self._config,
                        t_bound=t_bound, first_step=self._last_h,
                    )
                    self._solver = solver
                u_new, t_new = solver_step(solver, self._rhs, self._config)
                # a step clipped onto the bound says nothing about the natural step size
                if t_new != t_bound:
                    self._last_h = t_new - self._t
        except DivergedError as err:
            self._solver = None
            self._mark_diverged(err)
            raise
        except IntegrationFailure:
            self._solver = None
            raise
        self._u = u_new
        self._t = t_new

    def _step_once(self) -> None:
        self._advance(np.inf)

    def _step_to(self, t_target: float) -> None:
        while self._t < t_target:
            self._advance(float(t_target))


def construct(
    rule: EvolutionRule,
    u0: Any,
    params: Any = None,
    config: Optional[IntegratorConfig] = None,
    t0: float = 0.0,
    param_names: Optional[Sequence[str]] = None,
) -> DynamicalSystem:
    """Build the handle matching ``rule.time_kind``.

    The rule is called once on a copy of ``u0`` before the handle is returned.

    Raises:
        DimensionError: ``u0`` is empty or does not fit the rule.
        ConfigError: A config was given for a discrete rule, or a continuous
            rule was given no (or an invalid) config.
    """
    if not isinstance(rule, EvolutionRule):
        raise TypeError(
            "construct() needs an EvolutionRule; wrap the function with discrete_rule or continuous_rule"
        )
    if rule.is_discrete:
        if config is not None:
            raise ConfigError(f"Discrete rule {rule.name!r} does not take an IntegratorConfig")
        return DiscreteDynamicalSystem(rule, u0, params, t0=int(t0), param_names=param_names)
    return ContinuousDynamicalSystem(rule, u0, params, config=config, t0=t0, param_names=param_names)
