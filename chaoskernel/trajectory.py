"""Trajectory recording: drive a handle through a horizon and collect samples.

Divergence and integration failures are surfaced as the exception that stopped the run,
annotated with the index and time of the last recorded sample, plus the
consistent prefix recorded so far (``err.partial``). Nothing recorded is
ever corrupted; callers decide whether a prefix is usable.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from numbers import Integral, Real
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np

from chaoskernel.errors import ConfigError, StepError
from chaoskernel.statespace import StateSpaceSet
from chaoskernel.system import DynamicalSystem
from chaoskernel.rules import TimeKind

logger = logging.getLogger(__name__)

Trajectory = Tuple[StateSpaceSet, np.ndarray]


def _check_arguments(discrete: bool, horizon, transient, sampling, start=0.0) -> None:
    """Validate recorder arguments, raising ConfigError."""
    if discrete:
        for name, value in (("horizon", horizon), ("transient", transient), ("sampling", sampling)):
            if not isinstance(value, Integral) or isinstance(value, bool):
                raise ConfigError(f"{name} must be an integer for discrete systems, got {value!r}")
        if sampling < 1:
            raise ConfigError(f"sampling must be >= 1, got {sampling}")
    else:
        for name, value in (("horizon", horizon), ("transient", transient), ("sampling", sampling)):
            if not isinstance(value, Real) or not math.isfinite(value):
                raise ConfigError(f"{name} must be a finite number, got {value!r}")
        if not sampling > 0:
            raise ConfigError(f"sampling must be positive, got {sampling}")
        # consecutive sample times must stay distinct floats
        resolution = 2.0 * np.spacing(max(abs(start), abs(start + horizon)))
        if sampling < resolution:
            raise ConfigError(
                f"sampling={sampling!r} is below the time resolution {resolution:.3g} near t={start + horizon:.6g}"
            )
    if horizon < 0:
        raise ConfigError(f"horizon must be non-negative, got {horizon}")
    if transient < 0 or transient > horizon:
        raise ConfigError(f"transient must lie in [0, horizon={horizon}], got {transient}")


def sample_count(horizon, transient=0, sampling=1) -> int:
    """Number of samples a recording produces: floor((horizon - transient) / sampling) + 1."""
    ratio = (horizon - transient) / sampling
    # absorb rounding such as 0.3 / 0.1 == 2.9999999999999996
    return int(math.floor(ratio + 1e-9)) + 1


def _prefix(states: List[np.ndarray], times: List[float], dimension: int) -> Optional[Trajectory]:
    if not states:
        return None
    return StateSpaceSet.from_states(states, dimension), np.array(times)


def trajectory(
    system: DynamicalSystem,
    horizon,
    transient=0,
    sampling=1,
) -> Trajectory:
    """Record a trajectory of ``system``.

    The handle is first advanced through ``transient`` without recording,
    then sampled every ``sampling`` units (iterations for maps, time for
    flows) up to ``horizon``. Both are measured from the handle's current
    time, and the horizon includes the transient. The handle is left at the
    final sample.

    Args:
        system: Handle to drive; it is mutated.
        horizon: Total steps (maps, integer) or total time (flows).
        transient: Warm-up discarded before recording.
        sampling: Interval between recorded samples.

    Returns:
        Tuple of (StateSpaceSet, times) with
        ``floor((horizon - transient) / sampling) + 1`` samples and strictly
        increasing times.

    Raises:
        ConfigError: Invalid horizon, transient or sampling.
        DivergedError: The rule went non-finite. ``last_index``,
            ``last_time`` and ``partial`` describe what was recorded.
        IntegrationFailure: The backend failed; annotated the same way.
    """
    discrete = system.time_kind is TimeKind.DISCRETE
    start = system.current_time()
    _check_arguments(discrete, horizon, transient, sampling, start=start)
    n_samples = sample_count(horizon, transient, sampling)
    dimension = system.dimension

    t_first = start + transient
    try:
        system.step_until(t_first)
    except StepError as err:
        logger.debug("Failure during transient of %s: %s", system.rule.name, err)
        raise err.annotate(None, None, None)

    states: List[np.ndarray] = []
    times: List[float] = []
    for k in range(n_samples):
        if k > 0:
            try:
                system.step_until(t_first + k * sampling)
            except StepError as err:
                raise err.annotate(k - 1, times[-1], _prefix(states, times, dimension))
        states.append(system.current_state())
        times.append(system.current_time())

    logger.debug("Recorded %d samples of %s over [%s, %s]", n_samples, system.rule.name, times[0], times[-1])
    return StateSpaceSet.from_states(states, dimension), np.array(times)


def trajectories(
    system: DynamicalSystem,
    initial_states: Sequence[Any],
    horizon,
    transient=0,
    sampling=1,
    max_workers: int = 1,
) -> List[Trajectory]:
    """Record one trajectory per initial state.

    Every member runs on its own handle built with ``system.reconstruct``;
    ``system`` itself is not stepped. With ``max_workers > 1`` members run
    on a thread pool. The first failing member's exception propagates.

    Returns:
        List of (StateSpaceSet, times), ordered like ``initial_states``.
    """
    def run(u0) -> Trajectory:
        return trajectory(system.reconstruct(u0=u0), horizon, transient=transient, sampling=sampling)

    if max_workers <= 1:
        return [run(u0) for u0 in initial_states]

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(run, initial_states))
