"""Lyapunov exponents of maps and flows.

``lyapunov`` estimates the maximal exponent with two nearby trajectories
that are renormalized to a fixed separation (Benettin et al.).
``lyapunov_spectrum`` evolves a set of tangent vectors with the
finite-difference Jacobian of the rule (directly for maps, through the
augmented variational equations for flows) and re-orthonormalizes them by
QR decomposition.

The handle passed in is never stepped; all work happens on reconstructed
copies starting from its current state and time.
"""

import logging
from typing import Any, Optional

import numpy as np

from chaoskernel.rules import EvolutionRule, TimeKind
from chaoskernel.system import ContinuousDynamicalSystem, DynamicalSystem

logger = logging.getLogger(__name__)


def numerical_jacobian(
    rule: EvolutionRule,
    u: np.ndarray,
    p: Any,
    t: float,
    eps: float = 1e-7,
) -> np.ndarray:
    """Approximate the Jacobian of ``rule`` at (u, t) via central differences.

    Args:
        rule: Evolution rule (map or vector field).
        u: State vector.
        p: Parameter container.
        t: Time.
        eps: Finite difference step size.

    Returns:
        Jacobian matrix of shape (d, d).
    """
    n = len(u)
    jac = np.empty((n, n))
    for j in range(n):
        e_j = np.zeros(n)
        e_j[j] = eps
        fp = rule.evaluate(u + e_j, p, t)
        fm = rule.evaluate(u - e_j, p, t)
        jac[:, j] = (fp - fm) / (2.0 * eps)
    return jac


def _fork(system: DynamicalSystem, u0=None) -> DynamicalSystem:
    """Fresh handle at the system's current time (and state unless given)."""
    return system.reconstruct(
        u0=system.current_state() if u0 is None else u0,
        t0=system.current_time(),
        params=system.parameters,
    )


def lyapunov(
    system: DynamicalSystem,
    total,
    d0: float = 1e-9,
    transient=0,
    sampling=1,
    seed: int = 42,
) -> float:
    """Maximal Lyapunov exponent by two-trajectory renormalization.

    Args:
        system: Handle whose current state seeds the estimate (not stepped).
        total: Evolution time (iterations for maps) after the transient.
        d0: Separation the test trajectory is renormalized to.
        transient: Warm-up applied to the reference before perturbing it.
        sampling: Time (iterations) between renormalizations.
        seed: Seed for the random perturbation direction.

    Returns:
        Estimated maximal exponent, per unit time (per iteration for maps).
    """
    if not d0 > 0:
        raise ValueError(f"d0 must be positive, got {d0}")
    if not sampling > 0 or not total >= sampling:
        raise ValueError(f"need 0 < sampling <= total, got sampling={sampling}, total={total}")

    ref = _fork(system)
    ref.step_until(ref.current_time() + transient)

    rng = np.random.default_rng(seed)
    direction = rng.standard_normal(ref.dimension)
    direction /= np.linalg.norm(direction)
    test = _fork(ref, ref.current_state() + d0 * direction)

    t_start = ref.current_time()
    n_renorm = int(np.floor(total / sampling + 1e-9))
    log_sum = 0.0
    for k in range(1, n_renorm + 1):
        t_k = t_start + k * sampling
        ref.step_until(t_k)
        test.step_until(t_k)
        delta = test.current_state() - ref.current_state()
        dist = np.linalg.norm(delta)
        if dist == 0.0:
            # trajectories merged; restart the separation along the last direction
            delta = d0 * direction
            dist = d0
        log_sum += np.log(dist / d0)
        direction = delta / dist
        test = _fork(ref, ref.current_state() + d0 * direction)

    exponent = log_sum / (n_renorm * sampling)
    logger.info("Maximal Lyapunov exponent of %s: %.6g (%d renormalizations)",
                system.rule.name, exponent, n_renorm)
    return float(exponent)


def _make_tangent_rule(rule: EvolutionRule, dim: int, k: int, eps: float) -> EvolutionRule:
    """Build the augmented vector field [du/dt, dW/dt] with dW/dt = J(u, t) W."""
    def tangent_dynamics(v: np.ndarray, p: Any, t: float) -> np.ndarray:
        u = v[:dim]
        W = v[dim:].reshape(dim, k)
        du = rule.evaluate(u, p, t)
        jac = numerical_jacobian(rule, u, p, t, eps)
        return np.concatenate([du, (jac @ W).ravel()])
    return EvolutionRule.build(tangent_dynamics, TimeKind.CONTINUOUS, inplace=False,
                               name=f"{rule.name}_tangent")


def lyapunov_spectrum(
    system: DynamicalSystem,
    N: int,
    k: Optional[int] = None,
    sampling=1,
    transient=0,
    eps: float = 1e-7,
) -> np.ndarray:
    """First ``k`` Lyapunov exponents via QR re-orthonormalization.

    Args:
        system: Handle whose current state seeds the estimate (not stepped).
        N: Number of QR re-orthonormalizations.
        k: Number of exponents; defaults to the state dimension.
        sampling: Time (iterations for maps) between re-orthonormalizations.
        transient: Warm-up before the tangent vectors start evolving.
        eps: Finite difference step for the Jacobian.

    Returns:
        Exponents sorted in descending order, shape (k,).
    """
    dim = system.dimension
    k = dim if k is None else k
    if not 1 <= k <= dim:
        raise ValueError(f"k must lie in [1, {dim}], got {k}")
    if N < 1:
        raise ValueError(f"N must be >= 1, got {N}")

    ref = _fork(system)
    ref.step_until(ref.current_time() + transient)
    p = ref.parameters
    rule = ref.rule
    Q = np.eye(dim)[:, :k]
    log_sums = np.zeros(k)

    if rule.is_discrete:
        for _ in range(N):
            for _ in range(int(sampling)):
                u, n = ref.current_state(), ref.current_time()
                Q = numerical_jacobian(rule, u, p, n, eps) @ Q
                ref.step()
            Q, R = np.linalg.qr(Q)
            log_sums += np.log(np.abs(np.diag(R)))
        total = N * int(sampling)
    else:
        tangent_rule = _make_tangent_rule(rule, dim, k, eps)
        config = ref.config
        t = ref.current_time()
        u = ref.current_state()
        for _ in range(N):
            aug = ContinuousDynamicalSystem(
                tangent_rule, np.concatenate([u, Q.ravel()]), p, config=config, t0=t,
            )
            aug.step_until(t + sampling)
            v = aug.current_state()
            t = aug.current_time()
            u = v[:dim]
            Q, R = np.linalg.qr(v[dim:].reshape(dim, k))
            log_sums += np.log(np.abs(np.diag(R)))
        total = N * sampling

    exponents = np.sort(log_sums / total)[::-1]
    logger.info("Lyapunov spectrum of %s: %s", system.rule.name, np.array2string(exponents, precision=4))
    return exponents
