"""Basins of attraction by proximity to known attractors.

Each initial condition on a state-space grid is evolved on its own handle
until it comes within ``epsilon`` of one of the supplied attractors, leaves
the ``escape_radius`` ball, diverges, or runs out of checks.

Labels:
    k >= 1  the initial condition converged to attractor ``k``
    0       unresolved within ``max_checks``
    -1      escaped to infinity or diverged
"""

import itertools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Mapping, Sequence, Tuple

import numpy as np
from scipy.spatial import cKDTree

from chaoskernel.errors import DivergedError
from chaoskernel.statespace import StateSpaceSet
from chaoskernel.system import DynamicalSystem

logger = logging.getLogger(__name__)

UNRESOLVED = 0
DIVERGED = -1


def _build_trees(attractors: Mapping[int, Any], dimension: int) -> Dict[int, cKDTree]:
    trees: Dict[int, cKDTree] = {}
    for label, points in attractors.items():
        if not isinstance(label, (int, np.integer)) or label < 1:
            raise ValueError(f"Attractor labels must be integers >= 1, got {label!r}")
        arr = np.asarray(points.data if isinstance(points, StateSpaceSet) else points, dtype=float)
        arr = np.atleast_2d(arr)
        if arr.shape[1] != dimension or arr.shape[0] == 0:
            raise ValueError(f"Attractor {label} must be a non-empty (M, {dimension}) point set, got {arr.shape}")
        trees[int(label)] = cKDTree(arr)
    if not trees:
        raise ValueError("At least one attractor is required")
    return trees


def classify_initial_condition(
    system: DynamicalSystem,
    u0: np.ndarray,
    trees: Mapping[int, cKDTree],
    epsilon: float,
    transient=0,
    sampling=1,
    max_checks: int = 1000,
    escape_radius: float = 1e6,
) -> int:
    """Label a single initial condition (see module docstring for labels)."""
    handle = system.reconstruct(u0=u0)
    try:
        handle.step_until(handle.current_time() + transient)
        for _ in range(max_checks):
            u = handle.current_state()
            if np.linalg.norm(u) > escape_radius:
                return DIVERGED
            for label, tree in trees.items():
                dist, _ = tree.query(u)
                if dist < epsilon:
                    return label
            handle.step_until(handle.current_time() + sampling)
    except DivergedError:
        logger.debug("Initial condition %s diverged", u0)
        return DIVERGED
    return UNRESOLVED


def basins_of_attraction(
    system: DynamicalSystem,
    grid: Sequence[Sequence[float]],
    attractors: Mapping[int, Any],
    epsilon: float = 1e-3,
    transient=0,
    sampling=1,
    max_checks: int = 1000,
    escape_radius: float = 1e6,
    max_workers: int = 1,
) -> np.ndarray:
    """Label every point of a rectangular grid of initial conditions.

    Args:
        system: Template handle; only ``reconstruct`` is called on it.
        grid: One 1-D coordinate array per state-space dimension.
        attractors: Mapping from label (>= 1) to an attractor point set
            (array of shape (M, d) or a StateSpaceSet).
        epsilon: Distance below which a state counts as on an attractor.
        transient: Evolution before the first proximity check.
        sampling: Evolution between checks.
        max_checks: Proximity checks before giving up (label 0).
        escape_radius: Norm beyond which a state counts as escaped (label -1).
        max_workers: Thread pool size; one handle per initial condition.

    Returns:
        Integer label array with shape ``tuple(len(axis) for axis in grid)``.
    """
    dimension = system.dimension
    if len(grid) != dimension:
        raise ValueError(f"grid needs {dimension} axes, got {len(grid)}")
    trees = _build_trees(attractors, dimension)
    axes = [np.asarray(axis, dtype=float) for axis in grid]
    shape: Tuple[int, ...] = tuple(len(axis) for axis in axes)

    def label_of(u0) -> int:
        return classify_initial_condition(
            system, np.array(u0), trees, epsilon,
            transient=transient, sampling=sampling,
            max_checks=max_checks, escape_radius=escape_radius,
        )

    points = list(itertools.product(*axes))
    if max_workers <= 1:
        labels = [label_of(u0) for u0 in points]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            labels = list(executor.map(label_of, points))

    result = np.array(labels, dtype=int).reshape(shape)
    counts = {int(k): int(v) for k, v in zip(*np.unique(result, return_counts=True))}
    logger.info("Basins of %s over %d initial conditions: %s", system.rule.name, result.size, counts)
    return result
