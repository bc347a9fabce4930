"""Tests for basins of attraction by attractor proximity."""

import numpy as np
import pytest

from chaoskernel.basins import DIVERGED, UNRESOLVED, basins_of_attraction
from chaoskernel.config import IntegratorConfig
from chaoskernel.rules import continuous_rule
from chaoskernel.system import construct
from chaoskernel.systems import henon
from chaoskernel.trajectory import trajectory

CONFIG = IntegratorConfig(method="DOP853", rtol=1e-9, atol=1e-9)


@continuous_rule
def bistable(u, p, t):
    """du/dt = u - u^3: stable points at -1 and +1, unstable at 0."""
    return u - u ** 3


@pytest.fixture
def bistable_system():
    return construct(bistable, [0.0], config=CONFIG)


class TestBistableFlow:
    """One-dimensional flow with two point attractors."""

    def test_labels(self, bistable_system):
        """Each side of the origin goes to its own attractor; the origin stays put."""
        grid = [[-2.0, -0.5, 0.0, 0.5, 2.0]]
        attractors = {1: [[1.0]], 2: [[-1.0]]}
        labels = basins_of_attraction(bistable_system, grid, attractors, sampling=0.5, max_checks=100)
        np.testing.assert_array_equal(labels, [2, 2, UNRESOLVED, 1, 1])

    def test_parallel_matches_sequential(self, bistable_system):
        """A thread pool gives the same labels in the same order."""
        grid = [np.linspace(-2.0, 2.0, 9)]
        attractors = {1: [[1.0]], 2: [[-1.0]]}
        seq = basins_of_attraction(bistable_system, grid, attractors, sampling=0.5, max_checks=100)
        par = basins_of_attraction(bistable_system, grid, attractors, sampling=0.5, max_checks=100,
                                   max_workers=4)
        np.testing.assert_array_equal(seq, par)

    def test_template_not_stepped(self, bistable_system):
        """The template handle is only reconstructed."""
        basins_of_attraction(bistable_system, [[0.5]], {1: [[1.0]]}, sampling=0.5)
        assert bistable_system.current_time() == 0.0
        np.testing.assert_array_equal(bistable_system.current_state(), [0.0])


class TestHenonBasin:
    """Henon map with its strange attractor."""

    def test_attractor_and_escape(self):
        """Points near the origin reach the attractor; far points escape."""
        attractor, _ = trajectory(henon(), 5000, transient=100)
        labels = basins_of_attraction(henon(), [[0.0, 3.0], [0.0, 3.0]], {1: attractor}, epsilon=0.05)
        assert labels.shape == (2, 2)
        np.testing.assert_array_equal(labels, [[1, DIVERGED], [DIVERGED, DIVERGED]])


class TestValidation:
    """Argument checks."""

    def test_grid_dimension_mismatch(self):
        """The grid needs one axis per state coordinate."""
        with pytest.raises(ValueError, match="axes"):
            basins_of_attraction(henon(), [[0.0]], {1: [[0.0, 0.0]]})

    def test_label_must_be_positive(self):
        """Labels 0 and -1 are reserved."""
        with pytest.raises(ValueError, match=">= 1"):
            basins_of_attraction(henon(), [[0.0], [0.0]], {0: [[0.0, 0.0]]})

    def test_attractor_shape(self):
        """Attractor points must match the state dimension."""
        with pytest.raises(ValueError, match="point set"):
            basins_of_attraction(henon(), [[0.0], [0.0]], {1: [[0.0, 0.0, 0.0]]})

    def test_no_attractors(self):
        """An empty mapping is rejected."""
        with pytest.raises(ValueError, match="At least one"):
            basins_of_attraction(henon(), [[0.0], [0.0]], {})
