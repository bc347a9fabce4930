"""
chaoskernel Test Suite

Pytest-based tests for the map/flow evolution kernel.

Test Structure:
- test_system.py: Handle construction, stepping, parameters, divergence
- test_continuous.py: Integration backend, solver caching, integrator config
- test_trajectory.py: Trajectory recorder, StateSpaceSet, ensembles
- test_systems.py: Predefined example systems
- test_lyapunov.py: Maximal exponent and spectrum
- test_basins.py: Basins of attraction by proximity
- test_cli.py: Command-line entry point

Run tests with: pytest
"""
