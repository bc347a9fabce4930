"""chaoskernel: a uniform stepping and trajectory kernel for maps and flows."""

__version__ = "0.1.0"

from chaoskernel.errors import (
    ChaosKernelError,
    DimensionError,
    ConfigError,
    UnknownParameterError,
    StepError,
    DivergedError,
    IntegrationFailure,
)
from chaoskernel.config import IntegratorConfig, load_integrator_config
from chaoskernel.rules import EvolutionRule, RuleForm, TimeKind, discrete_rule, continuous_rule
from chaoskernel.integrators import integrate
from chaoskernel.statespace import StateSpaceSet
from chaoskernel.system import (
    DynamicalSystem,
    DiscreteDynamicalSystem,
    ContinuousDynamicalSystem,
    construct,
)
from chaoskernel.trajectory import trajectory, trajectories
from chaoskernel.systems import SYSTEM_REGISTRY, DEFAULT_PARAMS, make_system, henon_fixed_points
from chaoskernel.lyapunov import lyapunov, lyapunov_spectrum
from chaoskernel.basins import basins_of_attraction
