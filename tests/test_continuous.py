"""Tests for continuous-time handles, the integration backend and integrator config."""

import numpy as np
import pytest

from chaoskernel.config import IntegratorConfig, load_integrator_config
from chaoskernel.errors import ConfigError, DivergedError, IntegrationFailure
from chaoskernel.integrators import integrate, rk4_step
from chaoskernel.rules import continuous_rule
from chaoskernel.system import ContinuousDynamicalSystem, construct
from chaoskernel.systems import van_der_pol

TIGHT = IntegratorConfig(method="DOP853", rtol=1e-11, atol=1e-12)


@continuous_rule
def decay(u, p, t):
    return -p["k"] * u


@continuous_rule
def oscillator(u, p, t):
    return np.array([u[1], -u[0]])


def decay_system(config=TIGHT, k=1.0):
    return construct(decay, [1.0], {"k": k}, config=config)


class TestAdaptiveStepping:
    """Single and repeated adaptive steps."""

    def test_single_step_advances_time(self):
        """step() advances by a solver-chosen positive amount."""
        ds = decay_system()
        ds.step()
        t1 = ds.current_time()
        assert 0.0 < t1 < np.inf
        np.testing.assert_allclose(ds.current_state(), np.exp(-t1), rtol=1e-9)

    def test_time_is_monotonic(self):
        """Successive steps never move time backwards."""
        ds = decay_system()
        times = [ds.current_time()]
        for _ in range(10):
            ds.step()
            times.append(ds.current_time())
        assert all(b > a for a, b in zip(times, times[1:]))

    def test_step_until_lands_exactly(self):
        """step_until clips the last step onto the requested time."""
        ds = decay_system()
        ds.step_until(1.0)
        assert ds.current_time() == 1.0
        np.testing.assert_allclose(ds.current_state(), [np.exp(-1.0)], rtol=1e-9)

    def test_step_until_past_time_is_noop(self):
        """Requesting a time already passed leaves the handle alone."""
        ds = decay_system()
        ds.step_until(0.5)
        state = ds.current_state()
        ds.step_until(0.25)
        assert ds.current_time() == 0.5
        np.testing.assert_array_equal(ds.current_state(), state)

    def test_consecutive_targets(self):
        """Stepping to several targets matches the analytic solution at each."""
        ds = construct(oscillator, [1.0, 0.0], config=TIGHT)
        for t in (0.3, 1.7, 2.0, 6.5):
            ds.step(until=t)
            assert ds.current_time() == t
            np.testing.assert_allclose(ds.current_state(), [np.cos(t), -np.sin(t)], atol=1e-8)

    def test_set_parameter_takes_effect_mid_run(self):
        """A parameter change after t=1 alters the remaining evolution."""
        ds = decay_system()
        ds.step_until(1.0)
        ds.set_parameter("k", 2.0)
        assert ds.current_time() == 1.0
        ds.step_until(2.0)
        np.testing.assert_allclose(ds.current_state(), [np.exp(-3.0)], rtol=1e-8)

    def test_time_dependent_rule_receives_time(self):
        """du/dt = t integrates to t^2 / 2."""
        ramp = continuous_rule(lambda u, p, t: np.array([t]))
        ds = construct(ramp, [0.0], config=TIGHT)
        ds.step_until(3.0)
        np.testing.assert_allclose(ds.current_state(), [4.5], rtol=1e-10)

    def test_nonzero_initial_time(self):
        """t0 shifts the clock; the rule sees absolute time."""
        ramp = continuous_rule(lambda u, p, t: np.array([t]))
        ds = construct(ramp, [0.0], config=TIGHT, t0=1.0)
        assert ds.current_time() == 1.0
        ds.step_until(2.0)
        np.testing.assert_allclose(ds.current_state(), [1.5], rtol=1e-10)

    def test_inplace_flow(self):
        """In-place vector fields integrate like out-of-place ones."""
        def oscillator_inplace(du, u, p, t):
            du[0] = u[1]
            du[1] = -u[0]

        a = ContinuousDynamicalSystem(oscillator_inplace, [1.0, 0.0], config=TIGHT)
        b = construct(oscillator, [1.0, 0.0], config=TIGHT)
        a.step_until(3.0)
        b.step_until(3.0)
        np.testing.assert_allclose(a.current_state(), b.current_state(), atol=1e-12)


class TestFixedStep:
    """Fixed-step RK4 and Euler schemes."""

    def test_rk4_fixed_steps(self):
        """step() advances by exactly dt."""
        ds = decay_system(IntegratorConfig(method="RK4", dt=0.1))
        ds.step(5)
        assert ds.current_time() == pytest.approx(0.5)
        np.testing.assert_allclose(ds.current_state(), [np.exp(-0.5)], rtol=1e-6)

    def test_rk4_last_step_clipped(self):
        """A target between grid points is reached exactly."""
        ds = decay_system(IntegratorConfig(method="RK4", dt=0.1))
        ds.step_until(0.55)
        assert ds.current_time() == 0.55
        np.testing.assert_allclose(ds.current_state(), [np.exp(-0.55)], rtol=1e-6)

    def test_rk4_accuracy(self):
        """RK4 with dt=0.01 is accurate to ~1e-10 on exponential decay."""
        ds = decay_system(IntegratorConfig(method="RK4", dt=0.01))
        ds.step_until(1.0)
        np.testing.assert_allclose(ds.current_state(), [np.exp(-1.0)], rtol=1e-9)

    def test_euler_first_order(self):
        """One Euler step of size 0.1 gives 1 - 0.1 for du/dt = -u."""
        ds = decay_system(IntegratorConfig(method="Euler", dt=0.1))
        ds.step()
        np.testing.assert_allclose(ds.current_state(), [0.9])

    def test_rk4_step_function(self):
        """rk4_step on du/dt = -u matches the fourth-order Taylor polynomial."""
        h = 0.1
        y = rk4_step(lambda t, y: -y, 0.0, np.array([1.0]), h)
        taylor = 1 - h + h ** 2 / 2 - h ** 3 / 6 + h ** 4 / 24
        np.testing.assert_allclose(y, [taylor], rtol=1e-14)

    def test_fixed_step_nan_diverges(self):
        """A NaN derivative marks the flow as diverged."""
        poison = continuous_rule(lambda u, p, t: np.array([np.nan if t > 0.25 else -u[0]]))
        ds = construct(poison, [1.0], config=IntegratorConfig(method="RK4", dt=0.1))
        with pytest.raises(DivergedError):
            ds.step_until(1.0)
        assert ds.is_diverged
        assert ds.current_time() == pytest.approx(0.2)
        with pytest.raises(DivergedError):
            ds.step()


class TestIntegrationFailure:
    """Backend failures on stiff problems."""

    def test_stiff_problem_underflows_min_step(self):
        """Explicit RK45 on a very stiff Van der Pol oscillator trips min_step."""
        config = IntegratorConfig(method="RK45", rtol=1e-6, atol=1e-6, min_step=1e-2)
        ds = van_der_pol(mu=1000.0, config=config)
        with pytest.raises(IntegrationFailure, match="min_step"):
            ds.step_until(5.0)
        assert not ds.is_diverged
        assert ds.current_time() < 5.0
        assert np.all(np.isfinite(ds.current_state()))

    def test_implicit_solver_handles_stiffness(self):
        """Radau integrates the same stiff oscillator."""
        ds = van_der_pol(mu=1000.0, config=IntegratorConfig(method="Radau", rtol=1e-6, atol=1e-6))
        ds.step_until(1.0)
        assert ds.current_time() == 1.0
        assert np.all(np.isfinite(ds.current_state()))


@continuous_rule
def nan_after_quarter(u, p, t):
    return np.array([np.nan if t > 0.25 else -u[0]])


class TestAdaptiveDivergence:
    """A NaN derivative under adaptive methods is divergence, not a solver failure."""

    @pytest.mark.parametrize("method", ["RK45", "RK23", "DOP853", "Radau", "BDF"])
    def test_nan_derivative_diverges(self, method):
        """The handle turns terminal and keeps its last finite point."""
        ds = construct(nan_after_quarter, [1.0], config=IntegratorConfig(method=method))
        with pytest.raises(DivergedError):
            ds.step_until(1.0)
        assert ds.is_diverged
        assert ds.current_time() <= 0.25
        assert np.all(np.isfinite(ds.current_state()))
        with pytest.raises(DivergedError):
            ds.step()

    def test_integrate_reports_divergence(self):
        """integrate() from a point where the derivative is already NaN raises DivergedError."""
        with pytest.raises(DivergedError):
            integrate(nan_after_quarter, np.array([1.0]), None, 0.3, 1.0, IntegratorConfig(method="BDF"))


class TestIntegrate:
    """Public single-step integrate() entry point."""

    def test_adaptive_step_does_not_overshoot(self):
        """The achieved time lies in (t_from, t_to]."""
        state = np.array([1.0])
        new_state, t = integrate(decay, state, {"k": 1.0}, 0.0, 0.5, TIGHT)
        assert 0.0 < t <= 0.5
        np.testing.assert_allclose(new_state, np.exp(-t), rtol=1e-9)
        np.testing.assert_array_equal(state, [1.0])

    def test_fixed_step_clipped_to_target(self):
        """A fixed step larger than the interval stops at t_to."""
        _, t = integrate(decay, np.array([1.0]), {"k": 1.0}, 0.0, 0.5, IntegratorConfig(method="RK4", dt=1.0))
        assert t == 0.5

    def test_empty_interval_raises(self):
        """t_to must lie after t_from."""
        with pytest.raises(ValueError, match="greater than"):
            integrate(decay, np.array([1.0]), {"k": 1.0}, 1.0, 1.0, TIGHT)


class TestIntegratorConfig:
    """Integrator config validation and YAML loading."""

    def test_default_is_valid(self):
        """Default config validates cleanly."""
        assert IntegratorConfig().validate() == []

    def test_bad_tolerances_reported(self):
        """Non-positive tolerances are listed as errors."""
        errors = IntegratorConfig(rtol=0.0, atol=-1.0).validate()
        assert any("rtol" in e for e in errors)
        assert any("atol" in e for e in errors)

    def test_dict_round_trip_keeps_infinite_max_step(self):
        """to_dict writes max_step=None, from_dict restores infinity."""
        cfg = IntegratorConfig(method="RK4", dt=0.05)
        data = cfg.to_dict()
        assert data["max_step"] is None
        assert IntegratorConfig.from_dict(data) == cfg

    def test_unknown_key_rejected(self):
        """from_dict refuses unknown settings."""
        with pytest.raises(ConfigError, match="unknown integrator config keys"):
            IntegratorConfig.from_dict({"stepsize": 0.1})

    def test_load_yaml_section(self, tmp_path):
        """Settings under an 'integrator' key are merged onto defaults."""
        path = tmp_path / "integrator.yaml"
        path.write_text("integrator:\n  method: RK4\n  dt: 0.05\n", encoding="utf-8")
        cfg = load_integrator_config(str(path))
        assert cfg.method == "RK4"
        assert cfg.dt == 0.05
        assert cfg.rtol == IntegratorConfig().rtol

    def test_load_yaml_top_level(self, tmp_path):
        """Top-level settings work too, and numbers in string form are coerced."""
        path = tmp_path / "integrator.yaml"
        path.write_text("method: DOP853\nrtol: 1e-10\nmax_step: 0.5\n", encoding="utf-8")
        cfg = load_integrator_config(str(path))
        assert cfg.method == "DOP853"
        assert cfg.rtol == 1e-10
        assert cfg.max_step == 0.5

    def test_load_yaml_invalid(self, tmp_path):
        """A config that fails validation raises ConfigError."""
        path = tmp_path / "integrator.yaml"
        path.write_text("method: RK4\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="dt is required"):
            load_integrator_config(str(path))

    def test_load_yaml_not_a_mapping(self, tmp_path):
        """A YAML list is rejected."""
        path = tmp_path / "integrator.yaml"
        path.write_text("- RK4\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="mapping"):
            load_integrator_config(str(path))

    def test_load_none_gives_defaults(self):
        """No path yields the default config."""
        assert load_integrator_config(None) == IntegratorConfig()

    def test_handle_keeps_its_own_copy(self):
        """Mutating the caller's config after construction has no effect."""
        cfg = IntegratorConfig(method="RK4", dt=0.1)
        ds = decay_system(cfg)
        cfg.dt = 0.5
        ds.step()
        assert ds.current_time() == pytest.approx(0.1)
