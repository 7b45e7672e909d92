########################################################################################
##
##                                  TESTS FOR
##                             'opt/estimator.py'
##
########################################################################################

# IMPORTS ==============================================================================

import warnings

import numpy as np
import pytest

from outputerror import Model, Experiment
from outputerror.opt import (
    OutputErrorEstimator,
    EstimatorOptions,
    EstimationResult,
    TerminationReason,
    SensitivityEngine,
)
from outputerror.utils.exceptions import (
    ConfigurationError,
    UsageError,
    NumericalDivergenceError,
    IntegrationError,
    ConvergenceWarning,
)


# HELPERS ==============================================================================

def _decay_f(x, u, zeta, w):
    return -zeta[0] * x


def _decay_h(x, u, zeta, w):
    return x


_DECAY_JACOBIANS = dict(
    df_dx=lambda x, u, zeta, w: np.array([[-zeta[0]]]),
    dh_dx=lambda x, u, zeta, w: np.array([[1.0]]),
    df_dzeta=lambda x, u, zeta, w: np.array([[-x[0]]]),
    dh_dzeta=lambda x, u, zeta, w: np.array([[0.0]]),
)


def _noiseless_decay():
    """Three samples of exp(-0.5 t), the textbook scenario."""
    t = np.array([0.0, 1.0, 2.0])
    z = np.exp(-0.5 * t).reshape(1, -1)
    return OutputErrorEstimator(_decay_f, _decay_h, [1.0], t, None, z, None)


def _noisy_decay(n=41, sigma=0.01, seed=0):
    rng = np.random.default_rng(seed)
    t = np.linspace(0.0, 4.0, n)
    z = np.exp(-0.5 * t) + sigma * rng.standard_normal(n)
    return OutputErrorEstimator(_decay_f, _decay_h, [1.0], t, None, z.reshape(1, -1), None)


def _first_order_two_outputs(seed=1):
    """dx/dt = -a x + b u with two differently noisy sensors of x."""
    a_true, b_true = 0.8, 2.0
    t = np.linspace(0.0, 6.0, 61)
    u = np.where(t < 3.0, 1.0, 0.0).reshape(1, -1)

    # exact response of the zero-order held step input
    x = np.zeros_like(t)
    for i in range(t.size - 1):
        dt = t[i + 1] - t[i]
        x_inf = b_true / a_true * u[0, i]
        x[i + 1] = x_inf + (x[i] - x_inf) * np.exp(-a_true * dt)

    rng = np.random.default_rng(seed)
    z = np.vstack([
        x + 0.02 * rng.standard_normal(t.size),
        x + 0.05 * rng.standard_normal(t.size),
    ])

    est = OutputErrorEstimator(
        f=lambda x, u, zeta, w: -zeta[0] * x + zeta[1] * u,
        h=lambda x, u, zeta, w: np.array([x[0], x[0]]),
        x0=[0.0], t=t, u=u, z=z, w=None,
    )
    return est, np.array([a_true, b_true])


# TESTS ================================================================================

class TestEstimatorInit:

    def test_dimensions(self):
        est = _noisy_decay()
        assert est.experiment.n_samples == 41
        assert est.experiment.n_outputs == 1
        assert est.experiment.n_states == 1
        assert not est.has_jacobians
        assert not est.has_output_to_state_matrix
        assert not est.has_parameter_estimates

    def test_default_options(self):
        est = _noisy_decay()
        assert est.options == EstimatorOptions()

    def test_mismatched_input_columns(self):
        t = np.linspace(0.0, 1.0, 5)
        u = np.ones((1, 4))
        z = np.ones((1, 5))
        with pytest.raises(ConfigurationError):
            OutputErrorEstimator(_decay_f, _decay_h, [1.0], t, u, z, None)

    def test_mismatched_output_columns(self):
        t = np.linspace(0.0, 1.0, 5)
        with pytest.raises(ConfigurationError):
            OutputErrorEstimator(_decay_f, _decay_h, [1.0], t, None, np.ones((1, 4)), None)

    def test_from_model(self):
        model = Model(_decay_f, _decay_h).with_jacobians(**_DECAY_JACOBIANS)
        exp = Experiment(t=[0.0, 1.0, 2.0], u=None, z=[1.0, 0.6, 0.37], w=None, x0=[1.0])
        est = OutputErrorEstimator.from_model(model, exp)
        assert est.model is model
        assert est.has_jacobians

    def test_repr(self):
        assert "OutputErrorEstimator" in repr(_noisy_decay())


class TestEstimatorConfiguration:

    def test_setters_chain(self):
        est = _noisy_decay()
        out = (
            est.set_jacobians(**_DECAY_JACOBIANS)
               .set_output_to_state_matrix([[1.0]])
               .set_known_parameter_estimates([0.5], [1.0])
               .set_parameter_names(["a"])
               .set_output_names(["x"])
        )
        assert out is est
        assert est.has_jacobians
        assert est.has_output_to_state_matrix
        assert est.has_parameter_estimates
        assert est.parameter_names == ["a"]
        assert est.output_names == ["x"]

    def test_output_to_state_wrong_shape(self):
        with pytest.raises(ConfigurationError):
            _noisy_decay().set_output_to_state_matrix(np.ones((2, 1)))

    def test_output_to_state_rank_deficient(self):
        with pytest.raises(ConfigurationError):
            _noisy_decay().set_output_to_state_matrix([[0.0]])

    def test_prior_length_mismatch(self):
        with pytest.raises(ConfigurationError):
            _noisy_decay().set_known_parameter_estimates([0.5, 1.0], [1.0])

    def test_prior_nonpositive_variance(self):
        with pytest.raises(ConfigurationError):
            _noisy_decay().set_known_parameter_estimates([0.5], [0.0])

    def test_output_names_wrong_length(self):
        with pytest.raises(ConfigurationError):
            _noisy_decay().set_output_names(["a", "b"])


class TestEstimatorComponents:

    def test_simulate_decay(self):
        Y = _noiseless_decay().simulate([0.5])
        assert Y.shape == (1, 3)
        assert Y[0] == pytest.approx([1.0, 0.6065, 0.3679], abs=1e-4)

    def test_simulate_idempotent(self):
        est = _noisy_decay()
        assert np.array_equal(est.simulate([0.7]), est.simulate([0.7]))

    def test_covariance_and_cost(self):
        est = _noisy_decay()
        Y = est.simulate([0.5])
        R = est.covariance(Y)
        assert R.shape == (1, 1)
        assert R[0, 0] == pytest.approx(1e-4, rel=0.5)
        assert est.cost(R, Y, [0.5]) >= 0.0

    def test_cost_includes_prior(self):
        est = _noisy_decay()
        Y = est.simulate([0.5])
        R = est.covariance(Y)
        J = est.cost(R, Y, [0.5])
        est.set_known_parameter_estimates([0.0], [1.0])
        assert est.cost(R, Y, [0.5]) == pytest.approx(J + 0.125)

    def test_sensitivity_requires_jacobians(self):
        with pytest.raises(UsageError):
            _noisy_decay().sensitivity([0.5], "analytical")

    def test_sensitivity_unknown_mode(self):
        with pytest.raises(UsageError):
            _noisy_decay().sensitivity([0.5], "symbolic")

    def test_sensitivity_modes_agree(self):
        est = _noisy_decay().set_jacobians(**_DECAY_JACOBIANS)
        S_num = est.sensitivity([0.7], "numerical")
        S_ana = est.sensitivity([0.7], "analytical")
        assert np.allclose(S_num, S_ana, rtol=1e-4, atol=1e-5)


class TestEstimateValidation:

    def test_output_to_state_without_jacobians(self):
        est = _noisy_decay().set_output_to_state_matrix([[1.0]])
        with pytest.raises(UsageError):
            est.estimate_parameters([1.0])

    def test_prior_length_vs_zeta0(self):
        est = _noisy_decay().set_known_parameter_estimates([0.5, 0.5], [1.0, 1.0])
        with pytest.raises(ConfigurationError):
            est.estimate_parameters([1.0])

    def test_parameter_names_length(self):
        est = _noisy_decay().set_parameter_names(["a", "b"])
        with pytest.raises(ConfigurationError):
            est.estimate_parameters([1.0])

    def test_non_finite_zeta0(self):
        with pytest.raises(UsageError):
            _noisy_decay().estimate_parameters([np.nan])

    def test_empty_zeta0(self):
        with pytest.raises(UsageError):
            _noisy_decay().estimate_parameters([])

    def test_unknown_override(self):
        with pytest.raises(ConfigurationError):
            _noisy_decay().estimate_parameters([1.0], max_iterations=3)

    def test_initial_integration_failure_propagates(self):
        est = OutputErrorEstimator(
            f=lambda x, u, zeta, w: zeta[0] * x**2,
            h=_decay_h,
            x0=[1.0], t=[0.0, 2.0], u=None, z=[1.0, 1.0], w=None,
        )
        with pytest.raises(IntegrationError):
            est.estimate_parameters([1.0])


class TestEstimateParameters:

    def test_noiseless_decay_converges(self):
        result = _noiseless_decay().estimate_parameters([1.0])

        assert isinstance(result, EstimationResult)
        assert result.termination is TerminationReason.CONVERGED
        assert result.success
        assert result.zeta[0] == pytest.approx(0.5, abs=1e-4)
        assert result.cost >= 0.0
        assert result.warnings == []

    def test_unpacks_as_triple(self):
        zeta, M, R = _noiseless_decay().estimate_parameters([1.0])
        assert zeta.shape == (1,)
        assert M.shape == (1, 1)
        assert R.shape == (1, 1)

    def test_noisy_decay(self):
        result = _noisy_decay().estimate_parameters([1.0])

        assert result.termination is TerminationReason.CONVERGED
        assert result.zeta[0] == pytest.approx(0.5, abs=0.05)
        assert 0.005 < result.noise_std[0] < 0.02
        assert result.outer_iterations >= 1
        assert result.inner_iterations >= result.outer_iterations

    def test_noisy_decay_with_jacobians(self):
        est = _noisy_decay().set_jacobians(**_DECAY_JACOBIANS)
        plain = _noisy_decay().estimate_parameters([1.0])
        result = est.estimate_parameters([1.0])

        assert result.termination is TerminationReason.CONVERGED
        assert result.zeta[0] == pytest.approx(plain.zeta[0], abs=1e-4)

    def test_bootstrap_from_measurements(self):
        est = (
            _noisy_decay()
            .set_jacobians(**_DECAY_JACOBIANS)
            .set_output_to_state_matrix([[1.0]])
        )
        result = est.estimate_parameters([2.0])

        assert result.success
        assert result.zeta[0] == pytest.approx(0.5, abs=0.05)

    def test_two_parameters_two_outputs(self):
        est, zeta_true = _first_order_two_outputs()
        est.set_parameter_names(["a", "b"]).set_output_names(["sensor_1", "sensor_2"])

        result = est.estimate_parameters([1.0, 1.0])

        assert result.success
        assert result.zeta == pytest.approx(zeta_true, abs=0.1)

        # noise covariance is diagonal with one variance per sensor
        R = result.noise_covariance
        assert R.shape == (2, 2)
        assert R[0, 1] == 0.0 and R[1, 0] == 0.0
        assert result.noise_std[0] < result.noise_std[1]

        # information matrix is symmetric positive semi-definite
        M = result.fim
        assert np.array_equal(M, M.T)
        assert np.all(np.linalg.eigvalsh(M) >= -1e-10 * np.abs(M).max())

        assert result.parameter_names == ["a", "b"]
        assert result.output_names == ["sensor_1", "sensor_2"]

    def test_options_override_per_call(self):
        est = _noisy_decay()
        est.estimate_parameters([1.0], max_inner_iterations=50)
        assert est.options.max_inner_iterations == 100


class TestEstimateObserver:

    def test_events(self):
        events = []
        result = _noisy_decay().estimate_parameters([1.0], observer=events.append)

        assert len(events) == result.inner_iterations

        first = events[0]
        assert first.outer_iteration == 0
        assert first.inner_iteration == 1
        assert first.zeta_history.shape == (1, 2)
        assert first.cost_history.shape == (2,)
        assert first.residuals.shape == (1, 41)
        assert first.parameter_names == ["zeta_0"]
        assert first.output_names == ["y_0"]

        assert events[-1].outer_iteration == result.outer_iterations - 1

    def test_cost_non_increasing_within_pass(self):
        events = []
        _noisy_decay().estimate_parameters([1.0], observer=events.append)

        for event in events:
            J = event.cost_history
            assert np.all(J >= 0.0)
            assert np.all(np.diff(J) <= 1e-8 * np.abs(J[:-1]) + 1e-12)

    def test_observer_cannot_alter_estimation(self):

        def meddle(event):
            event.zeta[:] = 100.0
            event.zeta_history[:] = 100.0

        reference = _noisy_decay().estimate_parameters([1.0])
        result = _noisy_decay().estimate_parameters([1.0], observer=meddle)
        assert result.zeta == pytest.approx(reference.zeta)


class TestEstimateTermination:

    def test_inner_iteration_cap(self):
        est = _noisy_decay()

        with pytest.warns(ConvergenceWarning):
            result = est.estimate_parameters(
                [1.0], max_inner_iterations=1, parameter_tolerance=1e-12
            )

        assert result.termination is TerminationReason.INNER_ITERATION_CAP
        assert not result.success
        assert result.inner_iterations == 1
        assert [w.kind for w in result.warnings] == ["inner_iteration_cap"]
        assert "zeta" in result.warnings[0].context

        # best estimate so far is still returned with its uncertainty
        assert np.isfinite(result.zeta[0])
        assert result.fim[0, 0] > 0.0

    def test_outer_iteration_cap(self):
        with pytest.warns(ConvergenceWarning):
            result = _noisy_decay().estimate_parameters([1.0], max_outer_iterations=1)

        assert result.termination is TerminationReason.OUTER_ITERATION_CAP
        assert result.outer_iterations == 1
        assert result.warnings[0].kind == "outer_iteration_cap"
        assert result.zeta[0] == pytest.approx(0.5, abs=0.05)

    def test_stalled_line_search(self):
        #parameter Jacobian with the wrong sign, every update points uphill
        wrong = dict(_DECAY_JACOBIANS)
        wrong["df_dzeta"] = lambda x, u, zeta, w: np.array([[x[0]]])

        est = _noisy_decay().set_jacobians(**wrong)

        with warnings.catch_warnings():
            warnings.simplefilter("error", ConvergenceWarning)
            result = est.estimate_parameters([1.0], analytical_iterations=20)

        assert result.termination is TerminationReason.STALLED
        assert result.success
        assert result.warnings == []
        assert result.inner_iterations == 10
        assert result.zeta[0] > 1.0

    def test_divergence(self, monkeypatch):
        est = _noisy_decay()

        def nan_sensitivity(self, zeta, mode="numerical"):
            return np.full((1, 1, 41), np.nan)

        monkeypatch.setattr(SensitivityEngine, "sensitivity", nan_sensitivity)

        with pytest.raises(NumericalDivergenceError):
            est.estimate_parameters([1.0])


class TestEstimatePrior:

    def test_tight_prior_dominates(self):
        est = _noisy_decay().set_known_parameter_estimates([0.3], [1e-10])
        result = est.estimate_parameters([1.0])
        assert result.zeta[0] == pytest.approx(0.3, abs=1e-3)

    def test_loose_prior_is_ignored(self):
        est = _noisy_decay().set_known_parameter_estimates([0.3], [1e6])
        plain = _noisy_decay().estimate_parameters([1.0])
        result = est.estimate_parameters([1.0])
        assert result.zeta[0] == pytest.approx(plain.zeta[0], abs=1e-3)
