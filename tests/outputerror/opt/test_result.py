########################################################################################
##
##                                  TESTS FOR
##                               'opt/result.py'
##
########################################################################################

# IMPORTS ==============================================================================

import unittest

import numpy as np
import pytest

from outputerror.opt import EstimationResult, TerminationReason
from outputerror.utils.exceptions import ConvergenceWarning


# HELPERS ==============================================================================

def _make_result(termination=TerminationReason.CONVERGED, **kwargs):
    return EstimationResult(
        zeta=np.array([2.0, 0.5]),
        fim=np.diag([4.0, 100.0]),
        noise_covariance=np.diag([0.04, 0.09]),
        cost=12.5,
        termination=termination,
        outer_iterations=3,
        inner_iterations=11,
        **kwargs,
    )


# TESTS ================================================================================

class TestEstimationResultConstruction(unittest.TestCase):

    def test_statistics(self):
        res = _make_result()
        np.testing.assert_allclose(res.covariance, np.diag([0.25, 0.01]))
        np.testing.assert_allclose(res.std_errors, [0.5, 0.1])
        np.testing.assert_allclose(res.correlation, np.eye(2))
        np.testing.assert_allclose(res.eigenvalues, [100.0, 4.0])
        self.assertAlmostEqual(res.condition_number, 25.0)

    def test_noise_std(self):
        np.testing.assert_allclose(_make_result().noise_std, [0.2, 0.3])

    def test_singular_fim(self):
        res = EstimationResult(
            zeta=[1.0, 1.0],
            fim=np.ones((2, 2)),
            noise_covariance=np.eye(1),
            cost=1.0,
            termination=TerminationReason.CONVERGED,
        )
        self.assertGreater(res.condition_number, 1e10)
        self.assertAlmostEqual(abs(res.correlation[0, 1]), 1.0)

    def test_default_names(self):
        res = _make_result()
        self.assertEqual(res.parameter_names, ["zeta_0", "zeta_1"])
        self.assertEqual(res.output_names, ["y_0", "y_1"])

    def test_default_histories(self):
        res = _make_result()
        self.assertEqual(res.zeta_history.shape, (2, 1))
        np.testing.assert_allclose(res.cost_history, [12.5])

    def test_unpacking(self):
        zeta, M, R = _make_result()
        np.testing.assert_allclose(zeta, [2.0, 0.5])
        np.testing.assert_allclose(M, np.diag([4.0, 100.0]))
        np.testing.assert_allclose(R, np.diag([0.04, 0.09]))

    def test_success(self):
        self.assertTrue(_make_result(TerminationReason.CONVERGED).success)
        self.assertTrue(_make_result(TerminationReason.STALLED).success)
        self.assertFalse(_make_result(TerminationReason.INNER_ITERATION_CAP).success)
        self.assertFalse(_make_result(TerminationReason.OUTER_ITERATION_CAP).success)

    def test_repr(self):
        self.assertIn("converged", repr(_make_result()))


class TestEstimationResultDisplay:

    def test_display(self, capsys):
        res = _make_result(parameter_names=["gain", "tau"], output_names=["pos", "vel"])
        res.display()
        out = capsys.readouterr().out

        assert "Output Error Estimation Results" in out
        assert "converged" in out
        assert "gain" in out and "tau" in out
        assert "pos" in out and "vel" in out
        assert "condition number" in out
        assert "WARNING" not in out

    def test_display_warnings(self, capsys):
        warning = ConvergenceWarning("inner_iteration_cap", "exceeded maximum number of inner iterations (100)")
        res = _make_result(TerminationReason.INNER_ITERATION_CAP, warnings=[warning])
        res.display()
        out = capsys.readouterr().out

        assert "inner_iteration_cap" in out
        assert "WARNING [inner_iteration_cap]" in out

    def test_display_correlated_pair(self, capsys):
        fim = np.array([[1.0, 0.99], [0.99, 1.0]])
        res = EstimationResult([1.0, 1.0], fim, np.eye(1), 0.0, TerminationReason.CONVERGED)
        res.display()
        assert "Highly correlated" in capsys.readouterr().out


class TestEstimationResultPlot:

    def test_plot(self):
        pytest.importorskip("matplotlib")
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        fig, axes = _make_result().plot()
        assert len(axes) == 2
        assert axes[0].get_title() == "Parameter Correlation Matrix"
        assert axes[1].get_title() == "FIM Eigenvalue Spectrum"
        plt.close(fig)
