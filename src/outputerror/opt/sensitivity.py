#########################################################################################
##
##                      OUTPUT SENSITIVITIES WITH RESPECT TO PARAMETERS
##                                (opt/sensitivity.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np

from ..utils.exceptions import ConfigurationError, UsageError
from ..utils.logger import LoggerManager


# CONSTANTS =============================================================================

NUMERICAL = "numerical"
ANALYTICAL = "analytical"

SENSITIVITY_MODES = (NUMERICAL, ANALYTICAL)

logger = LoggerManager().get_logger("opt.sensitivity")


# HELPERS ===============================================================================

def _linear_segment(t0, t1, x0, x1, trajectory=None, measured=None):
    """State along one sampling interval for the variational equation.

    Linear interpolation between the sample states ``x0`` and ``x1``. If a
    dense ``trajectory`` is given, the components not flagged in ``measured``
    are taken from it instead.
    """
    x0 = np.array(x0, dtype=float)
    x1 = np.array(x1, dtype=float)

    def state(t):
        s = (t - t0) / (t1 - t0)
        x = (1.0 - s) * x0 + s * x1
        if trajectory is not None:
            x = np.where(measured, x, trajectory(t))
        return x

    return state


def check_output_to_state_matrix(A, n_states, n_outputs):
    """Validate an output-to-state matrix ``A`` for ``x = A y``.

    Returns
    -------
    np.ndarray
        ``A`` as a float array

    Raises
    ------
    ConfigurationError
        if ``A`` is not ``(n_states, n_outputs)`` or lacks full column rank
    """
    A = np.array(A, dtype=float)
    if A.ndim == 1 and n_outputs == 1:
        A = A.reshape(-1, 1)

    if A.shape != (n_states, n_outputs):
        raise ConfigurationError(
            f"output-to-state matrix has shape {A.shape}, "
            f"expected {(n_states, n_outputs)} for x = A y"
        )
    if not np.all(np.isfinite(A)):
        raise ConfigurationError("output-to-state matrix must be finite")
    if np.linalg.matrix_rank(A) < n_outputs:
        raise ConfigurationError(
            f"output-to-state matrix must have full column rank {n_outputs}, "
            f"got rank {np.linalg.matrix_rank(A)}"
        )
    return A


# CLASS =================================================================================

class SensitivityEngine:
    """Jacobian of the predicted output sequence with respect to the parameters.

    The result is a tensor ``S`` of shape ``(No, Np, Ns)`` where ``S[:, j, :]``
    is the derivative of the output sequence with respect to ``zeta_j``.

    Two paths are available:

    * ``"numerical"``: central finite differences, two simulations per
      parameter, always available.
    * ``"analytical"``: forward integration of the variational equation

      .. math::

          \\frac{d}{dt} \\frac{\\partial x}{\\partial \\zeta} =
          \\frac{\\partial f}{\\partial x} \\frac{\\partial x}{\\partial \\zeta}
          + \\frac{\\partial f}{\\partial \\zeta}

      along the nominal state trajectory, followed by the chain rule through
      the output equation. Requires all four model Jacobians.

    Parameters
    ----------
    simulator : TrajectorySimulator
        simulator of the model over the experiment
    output_to_state : array_like, optional
        matrix ``A`` with ``x = A y``, enables :meth:`initial_sensitivity`
    fd_relative_step : float
        finite difference step relative to ``|zeta_j|``
    fd_absolute_step : float
        finite difference step used when ``zeta_j == 0``
    """

    def __init__(
        self,
        simulator,
        output_to_state=None,
        fd_relative_step=1e-3,
        fd_absolute_step=1e-6,
    ):
        self.simulator = simulator
        self.fd_relative_step = fd_relative_step
        self.fd_absolute_step = fd_absolute_step

        exp = simulator.experiment
        self.output_to_state = (
            None if output_to_state is None
            else check_output_to_state_matrix(output_to_state, exp.n_states, exp.n_outputs)
        )


    @property
    def model(self):
        return self.simulator.model


    @property
    def experiment(self):
        return self.simulator.experiment


    # PUBLIC API ------------------------------------------------------------------------

    def perturbations(self, zeta) -> np.ndarray:
        """Finite difference steps ``delta_j`` for every parameter."""
        zeta = np.asarray(zeta, dtype=float)
        return np.where(
            zeta == 0.0,
            self.fd_absolute_step,
            self.fd_relative_step * np.abs(zeta),
        )


    def sensitivity(self, zeta, mode=NUMERICAL) -> np.ndarray:
        """Output sensitivity tensor at ``zeta``.

        Parameters
        ----------
        zeta : array_like
            parameter vector, shape ``(Np,)``
        mode : str
            ``"numerical"`` or ``"analytical"``

        Returns
        -------
        np.ndarray
            sensitivities, shape ``(No, Np, Ns)``

        Raises
        ------
        UsageError
            for an unknown mode, or the analytical mode without Jacobians
        """
        if mode not in SENSITIVITY_MODES:
            raise UsageError(
                f"Unknown sensitivity mode '{mode}', expected one of {SENSITIVITY_MODES}"
            )

        zeta = np.asarray(zeta, dtype=float).reshape(-1)

        if mode == NUMERICAL:
            return self._numerical(zeta)

        self._require_jacobians(mode)
        X, segments = self.simulator.simulate_states(zeta, dense=True)
        return self._analytical(zeta, X, segments)


    def initial_sensitivity(self, zeta) -> np.ndarray:
        """Analytical sensitivities linearized about the measured trajectory.

        The states covered by a nonzero row of the output-to-state matrix are
        reconstructed from the measurements as ``A z``. States whose row is
        all zero are not observed and are propagated with the model from the
        mixed measured/simulated state at each sample. This avoids trusting
        the initial parameter guess for the observed states.

        Raises
        ------
        UsageError
            if no output-to-state matrix or no Jacobians are configured
        """
        if self.output_to_state is None:
            raise UsageError("initial sensitivity requires an output-to-state matrix")
        self._require_jacobians("initial")

        zeta = np.asarray(zeta, dtype=float).reshape(-1)
        X, segments = self._measured_linearization(zeta)
        return self._analytical(zeta, X, segments)


    # INTERNALS -------------------------------------------------------------------------

    def _require_jacobians(self, mode):
        if not self.model.has_jacobians:
            raise UsageError(
                f"{mode} sensitivity requires the Jacobians df_dx, dh_dx, "
                "df_dzeta and dh_dzeta, set them with set_jacobians()"
            )


    def _jacobian(self, func, x, i, zeta, shape):
        exp = self.experiment
        jac = func(x, exp.u[:, i], zeta, exp.w[:, i])
        return np.asarray(jac, dtype=float).reshape(shape)


    def _numerical(self, zeta):
        exp = self.experiment
        n_p = zeta.size

        S = np.zeros((exp.n_outputs, n_p, exp.n_samples))
        delta = self.perturbations(zeta)

        for j in range(n_p):
            d_zeta = np.zeros(n_p)
            d_zeta[j] = delta[j]

            Y_plus = self.simulator.simulate(zeta + d_zeta)
            Y_minus = self.simulator.simulate(zeta - d_zeta)

            S[:, j, :] = (Y_plus - Y_minus) / (2.0 * delta[j])

        return S


    def _analytical(self, zeta, X, segments):
        """Integrate the variational equation along ``segments``.

        ``X`` holds the linearization states at the samples and ``segments``
        provides the state within each sampling interval, either as a dense
        trajectory or as any callable ``x(t)``.
        """
        exp = self.experiment
        model = self.model

        n_x, n_y, n_p = exp.n_states, exp.n_outputs, zeta.size

        S = np.zeros((n_y, n_p, exp.n_samples))

        #no state sensitivity contribution at the first sample
        S[:, :, 0] = self._jacobian(model.dh_dzeta, exp.x0, 0, zeta, (n_y, n_p))

        #state sensitivity dx/dzeta, zero initial condition
        Sx = np.zeros((n_x, n_p))

        for i in range(exp.n_samples - 1):

            linearization = segments[i]

            def rhs(t, s, i=i, linearization=linearization):
                x = linearization(t)
                Fx = self._jacobian(model.df_dx, x, i, zeta, (n_x, n_x))
                Fz = self._jacobian(model.df_dzeta, x, i, zeta, (n_x, n_p))
                return (Fx @ s.reshape(n_x, n_p) + Fz).ravel()

            traj = self.simulator.integrator.integrate(
                rhs, (exp.t[i], exp.t[i + 1]), Sx.ravel()
            )
            Sx = traj.final.reshape(n_x, n_p)

            Hx = self._jacobian(model.dh_dx, X[:, i + 1], i + 1, zeta, (n_y, n_x))
            Hz = self._jacobian(model.dh_dzeta, X[:, i + 1], i + 1, zeta, (n_y, n_p))
            S[:, :, i + 1] = Hx @ Sx + Hz

        return S


    def _measured_linearization(self, zeta):
        """Linearization trajectory reconstructed from the measurements."""
        exp = self.experiment
        A = self.output_to_state

        measured = np.any(A != 0.0, axis=1)
        X = A @ exp.z

        hidden = ~measured
        if np.any(hidden):
            logger.debug(
                f"propagating {int(hidden.sum())} unmeasured state(s) with the model"
            )
            X[hidden, 0] = exp.x0[hidden]

        segments = []
        for i in range(exp.n_samples - 1):
            traj = None
            if np.any(hidden):
                traj = self.simulator.step(X[:, i], i, zeta, dense=True)
                X[hidden, i + 1] = traj.final[hidden]

            segments.append(
                _linear_segment(
                    exp.t[i], exp.t[i + 1], X[:, i], X[:, i + 1],
                    trajectory=traj, measured=measured,
                )
            )

        return X, segments
