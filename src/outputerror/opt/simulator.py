#########################################################################################
##
##                          OUTPUT SEQUENCE SIMULATION
##                               (opt/simulator.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np

from ..solvers.integrator import ScipyIntegrator


# CLASS =================================================================================

class TrajectorySimulator:
    """Sample-to-sample simulation of a model over an experiment.

    The state equation is integrated over each sampling interval with the
    control and auxiliary data held constant at the value of the interval
    start (zero-order hold). The state reached at the end of an interval is
    the initial condition of the next one.

    Parameters
    ----------
    model : Model
        state and output equations
    experiment : Experiment
        sampling times, inputs, measurements and initial state
    integrator : object, optional
        anything with ``integrate(rhs, t_span, x_initial, dense=False)``,
        a :class:`ScipyIntegrator` with default tolerances if omitted
    """

    def __init__(self, model, experiment, integrator=None):
        self.model = model
        self.experiment = experiment
        self.integrator = integrator if integrator is not None else ScipyIntegrator()


    # MODEL EVALUATION ------------------------------------------------------------------

    def state_derivative(self, x, i, zeta):
        """Evaluate ``f`` at the data of sample ``i``."""
        exp = self.experiment
        dx = self.model.f(x, exp.u[:, i], zeta, exp.w[:, i])
        return np.asarray(dx, dtype=float).reshape(exp.n_states)


    def output(self, x, i, zeta):
        """Evaluate ``h`` at the data of sample ``i``."""
        exp = self.experiment
        y = self.model.h(x, exp.u[:, i], zeta, exp.w[:, i])
        return np.asarray(y, dtype=float).reshape(exp.n_outputs)


    def step(self, x, i, zeta, dense=False):
        """Integrate the state equation from ``t[i]`` to ``t[i+1]``.

        Returns
        -------
        Trajectory
            solution of the interval, with dense output if requested
        """
        exp = self.experiment

        def rhs(t, x_t):
            return self.state_derivative(x_t, i, zeta)

        return self.integrator.integrate(rhs, (exp.t[i], exp.t[i + 1]), x, dense=dense)


    # SIMULATION ------------------------------------------------------------------------

    def simulate_states(self, zeta, dense=False):
        """Simulate the state sequence at the sampling times.

        Parameters
        ----------
        zeta : array_like
            parameter vector
        dense : bool
            also return the per-interval dense trajectories

        Returns
        -------
        X : np.ndarray
            states at the sampling times, shape ``(Nd, Ns)``
        segments : list of Trajectory
            solution of every sampling interval (``Ns - 1`` entries),
            with dense output only if ``dense=True``

        Raises
        ------
        IntegrationError
            if any interval fails to integrate
        """
        exp = self.experiment
        zeta = np.asarray(zeta, dtype=float)

        X = np.zeros((exp.n_states, exp.n_samples))
        X[:, 0] = exp.x0

        segments = []
        for i in range(exp.n_samples - 1):
            traj = self.step(X[:, i], i, zeta, dense=dense)
            X[:, i + 1] = traj.final
            segments.append(traj)

        return X, segments


    def outputs(self, X, zeta):
        """Map a state sequence to the output sequence."""
        exp = self.experiment
        Y = np.zeros((exp.n_outputs, exp.n_samples))
        for i in range(exp.n_samples):
            Y[:, i] = self.output(X[:, i], i, zeta)
        return Y


    def simulate(self, zeta):
        """Predicted output sequence for a parameter vector.

        Parameters
        ----------
        zeta : array_like
            parameter vector

        Returns
        -------
        np.ndarray
            predicted outputs, shape ``(No, Ns)``, ``Y[:, 0]`` is the output
            equation evaluated at the initial state
        """
        zeta = np.asarray(zeta, dtype=float)
        X, _ = self.simulate_states(zeta)
        return self.outputs(X, zeta)


    def __call__(self, zeta):
        return self.simulate(zeta)
