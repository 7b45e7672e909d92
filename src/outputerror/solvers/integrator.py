########################################################################################
##
##                       ADAPTIVE ODE INTEGRATOR (SCIPY BACKEND)
##                              (solvers/integrator.py)
##
########################################################################################

# IMPORTS ==============================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import numpy as np
import scipy.integrate as sci_int

from ..utils.exceptions import IntegrationError


# TRAJECTORY ===========================================================================

@dataclass
class Trajectory:
    """Solution of a single integration interval.

    Parameters
    ----------
    t : np.ndarray
        time points chosen by the solver, shape ``(n,)``
    x : np.ndarray
        states at those time points, shape ``(n_states, n)``
    interpolant : callable, optional
        dense output ``x(t)`` valid on the integration interval, only
        available when the integration was requested with ``dense=True``
    nfev : int
        number of right hand side evaluations
    """

    t: np.ndarray
    x: np.ndarray
    interpolant: Callable[[float], np.ndarray] | None = None
    nfev: int = 0


    @property
    def final(self) -> np.ndarray:
        """State at the end of the interval."""
        return self.x[:, -1]


    def __call__(self, t: float) -> np.ndarray:
        """Evaluate the dense output at time ``t``."""
        if self.interpolant is None:
            raise ValueError("Trajectory has no dense output, integrate with dense=True")
        return self.interpolant(t)


# SOLVER ===============================================================================

class ScipyIntegrator:
    """Variable step integrator built on ``scipy.integrate.solve_ivp``.

    Satisfies the integrator contract of the estimator:
    ``integrate(rhs, t_span, x_initial) -> Trajectory`` where ``rhs(t, x)``
    is the vector field and the returned trajectory holds at least the state
    at the end of ``t_span``.

    Parameters
    ----------
    method : str
        any ``solve_ivp`` method, ``"RK45"`` (Dormand-Prince) by default,
        ``"Radau"``, ``"BDF"`` or ``"LSODA"`` for stiff models
    rtol : float
        relative local error tolerance
    atol : float
        absolute local error tolerance
    max_step : float
        upper bound for the internal step size

    Note
    ----
    The finite difference sensitivities perturb parameters by ``1e-3``
    relative. Step size selection of the adaptive solver changes with the
    parameters, so the tolerances must be well below that perturbation for
    the central differences to be meaningful. The defaults are chosen
    accordingly and are considerably tighter than the ``solve_ivp`` defaults.
    """

    def __init__(self, method="RK45", rtol=1e-8, atol=1e-10, max_step=np.inf):

        if rtol <= 0.0 or atol <= 0.0:
            raise ValueError(f"tolerances must be positive, got rtol={rtol}, atol={atol}")

        self.method = method
        self.rtol = rtol
        self.atol = atol
        self.max_step = max_step


    def integrate(self, rhs, t_span, x_initial, dense=False):
        """Integrate ``rhs`` over ``t_span`` starting at ``x_initial``.

        Parameters
        ----------
        rhs : callable
            vector field ``rhs(t, x) -> dx/dt``
        t_span : tuple[float, float]
            integration interval
        x_initial : array_like
            initial state
        dense : bool
            compute a continuous interpolant of the solution

        Returns
        -------
        Trajectory

        Raises
        ------
        IntegrationError
            if the solver reports a failure or the end state is not finite
        """

        t0, t1 = float(t_span[0]), float(t_span[1])
        x0 = np.asarray(x_initial, dtype=float).reshape(-1)

        #nothing to integrate for a zero dimensional state
        if x0.size == 0:
            return Trajectory(
                t=np.array([t0, t1]),
                x=np.zeros((0, 2)),
                interpolant=(lambda t: np.zeros(0)) if dense else None,
            )

        sol = sci_int.solve_ivp(
            rhs,
            (t0, t1),
            x0,
            method=self.method,
            rtol=self.rtol,
            atol=self.atol,
            max_step=self.max_step,
            dense_output=dense,
        )

        if not sol.success:
            raise IntegrationError(
                f"integration over [{t0}, {t1}] failed: {sol.message}"
            )

        if not np.all(np.isfinite(sol.y[:, -1])):
            raise IntegrationError(
                f"integration over [{t0}, {t1}] produced a non-finite state"
            )

        return Trajectory(
            t=sol.t,
            x=sol.y,
            interpolant=sol.sol if dense else None,
            nfev=int(sol.nfev),
        )


    def __repr__(self) -> str:
        return (
            f"ScipyIntegrator(method={self.method!r}, "
            f"rtol={self.rtol:.1e}, atol={self.atol:.1e})"
        )
