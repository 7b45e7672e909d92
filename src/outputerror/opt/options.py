#########################################################################################
##
##                        ESTIMATOR TOLERANCES AND ITERATION LIMITS
##                                 (opt/options.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

from ..utils.exceptions import ConfigurationError


# CLASS =================================================================================

@dataclass(frozen=True)
class EstimatorOptions:
    """Stopping criteria, iteration caps and finite difference settings.

    Parameters
    ----------
    parameter_tolerance : float
        inner loop stops once every component of the parameter step is
        below this value
    cost_rtol : float
        relative cost change accepted by the outer convergence test
    cost_atol : float
        absolute cost change accepted by the outer convergence test, the
        cost is normalized by the noise covariance and therefore unitless
    noise_rtol : float
        relative change of every noise variance accepted by the outer
        convergence test
    gradient_tolerance : float, optional
        if set, the outer convergence test additionally requires every
        component of the cost gradient to be below this value
    max_inner_iterations : int
        Gauss-Newton updates per outer pass before giving up
    max_outer_iterations : int
        noise covariance re-estimations before giving up
    max_step_halvings : int
        step halvings per line search before the update counts as stalled
    max_stalls : int
        consecutive stalled line searches that end the estimation
    analytical_iterations : int
        number of initial inner iterations of the first outer pass that use
        analytical sensitivities when Jacobians are available
    fd_relative_step : float
        central difference perturbation relative to ``|zeta_j|``
    fd_absolute_step : float
        central difference perturbation used when ``zeta_j == 0``
    noise_floor : float
        lower bound for the noise variances relative to ``max(mean(z_k**2), 1)``
        of each output channel, ``0`` disables the floor
    """

    parameter_tolerance: float = 1e-5
    cost_rtol: float = 1e-3
    cost_atol: float = 1e-3
    noise_rtol: float = 0.05
    gradient_tolerance: float | None = None
    max_inner_iterations: int = 100
    max_outer_iterations: int = 1000
    max_step_halvings: int = 10
    max_stalls: int = 10
    analytical_iterations: int = 5
    fd_relative_step: float = 1e-3
    fd_absolute_step: float = 1e-6
    noise_floor: float = 1e-12


    def __post_init__(self):

        for name in ("parameter_tolerance", "cost_rtol", "noise_rtol",
                     "fd_relative_step", "fd_absolute_step"):
            value = getattr(self, name)
            if not value > 0.0:
                raise ConfigurationError(f"'{name}' must be positive, got {value}")

        for name in ("cost_atol", "noise_floor"):
            value = getattr(self, name)
            if not value >= 0.0:
                raise ConfigurationError(f"'{name}' must be non-negative, got {value}")

        if self.gradient_tolerance is not None and not self.gradient_tolerance > 0.0:
            raise ConfigurationError(
                f"'gradient_tolerance' must be positive or None, got {self.gradient_tolerance}"
            )

        for name in ("max_inner_iterations", "max_outer_iterations",
                     "max_step_halvings", "max_stalls"):
            value = getattr(self, name)
            if int(value) != value or value < 1:
                raise ConfigurationError(f"'{name}' must be a positive integer, got {value}")

        if int(self.analytical_iterations) != self.analytical_iterations or self.analytical_iterations < 0:
            raise ConfigurationError(
                f"'analytical_iterations' must be a non-negative integer, "
                f"got {self.analytical_iterations}"
            )


    def replace(self, **changes) -> "EstimatorOptions":
        """Return a copy with the given fields replaced."""
        unknown = set(changes) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise ConfigurationError(f"Unknown estimator option(s): {sorted(unknown)}")
        return dataclasses.replace(self, **changes)
