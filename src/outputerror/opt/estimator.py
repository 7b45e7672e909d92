#########################################################################################
##
##                     OUTPUT ERROR METHOD (GAUSS-NEWTON ESTIMATOR)
##                                (opt/estimator.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np

from ..experiment import Experiment
from ..model import Model
from ..solvers.integrator import ScipyIntegrator
from ..utils.exceptions import (
    ConfigurationError,
    ConvergenceWarning,
    IntegrationError,
    NumericalDivergenceError,
    UsageError,
)
from ..utils.logger import LoggerManager
from .objective import (
    Prior,
    cost_function,
    cost_gradient,
    fisher_information,
    noise_covariance,
)
from .options import EstimatorOptions
from .progress import ProgressEvent
from .result import EstimationResult, TerminationReason
from .sensitivity import (
    ANALYTICAL,
    NUMERICAL,
    SensitivityEngine,
    check_output_to_state_matrix,
)
from .simulator import TrajectorySimulator


__all__ = [
    "OutputErrorEstimator",
]

logger = LoggerManager().get_logger("opt.estimator")

# sensitivity mode of the very first inner iteration when x = A y is known
_INITIAL = "initial"


# HELPERS ===============================================================================

def _relative_change(new, old) -> np.ndarray:
    """Elementwise ``|new - old| / |old|``, zero over zero counts as no change."""
    new = np.atleast_1d(np.asarray(new, dtype=float))
    old = np.atleast_1d(np.asarray(old, dtype=float))
    diff = np.abs(new - old)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(
            old != 0.0,
            diff / np.abs(old),
            np.where(diff == 0.0, 0.0, np.inf),
        )


# ITERATION STATE =======================================================================

@dataclass
class _IterationState:
    """Mutable record owned by a single ``estimate_parameters`` call."""

    zeta: np.ndarray
    Y: np.ndarray
    R: np.ndarray
    J: float
    outer: int = 0
    inner_total: int = 0
    gradient: np.ndarray | None = None
    zeta_history: list = field(default_factory=list)
    cost_history: list = field(default_factory=list)
    warnings: list = field(default_factory=list)


    def start_pass(self) -> None:
        """Reset the histories, they are only valid for a constant ``R``."""
        self.zeta_history = [self.zeta.copy()]
        self.cost_history = [self.J]


    def record(self) -> None:
        self.zeta_history.append(self.zeta.copy())
        self.cost_history.append(self.J)


# ESTIMATOR =============================================================================

class OutputErrorEstimator:
    """Maximum likelihood parameter estimation with the output error method.

    Fits the parameters ``zeta`` of the continuous time model

    .. math::

        \\dot{x} = f(x, u, \\zeta, w), \\quad y = h(x, u, \\zeta, w)

    to the measured outputs ``z`` by minimizing

    .. math::

        J = \\frac{1}{2} \\sum_i (z_i - y_i)^T R^{-1} (z_i - y_i)

    with a damped Gauss-Newton iteration. The measurement noise covariance
    ``R`` is unknown and re-estimated from the residuals in an outer loop
    until both the cost and ``R`` settle.

    Parameters
    ----------
    f : callable
        state equation ``f(x, u, zeta, w)``, length ``Nd``
    h : callable
        output equation ``h(x, u, zeta, w)``, length ``No``
    x0 : array_like
        initial state, shape ``(Nd,)``
    t : array_like
        sampling times, shape ``(Ns,)``
    u : array_like or None
        control inputs, shape ``(Nc, Ns)``
    z : array_like
        measured outputs, shape ``(No, Ns)``
    w : array_like or None
        auxiliary measured data, shape ``(Na, Ns)``
    options : EstimatorOptions, optional
        tolerances and iteration caps
    integrator : object, optional
        ODE integrator with ``integrate(rhs, t_span, x_initial, dense=False)``,
        a :class:`ScipyIntegrator` by default

    Notes
    -----
    **Optional configuration**, each setter returns the estimator:

    - :meth:`set_jacobians` enables analytical sensitivities for the first
      iterations, which makes the start less sensitive to a poor guess.
    - :meth:`set_output_to_state_matrix` defines ``x = A y`` so the very first
      sensitivity is linearized about the measured trajectory instead of the
      simulation at the initial guess (requires the Jacobians).
    - :meth:`set_known_parameter_estimates` adds a Gaussian prior, turning
      the estimate into a Bayes-like one.
    - :meth:`set_parameter_names` / :meth:`set_output_names` label results.

    Example
    -------
    .. code-block:: python

        import numpy as np
        from outputerror import OutputErrorEstimator

        est = OutputErrorEstimator(
            f=lambda x, u, zeta, w: -zeta[0] * x + zeta[1] * u,
            h=lambda x, u, zeta, w: x,
            x0=[0.0], t=t, u=u, z=z, w=None,
        )
        est.set_parameter_names(["a", "b"])

        zeta, M, R = est.estimate_parameters([1.0, 1.0])
    """

    def __init__(
        self,
        f: Callable,
        h: Callable,
        x0,
        t,
        u,
        z,
        w,
        *,
        options: EstimatorOptions | None = None,
        integrator=None,
    ):
        self.model = Model(f=f, h=h)
        self.experiment = Experiment(t=t, u=u, z=z, w=w, x0=x0)
        self.options = options if options is not None else EstimatorOptions()
        self.integrator = integrator if integrator is not None else ScipyIntegrator()

        self.output_to_state: np.ndarray | None = None
        self.prior: Prior | None = None
        self.parameter_names: list[str] | None = None
        self.output_names: list[str] | None = None


    @classmethod
    def from_model(
        cls,
        model: Model,
        experiment: Experiment,
        *,
        options: EstimatorOptions | None = None,
        integrator=None,
    ) -> "OutputErrorEstimator":
        """Build an estimator from an existing :class:`Model` and :class:`Experiment`."""
        est = cls(
            model.f, model.h,
            experiment.x0, experiment.t, experiment.u, experiment.z, experiment.w,
            options=options,
            integrator=integrator,
        )
        est.model = model
        return est


    # CONFIGURATION API -----------------------------------------------------------------

    def set_jacobians(self, df_dx, dh_dx, df_dzeta, dh_dzeta) -> "OutputErrorEstimator":
        """Attach the model Jacobians, enabling analytical sensitivities.

        Parameters
        ----------
        df_dx : callable
            ``(x, u, zeta, w) -> (Nd, Nd)``
        dh_dx : callable
            ``(x, u, zeta, w) -> (No, Nd)``
        df_dzeta : callable
            ``(x, u, zeta, w) -> (Nd, Np)``
        dh_dzeta : callable
            ``(x, u, zeta, w) -> (No, Np)``

        Returns
        -------
        OutputErrorEstimator
        """
        self.model = self.model.with_jacobians(df_dx, dh_dx, df_dzeta, dh_dzeta)
        return self


    def set_output_to_state_matrix(self, A) -> "OutputErrorEstimator":
        """Define the output-to-state mapping ``x = A y``.

        The first sensitivity computation is then linearized about the states
        reconstructed from the measurements. If ``A`` covers every state, the
        initial parameter guess matters much less.

        Parameters
        ----------
        A : array_like
            matrix of shape ``(Nd, No)`` with full column rank, all-zero rows
            mark states that are not measured

        Returns
        -------
        OutputErrorEstimator

        Raises
        ------
        ConfigurationError
            if the shape is inconsistent with ``x0`` and ``z`` or the rank is
            deficient
        """
        exp = self.experiment
        self.output_to_state = check_output_to_state_matrix(A, exp.n_states, exp.n_outputs)
        return self


    def set_known_parameter_estimates(self, zeta_p, sigma_zeta_p) -> "OutputErrorEstimator":
        """Add a Gaussian prior with mean ``zeta_p`` and variances ``sigma_zeta_p``.

        Raises
        ------
        ConfigurationError
            if the two vectors differ in length or a variance is not positive
        """
        self.prior = Prior(zeta_p, sigma_zeta_p)
        return self


    def set_parameter_names(self, names: Sequence[str]) -> "OutputErrorEstimator":
        """Display names of the parameters, checked against ``zeta0`` at estimation."""
        self.parameter_names = [str(n) for n in names]
        return self


    def set_output_names(self, names: Sequence[str]) -> "OutputErrorEstimator":
        """Display names of the output channels."""
        names = [str(n) for n in names]
        if len(names) != self.experiment.n_outputs:
            raise ConfigurationError(
                f"got {len(names)} output names for {self.experiment.n_outputs} outputs"
            )
        self.output_names = names
        return self


    # CAPABILITIES ----------------------------------------------------------------------

    @property
    def has_jacobians(self) -> bool:
        return self.model.has_jacobians


    @property
    def has_output_to_state_matrix(self) -> bool:
        return self.output_to_state is not None


    @property
    def has_parameter_estimates(self) -> bool:
        return self.prior is not None


    # COMPONENTS ------------------------------------------------------------------------

    def _simulator(self) -> TrajectorySimulator:
        return TrajectorySimulator(self.model, self.experiment, self.integrator)


    def _engine(self, simulator, options) -> SensitivityEngine:
        return SensitivityEngine(
            simulator,
            output_to_state=self.output_to_state,
            fd_relative_step=options.fd_relative_step,
            fd_absolute_step=options.fd_absolute_step,
        )


    def simulate(self, zeta) -> np.ndarray:
        """Predicted output sequence ``Y`` (``No x Ns``) at ``zeta``."""
        return self._simulator().simulate(zeta)


    def sensitivity(self, zeta, mode: str = NUMERICAL) -> np.ndarray:
        """Output sensitivities (``No x Np x Ns``), ``mode`` is ``"numerical"`` or ``"analytical"``."""
        return self._engine(self._simulator(), self.options).sensitivity(zeta, mode)


    def initial_sensitivity(self, zeta) -> np.ndarray:
        """Analytical sensitivities linearized about ``A z``."""
        return self._engine(self._simulator(), self.options).initial_sensitivity(zeta)


    def covariance(self, Y) -> np.ndarray:
        """Diagonal noise covariance ``R`` from the residuals of ``Y``."""
        return noise_covariance(self.experiment.z, Y, self.options.noise_floor)


    def cost(self, R, Y, zeta) -> float:
        """Cost of the output sequence ``Y`` under ``R``, including the prior if set."""
        return cost_function(self.experiment.z, Y, R, zeta, self.prior)


    # VALIDATION ------------------------------------------------------------------------

    def _validate(self, zeta0) -> np.ndarray:
        """Check the configuration against ``zeta0`` before any simulation."""
        zeta = np.array(zeta0, dtype=float).reshape(-1)

        if zeta.size == 0:
            raise UsageError("zeta0 must contain at least one parameter")
        if not np.all(np.isfinite(zeta)):
            raise UsageError(f"zeta0 must be finite, got {zeta}")

        if self.prior is not None and len(self.prior) != zeta.size:
            raise ConfigurationError(
                f"prior has {len(self.prior)} entries but zeta0 has {zeta.size}"
            )
        if self.parameter_names is not None and len(self.parameter_names) != zeta.size:
            raise ConfigurationError(
                f"got {len(self.parameter_names)} parameter names for {zeta.size} parameters"
            )
        if self.output_to_state is not None and not self.model.has_jacobians:
            raise UsageError(
                "the output-to-state matrix is only used by the analytical "
                "initial sensitivity, set the Jacobians with set_jacobians()"
            )

        return zeta


    # ESTIMATION ------------------------------------------------------------------------

    def estimate_parameters(
        self,
        zeta0,
        *,
        observer: Callable[[ProgressEvent], None] | None = None,
        **overrides,
    ) -> EstimationResult:
        """Iteratively estimate the parameters starting from ``zeta0``.

        Parameters
        ----------
        zeta0 : array_like
            initial parameter estimate, shape ``(Np,)``
        observer : callable, optional
            called with a :class:`ProgressEvent` after every inner iteration,
            e.g. a :class:`ProgressPlotter`
        **overrides
            replacements for fields of :class:`EstimatorOptions` for this call

        Returns
        -------
        EstimationResult
            unpacks as ``(zeta, M, R)``

        Raises
        ------
        ConfigurationError, UsageError
            before any simulation, for an inconsistent setup
        NumericalDivergenceError
            if the parameter update becomes non-finite
        IntegrationError
            if the model cannot be simulated at ``zeta0``

        Warns
        -----
        ConvergenceWarning
            if the inner or outer iteration cap is reached, the best estimate
            so far is returned
        """
        options = self.options.replace(**overrides) if overrides else self.options
        zeta = self._validate(zeta0)

        simulator = self._simulator()
        engine = self._engine(simulator, options)
        z = self.experiment.z

        logger.info(
            f"estimating {zeta.size} parameter(s) from {self.experiment.n_samples} "
            f"samples of {self.experiment.n_outputs} output(s)"
        )

        Y = simulator.simulate(zeta)
        R = noise_covariance(z, Y, options.noise_floor)
        J = cost_function(z, Y, R, zeta, self.prior)

        state = _IterationState(zeta=zeta, Y=Y, R=R, J=J)

        termination = None
        while termination is None:

            R_prev, J_prev = state.R, state.J

            termination = self._inner_loop(state, simulator, engine, options, observer)
            if termination is not None:
                break

            state.outer += 1

            #new output sequence and noise covariance at the converged parameters
            state.Y = simulator.simulate(state.zeta)
            state.R = noise_covariance(z, state.Y, options.noise_floor)
            state.J = cost_function(z, state.Y, state.R, state.zeta, self.prior)

            logger.info(
                f"outer pass {state.outer}: J={state.J:.6g}, "
                f"diag(R)={np.diag(state.R)}, zeta={state.zeta}"
            )

            if self._outer_converged(state, J_prev, R_prev, options):
                termination = TerminationReason.CONVERGED
            elif state.outer >= options.max_outer_iterations:
                self._warn(
                    state,
                    "outer_iteration_cap",
                    f"exceeded maximum number of outer iterations ({options.max_outer_iterations})",
                )
                termination = TerminationReason.OUTER_ITERATION_CAP

        return self._report(state, engine, termination)


    def _sensitivity_mode(self, outer, inner, options) -> str:
        """Bootstrap, then analytical, then numerical sensitivities."""
        if outer == 0 and inner == 0 and self.output_to_state is not None:
            return _INITIAL
        if outer == 0 and inner < options.analytical_iterations and self.model.has_jacobians:
            return ANALYTICAL
        return NUMERICAL


    def _evaluate(self, simulator, zeta, R):
        """Output sequence and cost of a candidate, ``(None, inf)`` if it cannot be simulated."""
        try:
            Y = simulator.simulate(zeta)
        except IntegrationError as err:
            logger.debug(f"candidate {zeta} rejected: {err}")
            return None, np.inf

        J = cost_function(self.experiment.z, Y, R, zeta, self.prior)
        return Y, (J if np.isfinite(J) else np.inf)


    def _inner_loop(self, state, simulator, engine, options, observer):
        """Gauss-Newton updates at a fixed noise covariance.

        Returns ``None`` once the parameter step is below tolerance, otherwise
        the reason for ending the whole estimation.
        """
        z = self.experiment.z
        R = state.R

        state.start_pass()
        stalls = 0
        inner = 0

        while True:

            # 1. output sensitivities
            mode = self._sensitivity_mode(state.outer, inner, options)
            logger.debug(f"outer {state.outer}, inner {inner}: {mode} sensitivities")

            if mode == _INITIAL:
                S = engine.initial_sensitivity(state.zeta)
            else:
                S = engine.sensitivity(state.zeta, mode)

            # 2. information matrix and cost gradient
            M = fisher_information(S, R)
            g = cost_gradient(S, R, z, state.Y)
            state.gradient = g

            if not (np.all(np.isfinite(M)) and np.all(np.isfinite(g))):
                raise NumericalDivergenceError(
                    f"non-finite information matrix or gradient at zeta={state.zeta} "
                    f"(outer {state.outer}, inner {inner})"
                )

            # 3. Gauss-Newton direction, prior fused if available
            if self.prior is not None:
                d_zeta = -np.linalg.pinv(M + self.prior.information) @ (
                    g + self.prior.weighted_deviation(state.zeta)
                )
            else:
                d_zeta = -np.linalg.pinv(M) @ g

            if not np.all(np.isfinite(d_zeta)):
                raise NumericalDivergenceError(
                    f"non-finite parameter update {d_zeta} at zeta={state.zeta} "
                    f"(outer {state.outer}, inner {inner})"
                )

            zeta_prev = state.zeta

            # 4. step halving until the cost does not increase
            accepted = False
            for k in range(options.max_step_halvings):
                candidate = zeta_prev + d_zeta / 2**k
                Y, J = self._evaluate(simulator, candidate, R)
                if J <= state.cost_history[-1]:
                    accepted = True
                    break

            if accepted:
                stalls = 0
                state.zeta, state.Y, state.J = candidate, Y, J
            else:
                stalls += 1
                logger.warning(
                    f"no step found to decrease the cost function "
                    f"({stalls}/{options.max_stalls})"
                )
                candidate = zeta_prev + d_zeta / 2**options.max_step_halvings
                Y, J = self._evaluate(simulator, candidate, R)
                if Y is not None:
                    state.zeta, state.Y, state.J = candidate, Y, J

            # 5. divergence
            if not np.all(np.isfinite(state.zeta)):
                raise NumericalDivergenceError(f"NaN/Inf detected in zeta={state.zeta}")

            # 6. history and progress
            state.record()
            inner += 1
            state.inner_total += 1

            logger.debug(
                f"outer {state.outer}, inner {inner}: J={state.J:.6g}, zeta={state.zeta}"
            )

            if observer is not None:
                observer(self._event(state, inner))

            if stalls >= options.max_stalls:
                logger.info("possible solution found, line search stalled repeatedly")
                return TerminationReason.STALLED

            # 7. parameter step below tolerance
            if np.all(np.abs(state.zeta - zeta_prev) < options.parameter_tolerance):
                return None

            # 8. iteration cap
            if inner >= options.max_inner_iterations:
                self._warn(
                    state,
                    "inner_iteration_cap",
                    f"exceeded maximum number of inner iterations ({options.max_inner_iterations})",
                    inner_iteration=inner,
                )
                return TerminationReason.INNER_ITERATION_CAP


    def _outer_converged(self, state, J_prev, R_prev, options) -> bool:
        """Relative cost change and relative noise variance change test."""
        cost_ok = bool(
            _relative_change(state.J, J_prev)[0] < options.cost_rtol
            or abs(state.J - J_prev) < options.cost_atol
        )
        noise_ok = bool(np.all(
            _relative_change(np.diag(state.R), np.diag(R_prev)) < options.noise_rtol
        ))

        converged = cost_ok and noise_ok

        if options.gradient_tolerance is not None and state.gradient is not None:
            converged = converged and bool(np.all(np.abs(state.gradient) < options.gradient_tolerance))

        return converged


    def _event(self, state, inner) -> ProgressEvent:
        exp = self.experiment
        n_p = state.zeta.size
        return ProgressEvent(
            outer_iteration=state.outer,
            inner_iteration=inner,
            zeta=state.zeta.copy(),
            zeta_history=np.column_stack(state.zeta_history),
            cost_history=np.array(state.cost_history),
            residuals=exp.z - state.Y,
            t=exp.t.copy(),
            z=exp.z.copy(),
            parameter_names=list(self.parameter_names or [f"zeta_{j}" for j in range(n_p)]),
            output_names=list(self.output_names or [f"y_{k}" for k in range(exp.n_outputs)]),
        )


    def _warn(self, state, kind, message, **context) -> None:
        context.setdefault("outer_iteration", state.outer)
        context.setdefault("zeta", state.zeta.copy())
        context.setdefault("cost", state.J)

        warning = ConvergenceWarning(kind, message, context)
        state.warnings.append(warning)
        logger.warning(message)
        warnings.warn(warning, stacklevel=4)


    def _report(self, state, engine, termination) -> EstimationResult:
        """Final Fisher information from numerical sensitivities at the estimate."""
        S = engine.sensitivity(state.zeta, NUMERICAL)
        M = fisher_information(S, state.R)

        logger.info(f"estimation finished ({termination.value}): zeta={state.zeta}")

        return EstimationResult(
            zeta=state.zeta.copy(),
            fim=M,
            noise_covariance=state.R.copy(),
            cost=state.J,
            termination=termination,
            outer_iterations=state.outer,
            inner_iterations=state.inner_total,
            zeta_history=np.column_stack(state.zeta_history),
            cost_history=np.array(state.cost_history),
            warnings=state.warnings,
            parameter_names=self.parameter_names,
            output_names=self.output_names,
        )


    def __repr__(self) -> str:
        return (
            f"OutputErrorEstimator({self.experiment!r}, "
            f"jacobians={self.has_jacobians}, "
            f"output_to_state={self.has_output_to_state_matrix}, "
            f"prior={self.has_parameter_estimates})"
        )
