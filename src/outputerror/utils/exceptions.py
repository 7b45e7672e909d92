#########################################################################################
##
##                           EXCEPTIONS AND WARNING CATEGORIES
##                               (utils/exceptions.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from typing import Any


# ERRORS ================================================================================

class ConfigurationError(ValueError):
    """Inconsistent estimator configuration.

    Raised at construction or setter time, before any simulation runs, e.g.
    when the sampling times and the columns of ``u``, ``z``, ``w`` disagree,
    when the output-to-state matrix has the wrong shape, or when the prior
    mean and variance vectors have different lengths.
    """


class UsageError(ValueError):
    """Invalid request at call time.

    Raised when the analytical sensitivity path is requested without all four
    model Jacobians, or when an unknown sensitivity mode is requested.
    """


class NumericalDivergenceError(ArithmeticError):
    """Parameter vector became non-finite during estimation.

    Fatal for the whole estimation; no partial result is returned.
    """


class IntegrationError(RuntimeError):
    """The ODE integrator failed or produced a non-finite state."""


# WARNINGS ==============================================================================

class ConvergenceWarning(UserWarning):
    """Non-fatal termination of the estimator before its convergence tests passed.

    Parameters
    ----------
    kind : str
        machine readable warning kind, e.g. ``"inner_iteration_cap"``
    message : str
        human readable description
    context : dict, optional
        iteration counters and values at the time of the warning

    Attributes
    ----------
    kind : str
    context : dict
    """

    def __init__(self, kind: str, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = dict(context or {})


    def __repr__(self) -> str:
        return f"ConvergenceWarning(kind={self.kind!r}, context={self.context})"
