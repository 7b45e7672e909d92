#########################################################################################
##
##                            PARAMETRIC STATE SPACE MODEL
##                                    (model.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Callable

import numpy as np


# TYPES =================================================================================

ModelFunction = Callable[[np.ndarray, np.ndarray, np.ndarray, np.ndarray], np.ndarray]


# CLASS =================================================================================

@dataclass(frozen=True)
class Model:
    """Continuous time model ``dx/dt = f(x, u, zeta, w)``, ``y = h(x, u, zeta, w)``.

    The model is a capability set: the state and output equations are always
    required, the four Jacobians are optional and only enable the analytical
    sensitivity path when all of them are supplied.

    Parameters
    ----------
    f : callable
        state equation, returns the state derivative of length ``Nd``
    h : callable
        output equation, returns the output of length ``No``
    df_dx : callable, optional
        state Jacobian of ``f``, shape ``(Nd, Nd)``
    dh_dx : callable, optional
        state Jacobian of ``h``, shape ``(No, Nd)``
    df_dzeta : callable, optional
        parameter Jacobian of ``f``, shape ``(Nd, Np)``
    dh_dzeta : callable, optional
        parameter Jacobian of ``h``, shape ``(No, Np)``

    Note
    ----
    All callables share the signature ``(x, u, zeta, w)`` where ``u`` and
    ``w`` are the control and auxiliary data columns of the current sample.

    Example
    -------
    .. code-block:: python

        model = Model(
            f=lambda x, u, zeta, w: -zeta[0] * x,
            h=lambda x, u, zeta, w: x,
            )

        model = model.with_jacobians(
            df_dx=lambda x, u, zeta, w: np.array([[-zeta[0]]]),
            dh_dx=lambda x, u, zeta, w: np.eye(1),
            df_dzeta=lambda x, u, zeta, w: -x.reshape(1, 1),
            dh_dzeta=lambda x, u, zeta, w: np.zeros((1, 1)),
            )
    """

    f: ModelFunction
    h: ModelFunction
    df_dx: ModelFunction | None = None
    dh_dx: ModelFunction | None = None
    df_dzeta: ModelFunction | None = None
    dh_dzeta: ModelFunction | None = None


    def __post_init__(self):
        for name in ("f", "h"):
            if not callable(getattr(self, name)):
                raise TypeError(f"Model.{name} must be callable")

        for name in ("df_dx", "dh_dx", "df_dzeta", "dh_dzeta"):
            func = getattr(self, name)
            if func is not None and not callable(func):
                raise TypeError(f"Model.{name} must be callable or None")


    @property
    def has_jacobians(self) -> bool:
        """True if all four Jacobians are available."""
        return all(
            func is not None
            for func in (self.df_dx, self.dh_dx, self.df_dzeta, self.dh_dzeta)
        )


    def with_jacobians(self, df_dx, dh_dx, df_dzeta, dh_dzeta) -> "Model":
        """Return a copy of the model with the four Jacobians attached."""
        return dataclasses.replace(
            self,
            df_dx=df_dx,
            dh_dx=dh_dx,
            df_dzeta=df_dzeta,
            dh_dzeta=dh_dzeta,
        )
