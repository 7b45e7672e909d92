#########################################################################################
##
##               MEASUREMENT NOISE COVARIANCE AND MAXIMUM LIKELIHOOD COST
##                                (opt/objective.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np

from ..utils.exceptions import ConfigurationError


# PRIOR =================================================================================

class Prior:
    """Gaussian prior on the parameter vector.

    Parameters
    ----------
    mean : array_like
        prior parameter estimates ``zeta_p``, shape ``(Np,)``
    variance : array_like
        prior variances, the diagonal of ``Sigma_p``, shape ``(Np,)``

    Note
    ----
    The covariance is diagonal by construction. It is stored as its
    diagonal so that every solve against it is an elementwise division.
    """

    def __init__(self, mean, variance):
        mean = np.array(mean, dtype=float).reshape(-1)
        variance = np.array(variance, dtype=float).reshape(-1)

        if mean.size != variance.size:
            raise ConfigurationError(
                f"prior mean has {mean.size} entries but variance has {variance.size}"
            )
        if not np.all(np.isfinite(mean)):
            raise ConfigurationError("prior mean must be finite")
        if not np.all(variance > 0.0) or not np.all(np.isfinite(variance)):
            raise ConfigurationError("prior variances must be positive and finite")

        self.mean = mean
        self.variance = variance


    @property
    def covariance(self) -> np.ndarray:
        """Prior covariance ``Sigma_p`` as a dense matrix."""
        return np.diag(self.variance)


    @property
    def information(self) -> np.ndarray:
        """Prior information ``Sigma_p^-1`` as a dense matrix."""
        return np.diag(1.0 / self.variance)


    def __len__(self) -> int:
        return self.mean.size


    def weighted_deviation(self, zeta) -> np.ndarray:
        """Return ``Sigma_p^-1 (zeta - zeta_p)``."""
        return (np.asarray(zeta, dtype=float) - self.mean) / self.variance


    def penalty(self, zeta) -> float:
        """Return ``0.5 (zeta - zeta_p)^T Sigma_p^-1 (zeta - zeta_p)``."""
        v = np.asarray(zeta, dtype=float) - self.mean
        return 0.5 * float(v @ (v / self.variance))


    def __repr__(self) -> str:
        return f"Prior(mean={self.mean}, variance={self.variance})"


# NOISE COVARIANCE ======================================================================

def noise_covariance(z, Y, floor=0.0):
    """Diagonal measurement noise covariance from output residuals.

    Computes ``R = diag((1/Ns) sum_i nu_i nu_i^T)`` with ``nu_i = z_i - Y_i``.
    The off-diagonal terms are discarded, the output channels are assumed to
    have uncorrelated noise.

    Parameters
    ----------
    z : np.ndarray
        measured outputs, shape ``(No, Ns)``
    Y : np.ndarray
        predicted outputs, shape ``(No, Ns)``
    floor : float
        lower bound for each variance, relative to ``max(mean(z_k**2), 1)``
        of the channel

    Returns
    -------
    np.ndarray
        diagonal covariance matrix, shape ``(No, No)``
    """
    z = np.asarray(z, dtype=float)
    Y = np.asarray(Y, dtype=float)

    if z.shape != Y.shape:
        raise ValueError(f"shape mismatch between z {z.shape} and Y {Y.shape}")

    nu = z - Y
    variances = np.mean(nu * nu, axis=1)

    if floor > 0.0:
        scale = np.maximum(np.mean(z * z, axis=1), 1.0)
        variances = np.maximum(variances, floor * scale)

    return np.diag(variances)


# COST FUNCTION =========================================================================

def cost_function(z, Y, R, zeta, prior=None):
    """Negative log likelihood of the output error.

    ``J = 0.5 sum_i nu_i^T R^-1 nu_i`` plus, if a prior is given,
    ``0.5 (zeta - zeta_p)^T Sigma_p^-1 (zeta - zeta_p)``.

    Parameters
    ----------
    z : np.ndarray
        measured outputs, shape ``(No, Ns)``
    Y : np.ndarray
        predicted outputs, shape ``(No, Ns)``
    R : np.ndarray
        diagonal noise covariance, shape ``(No, No)``
    zeta : np.ndarray
        parameter vector, shape ``(Np,)``
    prior : Prior, optional
        Gaussian parameter prior

    Returns
    -------
    float
    """
    nu = np.asarray(z, dtype=float) - np.asarray(Y, dtype=float)

    #R is diagonal, the solve is an elementwise division
    r_diag = np.diag(R)[:, None]
    J = 0.5 * float(np.sum(nu * nu / r_diag))

    if prior is not None:
        J += prior.penalty(zeta)

    return J


# INFORMATION AND GRADIENT ==============================================================

def fisher_information(S, R):
    """Fisher information matrix ``M = sum_i S_i^T R^-1 S_i``.

    Parameters
    ----------
    S : np.ndarray
        output sensitivities, shape ``(No, Np, Ns)``
    R : np.ndarray
        diagonal noise covariance, shape ``(No, No)``

    Returns
    -------
    np.ndarray
        symmetric positive semi-definite matrix, shape ``(Np, Np)``
    """
    S = np.asarray(S, dtype=float)
    r_inv = 1.0 / np.diag(R)

    M = np.einsum("kpi,k,kqi->pq", S, r_inv, S)

    #remove rounding asymmetry
    return 0.5 * (M + M.T)


def cost_gradient(S, R, z, Y):
    """Gradient of the output error cost, ``g = -sum_i S_i^T R^-1 (z_i - Y_i)``."""
    nu = np.asarray(z, dtype=float) - np.asarray(Y, dtype=float)
    r_inv = 1.0 / np.diag(R)
    return -np.einsum("kpi,k,ki->p", np.asarray(S, dtype=float), r_inv, nu)
