#########################################################################################
##
##                     ESTIMATION RESULT AND PARAMETER UNCERTAINTY
##                                  (opt/result.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

from enum import Enum

import numpy as np


# TERMINATION ===========================================================================

class TerminationReason(Enum):
    """Why the estimation loop ended."""

    CONVERGED = "converged"
    STALLED = "stalled"
    INNER_ITERATION_CAP = "inner_iteration_cap"
    OUTER_ITERATION_CAP = "outer_iteration_cap"


# HELPERS ===============================================================================

def _build_stats(fim: np.ndarray) -> dict:
    """Compute covariance, std_errors, correlation, eigenvalues, condition_number
    from a Fisher Information Matrix.  Returns a dict of all derived quantities.
    """
    n_p = fim.shape[0]

    covariance = np.linalg.pinv(fim)
    std_errors = np.sqrt(np.maximum(np.diag(covariance), 0.0))

    denom = np.outer(std_errors, std_errors)
    with np.errstate(divide="ignore", invalid="ignore"):
        corr = np.where(denom > 0.0, covariance / denom, 0.0)
    corr[np.diag_indices(n_p)] = np.where(std_errors > 0.0, np.diag(corr), 1.0)

    eigenvalues, eigenvectors = np.linalg.eigh(fim)
    idx = np.argsort(eigenvalues)[::-1]
    eigenvalues  = eigenvalues[idx]
    eigenvectors = eigenvectors[:, idx]

    pos_ev = eigenvalues[eigenvalues > 0.0]
    if len(pos_ev) == n_p and n_p >= 2:
        condition_number = float(pos_ev[0] / pos_ev[-1])
    elif len(pos_ev) == 1 and n_p == 1:
        condition_number = 1.0
    else:
        condition_number = np.inf

    return dict(
        covariance=covariance,
        std_errors=std_errors,
        correlation=corr,
        eigenvalues=eigenvalues,
        eigenvectors=eigenvectors,
        condition_number=condition_number,
    )


def _print_param_table(param_names, param_values, std_errors, W=72):
    """Print the parameter value / std-error / rel-error table."""
    dash = "-" * W
    print(f"  {'Parameter':<22} {'Value':>12} {'Std Error':>12} "
          f"{'Rel Error':>10}  {'OK?':>4}")
    print(dash)

    for name, val, se in zip(param_names, param_values, std_errors):

        if abs(val) > 1e-15 and np.isfinite(se):
            rel = se / abs(val)
            rel_str = f"{rel * 100:.2f}%"
        else:
            rel = np.inf
            rel_str = "N/A"

        flag = "yes" if (np.isfinite(rel) and rel < 0.5) else "no"
        print(f"  {name:<22} {val:>12.4g} {se:>12.4g} "
              f"{rel_str:>10}  {flag:>4}")

    print(dash)


def _print_condition_and_correlation(condition_number, param_names, correlation):
    """Print condition number label and highly-correlated pairs."""
    cn = condition_number
    if cn < 1e3:
        cn_label = "excellent"
    elif cn < 1e6:
        cn_label = "acceptable"
    else:
        cn_label = "POOR, parameters may not be uniquely identifiable"
    print(f"\n  FIM condition number : {cn:.3g}  ({cn_label})")

    n_p = len(param_names)
    pairs = [
        (i, j, correlation[i, j])
        for i in range(n_p)
        for j in range(i + 1, n_p)
        if abs(correlation[i, j]) > 0.90
    ]

    if pairs:
        print("\n  Highly correlated pairs (|r| > 0.90):")
        for i, j, r in pairs:
            print(f"    {param_names[i]} <-> {param_names[j]}"
                  f"  :  r = {r:+.3f}")
    else:
        print("  No highly correlated parameter pairs  (|r| <= 0.90)")


# CLASS =================================================================================

class EstimationResult:
    """Final estimate of the output error method and its uncertainty.

    Unpacks like the plain ``(zeta, M, R)`` triple:

    .. code-block:: python

        zeta, M, R = estimator.estimate_parameters(zeta0)

    Parameters
    ----------
    zeta : np.ndarray
        estimated parameter vector, shape ``(Np,)``
    fim : np.ndarray
        Fisher information matrix at ``zeta`` from numerical sensitivities
    noise_covariance : np.ndarray
        final diagonal measurement noise covariance ``R``
    cost : float
        cost at ``zeta`` under ``R``
    termination : TerminationReason
        why the iteration ended
    outer_iterations : int
        number of completed noise covariance updates
    inner_iterations : int
        total number of Gauss-Newton updates over all outer passes
    zeta_history : np.ndarray
        parameter vectors of the last outer pass, shape ``(Np, n)``
    cost_history : np.ndarray
        costs of the last outer pass, shape ``(n,)``
    warnings : list of ConvergenceWarning
        non-fatal conditions raised during the estimation
    parameter_names, output_names : list of str, optional
        display names

    Attributes
    ----------
    covariance : np.ndarray
        parameter covariance estimate ``pinv(M)``
    std_errors : np.ndarray
        ``sqrt(diag(covariance))``
    correlation : np.ndarray
        parameter correlation matrix
    eigenvalues, eigenvectors : np.ndarray
        spectrum of ``M`` in descending order
    condition_number : float
        ratio of largest to smallest positive eigenvalue of ``M``
    """

    def __init__(
        self,
        zeta,
        fim,
        noise_covariance,
        cost,
        termination,
        outer_iterations=0,
        inner_iterations=0,
        zeta_history=None,
        cost_history=None,
        warnings=None,
        parameter_names=None,
        output_names=None,
    ):
        self.zeta = np.asarray(zeta, dtype=float)
        self.fim = np.asarray(fim, dtype=float)
        self.noise_covariance = np.asarray(noise_covariance, dtype=float)
        self.cost = float(cost)
        self.termination = termination
        self.outer_iterations = int(outer_iterations)
        self.inner_iterations = int(inner_iterations)
        self.zeta_history = (
            np.asarray(zeta_history, dtype=float) if zeta_history is not None
            else self.zeta.reshape(-1, 1)
        )
        self.cost_history = (
            np.asarray(cost_history, dtype=float) if cost_history is not None
            else np.array([self.cost])
        )
        self.warnings = list(warnings or [])

        n_p = self.zeta.size
        self.parameter_names = (
            list(parameter_names) if parameter_names is not None
            else [f"zeta_{j}" for j in range(n_p)]
        )
        n_o = self.noise_covariance.shape[0]
        self.output_names = (
            list(output_names) if output_names is not None
            else [f"y_{k}" for k in range(n_o)]
        )

        stats = _build_stats(self.fim)
        self.covariance      = stats["covariance"]
        self.std_errors      = stats["std_errors"]
        self.correlation     = stats["correlation"]
        self.eigenvalues     = stats["eigenvalues"]
        self.eigenvectors    = stats["eigenvectors"]
        self.condition_number = stats["condition_number"]


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def success(self) -> bool:
        """True for convergence and for the stalled line search termination."""
        return self.termination in (TerminationReason.CONVERGED, TerminationReason.STALLED)


    @property
    def noise_std(self) -> np.ndarray:
        """Standard deviation of the measurement noise per output channel."""
        return np.sqrt(np.diag(self.noise_covariance))


    def __iter__(self):
        return iter((self.zeta, self.fim, self.noise_covariance))


    def __repr__(self) -> str:
        return (
            f"EstimationResult({self.termination.value}, cost={self.cost:.4g}, "
            f"outer={self.outer_iterations}, inner={self.inner_iterations}, "
            f"zeta={self.zeta})"
        )


    # DISPLAY ===========================================================================

    def display(self) -> None:
        """Print a formatted estimation summary.

        Prints the termination status, a table of parameter values, standard
        errors and relative errors, the estimated noise level per output
        channel, the FIM condition number and any highly correlated pairs.
        """
        W    = 72
        line = "=" * W

        print(line)
        print("  Output Error Estimation Results")
        print(line)
        print(f"  Termination          : {self.termination.value}")
        print(f"  Final cost           : {self.cost:.6g}")
        print(f"  Iterations           : {self.outer_iterations} outer, "
              f"{self.inner_iterations} inner")
        print()

        _print_param_table(
            self.parameter_names, self.zeta, self.std_errors, W
        )

        print(f"  {'Output':<22} {'Noise Std':>12}")
        for name, sd in zip(self.output_names, self.noise_std):
            print(f"  {name:<22} {sd:>12.4g}")

        _print_condition_and_correlation(
            self.condition_number, self.parameter_names, self.correlation
        )

        for w in self.warnings:
            print(f"\n  WARNING [{w.kind}] {w.message}")

        print(line)


    # PLOT ==============================================================================

    def plot(self, *, figsize: tuple = (11, 4.5)):
        """Plot the parameter correlation heatmap and the FIM eigenvalue spectrum.

        Parameters
        ----------
        figsize : tuple, optional
            Figure size ``(width, height)`` in inches.

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : np.ndarray of matplotlib.axes.Axes, shape (2,)
        """
        import matplotlib.pyplot as plt
        import matplotlib.colors as mcolors

        names = self.parameter_names
        n_p   = len(names)

        fig, axes = plt.subplots(1, 2, figsize=figsize)

        # correlation heatmap
        ax   = axes[0]
        norm = mcolors.TwoSlopeNorm(vmin=-1.0, vcenter=0.0, vmax=1.0)
        im   = ax.imshow(self.correlation, cmap="RdBu_r", norm=norm, aspect="auto")
        fig.colorbar(im, ax=ax, label="Correlation")

        ax.set_xticks(range(n_p))
        ax.set_yticks(range(n_p))
        ax.set_xticklabels(names, rotation=45, ha="right", fontsize=9)
        ax.set_yticklabels(names, fontsize=9)
        ax.set_title("Parameter Correlation Matrix")

        for i in range(n_p):
            for j in range(n_p):
                v = self.correlation[i, j]
                color = "white" if abs(v) > 0.65 else "black"
                ax.text(j, i, f"{v:.2f}", ha="center", va="center",
                        fontsize=8, color=color)

        # FIM eigenvalue spectrum
        ax2    = axes[1]
        ev     = self.eigenvalues
        pos    = ev > 0.0
        colors = ["steelblue" if p else "salmon" for p in pos]
        ax2.bar(range(len(ev)), np.abs(ev), color=colors)

        pos_vals = ev[pos]
        if len(pos_vals) > 1 and pos_vals.max() / pos_vals.min() > 100.0:
            ax2.set_yscale("log")

        ax2.set_xticks(range(len(ev)))
        ax2.set_xticklabels([f"l{i + 1}" for i in range(len(ev))], fontsize=9)
        ax2.set_xlabel("Eigendirection")
        ax2.set_ylabel("Eigenvalue magnitude")
        ax2.set_title("FIM Eigenvalue Spectrum")
        ax2.grid(True, axis="y", alpha=0.3)

        fig.suptitle("Output Error Estimate Uncertainty", fontweight="bold")
        fig.tight_layout()
        return fig, axes
