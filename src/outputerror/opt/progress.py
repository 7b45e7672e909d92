#########################################################################################
##
##                        ESTIMATION PROGRESS EVENTS AND LIVE PLOT
##                                 (opt/progress.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np


# EVENT =================================================================================

@dataclass(frozen=True)
class ProgressEvent:
    """Snapshot of the estimator after one inner iteration.

    All arrays are copies, an observer cannot alter the estimation.

    Parameters
    ----------
    outer_iteration : int
        index of the current noise covariance pass
    inner_iteration : int
        index of the Gauss-Newton update within the pass
    zeta : np.ndarray
        updated parameter vector, shape ``(Np,)``
    zeta_history : np.ndarray
        parameter vectors of the current pass, shape ``(Np, n)``
    cost_history : np.ndarray
        costs of the current pass, shape ``(n,)``
    residuals : np.ndarray
        output residuals ``z - Y`` at ``zeta``, shape ``(No, Ns)``
    t : np.ndarray
        sampling times
    z : np.ndarray
        measured outputs
    parameter_names, output_names : list of str
        display names
    """

    outer_iteration: int
    inner_iteration: int
    zeta: np.ndarray
    zeta_history: np.ndarray
    cost_history: np.ndarray
    residuals: np.ndarray
    t: np.ndarray
    z: np.ndarray
    parameter_names: list
    output_names: list


    @property
    def cost(self) -> float:
        """Most recent cost."""
        return float(self.cost_history[-1])


    @property
    def predicted(self) -> np.ndarray:
        """Predicted outputs ``Y = z - residuals``."""
        return self.z - self.residuals


# HELPERS ===============================================================================

def _grid(n):
    """Rows and columns of a near square subplot grid for ``n`` panels."""
    cols = math.ceil(math.sqrt(n))
    rows = math.ceil(n / cols)
    return rows, cols


# OBSERVER ==============================================================================

class ProgressPlotter:
    """Observer that redraws the estimation progress after every iteration.

    Maintains three figures: the history of every parameter estimate, the
    measured against the predicted outputs per channel, and the cost history
    of the current outer pass on a logarithmic axis.

    Parameters
    ----------
    pause : float
        seconds passed to ``plt.pause`` after redrawing so interactive
        backends refresh, ``0`` skips the pause

    Example
    -------
    .. code-block:: python

        plotter = ProgressPlotter()
        result = estimator.estimate_parameters(zeta0, observer=plotter)
        plotter.close()
    """

    def __init__(self, pause=0.001):
        self.pause = pause
        self.fig_parameters = None
        self.fig_outputs = None
        self.fig_cost = None


    def _figure(self, fig, name, size):
        import matplotlib.pyplot as plt

        if fig is None or not plt.fignum_exists(fig.number):
            fig = plt.figure(name, figsize=size)
        fig.clf()
        return fig


    def __call__(self, event: ProgressEvent) -> None:
        import matplotlib.pyplot as plt

        # parameter estimates
        n_p = event.zeta_history.shape[0]
        rows, cols = _grid(n_p)
        self.fig_parameters = self._figure(self.fig_parameters, "Parameter Estimates", (8, 8))
        for j in range(n_p):
            ax = self.fig_parameters.add_subplot(rows, cols, j + 1)
            ax.plot(event.zeta_history[j], "k-o")
            ax.set_title(event.parameter_names[j])
            ax.grid(True)
        self.fig_parameters.tight_layout()

        # measured and predicted outputs
        n_o = event.z.shape[0]
        rows, cols = _grid(n_o)
        predicted = event.predicted
        self.fig_outputs = self._figure(self.fig_outputs, "Model Performance", (7, 4))
        for k in range(n_o):
            ax = self.fig_outputs.add_subplot(rows, cols, k + 1)
            ax.plot(event.t, event.z[k], "k.-", label="measured")
            ax.plot(event.t, predicted[k], linewidth=2, label="predicted")
            ax.set_title(event.output_names[k])
            ax.grid(True)
        self.fig_outputs.tight_layout()

        # cost history
        self.fig_cost = self._figure(self.fig_cost, "Cost", (7, 2.5))
        ax = self.fig_cost.add_subplot(1, 1, 1)
        ax.semilogy(event.cost_history, "-s")
        ax.set_title(f"J(zeta) at fixed R, outer pass {event.outer_iteration}")
        ax.grid(True)
        self.fig_cost.tight_layout()

        if self.pause > 0.0:
            plt.pause(self.pause)


    def close(self) -> None:
        """Close all figures owned by the plotter."""
        import matplotlib.pyplot as plt

        for fig in (self.fig_parameters, self.fig_outputs, self.fig_cost):
            if fig is not None:
                plt.close(fig)

        self.fig_parameters = None
        self.fig_outputs = None
        self.fig_cost = None
