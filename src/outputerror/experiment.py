#########################################################################################
##
##                        IDENTIFICATION EXPERIMENT DATA CONTAINER
##                                  (experiment.py)
##
#########################################################################################

# IMPORTS ===============================================================================

from __future__ import annotations

import numpy as np

from .utils.exceptions import ConfigurationError


# HELPERS ===============================================================================

def _as_channels(name: str, data, n_samples: int) -> np.ndarray:
    """Normalize a signal to shape ``(n_channels, n_samples)``.

    ``None`` becomes an empty ``(0, n_samples)`` matrix and a 1D array is a
    single channel.  No transposition is attempted, the sample axis is always
    the second one.
    """
    if data is None:
        return np.zeros((0, n_samples))

    arr = np.array(data, dtype=float)

    if arr.ndim == 1:
        arr = arr.reshape(1, -1)
    elif arr.ndim != 2:
        raise ConfigurationError(f"'{name}' must be 1D or 2D, got {arr.ndim}D")

    if arr.shape[1] != n_samples:
        raise ConfigurationError(
            f"'{name}' has {arr.shape[1]} columns but 't' has {n_samples} samples"
        )

    return arr


# CLASS =================================================================================

class Experiment:
    """Sampled input/output record of one identification experiment.

    Stores the sampling times, control inputs, measured outputs, auxiliary
    data and the initial state. All signals are column-per-sample matrices
    and their sample counts are checked against the time base.

    Parameters
    ----------
    t : array_like
        sampling times, shape ``(Ns,)``, strictly increasing
    u : array_like or None
        control inputs, shape ``(Nc, Ns)`` or ``(Ns,)``
    z : array_like
        measured outputs, shape ``(No, Ns)`` or ``(Ns,)``
    w : array_like or None
        auxiliary measured data, shape ``(Na, Ns)`` or ``(Ns,)``
    x0 : array_like
        initial state, shape ``(Nd,)``

    Raises
    ------
    ConfigurationError
        if the time base is not strictly increasing or the number of columns
        of ``u``, ``z`` or ``w`` differs from the number of samples

    Note
    ----
    The arrays are copied and flagged read-only, an experiment never changes
    after construction.
    """

    def __init__(self, t, u, z, w, x0):

        t_arr = np.array(t, dtype=float)
        if t_arr.ndim != 1:
            raise ConfigurationError(f"'t' must be 1D, got shape {t_arr.shape}")
        if t_arr.size < 2:
            raise ConfigurationError("'t' requires at least 2 samples")
        if not np.all(np.diff(t_arr) > 0):
            raise ConfigurationError("'t' must be strictly increasing")

        n_samples = t_arr.size

        self.t = t_arr
        self.u = _as_channels("u", u, n_samples)
        self.z = _as_channels("z", z, n_samples)
        self.w = _as_channels("w", w, n_samples)
        self.x0 = np.array(x0, dtype=float).reshape(-1)

        if self.z.shape[0] == 0:
            raise ConfigurationError("'z' must contain at least one output channel")
        if not np.all(np.isfinite(self.z)):
            raise ConfigurationError("'z' contains non-finite measurements")

        for arr in (self.t, self.u, self.z, self.w, self.x0):
            arr.flags.writeable = False


    # PROPERTIES ------------------------------------------------------------------------

    @property
    def n_samples(self) -> int:
        """Number of samples ``Ns``."""
        return self.t.size


    @property
    def n_outputs(self) -> int:
        """Number of measured output channels ``No``."""
        return self.z.shape[0]


    @property
    def n_states(self) -> int:
        """Number of states ``Nd``."""
        return self.x0.size


    @property
    def n_controls(self) -> int:
        """Number of control channels ``Nc``."""
        return self.u.shape[0]


    @property
    def duration(self) -> float:
        """Time span covered by the samples."""
        return float(self.t[-1] - self.t[0])


    def __repr__(self) -> str:
        return (
            f"Experiment(n_samples={self.n_samples}, n_states={self.n_states}, "
            f"n_outputs={self.n_outputs}, n_controls={self.n_controls}, "
            f"n_auxiliary={self.w.shape[0]})"
        )


    # VISUALIZATION ---------------------------------------------------------------------

    def plot(self, *, output_names=None, marker="o", markersize=4.0, figsize=None):
        """Plot the measured outputs, one subplot per channel.

        Parameters
        ----------
        output_names : list of str, optional
            subplot titles, ``y_i`` by default
        marker : str
            marker style for the samples
        markersize : float
            marker size
        figsize : tuple, optional
            figure size in inches

        Returns
        -------
        fig : matplotlib.figure.Figure
        axes : list of matplotlib.axes.Axes
        """
        import matplotlib.pyplot as plt

        n_out = self.n_outputs
        if figsize is None:
            figsize = (8, 2.5 * n_out)

        fig, axes = plt.subplots(n_out, 1, figsize=figsize, sharex=True, squeeze=False)
        axes = list(axes[:, 0])

        for k, ax in enumerate(axes):
            label = output_names[k] if output_names is not None else f"y_{k}"
            ax.plot(self.t, self.z[k], marker=marker, markersize=markersize,
                    linestyle="-", linewidth=1.0, color="k", label=label)
            ax.set_title(label)
            ax.grid(True)

        axes[-1].set_xlabel("Time")
        fig.tight_layout()
        return fig, axes
