#########################################################################################
##
##               outputerror example: hello-world output error estimation
##
##  Model:   dx/dt = -a x,  y = x,  x(0) = 1
##  Fit:     decay rate a and the measurement noise level from noisy samples
##
##  This is the simplest possible single-output, single-parameter fit.
##  Start here before looking at the oscillator example.
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from outputerror import OutputErrorEstimator


# MODEL DEFINITION ======================================================================

def f(x, u, zeta, w):
    return -zeta[0] * x


def h(x, u, zeta, w):
    return x


# Run Example ===========================================================================

if __name__ == '__main__':

    # Synthetic noisy measurements: true a = 0.5
    a_true = 0.5
    t_meas = np.linspace(0.0, 6.0, 31)
    z_meas = np.exp(-a_true * t_meas) + 0.02 * np.random.randn(31)

    est = OutputErrorEstimator(f, h, x0=[1.0], t=t_meas, u=None, z=z_meas, w=None)
    est.set_parameter_names(["a"]).set_output_names(["x"])

    # Fit, starting far from the true value
    result = est.estimate_parameters([2.0])

    result.display()

    zeta, M, R = result
    Y = est.simulate(zeta)

    fig, ax = plt.subplots(figsize=(8, 4))
    ax.plot(t_meas, z_meas, "k.", label="measured")
    ax.plot(t_meas, Y[0], linewidth=2, label=f"fit, a = {zeta[0]:.3f}")
    ax.set_xlabel("Time [s]")
    ax.set_ylabel("x")
    ax.set_title("Exponential decay, output error fit")
    ax.legend()
    ax.grid(True)
    plt.show()
