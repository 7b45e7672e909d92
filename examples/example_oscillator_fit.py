#########################################################################################
##
##          outputerror example: damped oscillator with an unmeasured velocity
##
##  Model:   dx1/dt = x2
##           dx2/dt = -k x1 - c x2 + g u
##  Output:  y = x1  (position only, the velocity is never measured)
##  Fit:     stiffness k, damping c and input gain g
##
##  Shows the optional configuration: analytical Jacobians for the first
##  iterations, the output-to-state matrix x = A y for a start linearized
##  about the measured trajectory, and the live progress plot.
##
#########################################################################################

# IMPORTS ===============================================================================

import numpy as np
import matplotlib.pyplot as plt

from outputerror import OutputErrorEstimator, ProgressPlotter


# SYSTEM PARAMETERS =====================================================================

k_true = 4.0   # stiffness    [1/s²]
c_true = 0.6   # damping      [1/s]
g_true = 2.0   # input gain   [1/s²]

zeta_true = np.array([k_true, c_true, g_true])
zeta_0    = np.array([2.0, 1.5, 1.0])   # deliberately poor initial guess


# MODEL DEFINITION ======================================================================

def f(x, u, zeta, w):
    k, c, g = zeta
    return np.array([x[1], -k * x[0] - c * x[1] + g * u[0]])


def h(x, u, zeta, w):
    return x[:1]


# JACOBIANS =============================================================================

def df_dx(x, u, zeta, w):
    k, c, g = zeta
    return np.array([[0.0, 1.0], [-k, -c]])


def dh_dx(x, u, zeta, w):
    return np.array([[1.0, 0.0]])


def df_dzeta(x, u, zeta, w):
    return np.array([[0.0, 0.0, 0.0], [-x[0], -x[1], u[0]]])


def dh_dzeta(x, u, zeta, w):
    return np.zeros((1, 3))


# Run Example ===========================================================================

if __name__ == '__main__':

    # Doublet input, sampled at 20 Hz
    t_meas = np.linspace(0.0, 10.0, 201)
    u_meas = np.where(t_meas < 1.0, 1.0, np.where(t_meas < 2.0, -1.0, 0.0))

    # Synthetic measurements from the true model
    truth = OutputErrorEstimator(f, h, x0=[0.0, 0.0], t=t_meas, u=u_meas,
                                 z=np.zeros_like(t_meas), w=None)
    z_meas = truth.simulate(zeta_true) + 0.01 * np.random.randn(1, t_meas.size)

    est = OutputErrorEstimator(f, h, x0=[0.0, 0.0], t=t_meas, u=u_meas, z=z_meas, w=None)

    (
        est.set_jacobians(df_dx, dh_dx, df_dzeta, dh_dzeta)
           .set_output_to_state_matrix([[1.0], [0.0]])   # x1 = y, x2 unmeasured
           .set_parameter_names(["k", "c", "g"])
           .set_output_names(["position"])
    )

    plotter = ProgressPlotter()
    result = est.estimate_parameters(zeta_0, observer=plotter)

    result.display()

    print(f"\n  True values : {zeta_true}")
    print(f"  Estimates   : {result.zeta}")

    fig, axes = result.plot()
    plt.show()
