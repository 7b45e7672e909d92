from .integrator import ScipyIntegrator, Trajectory
