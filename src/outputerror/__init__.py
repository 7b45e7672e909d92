from importlib import metadata

try:
    __version__ = metadata.version("outputerror")
except Exception:
    __version__ = "unknown"

from .model import Model
from .experiment import Experiment
from .opt import (
    OutputErrorEstimator,
    EstimatorOptions,
    EstimationResult,
    TerminationReason,
    ProgressEvent,
    ProgressPlotter,
    Prior,
)
from .solvers import ScipyIntegrator, Trajectory
from .utils.logger import LoggerManager
from .utils.exceptions import (
    ConfigurationError,
    UsageError,
    NumericalDivergenceError,
    IntegrationError,
    ConvergenceWarning,
)
