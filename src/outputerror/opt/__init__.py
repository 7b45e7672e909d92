#########################################################################################
##
##                      OUTPUT ERROR ESTIMATION TOOLKIT, PUBLIC API
##                               (opt/__init__.py)
##
#########################################################################################

from .estimator import OutputErrorEstimator
from .options import EstimatorOptions
from .objective import (
    Prior,
    noise_covariance,
    cost_function,
    fisher_information,
    cost_gradient,
)
from .simulator import TrajectorySimulator
from .sensitivity import (
    SensitivityEngine,
    NUMERICAL,
    ANALYTICAL,
    check_output_to_state_matrix,
)
from .result import EstimationResult, TerminationReason
from .progress import ProgressEvent, ProgressPlotter
