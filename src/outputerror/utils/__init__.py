from .logger import LoggerManager
from .exceptions import (
    ConfigurationError,
    UsageError,
    NumericalDivergenceError,
    IntegrationError,
    ConvergenceWarning,
)
