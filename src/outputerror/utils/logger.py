#########################################################################################
##
##                             CENTRALIZED LOGGING MANAGER
##                                 (utils/logger.py)
##
##          Singleton that owns the package root logger and hands out child
##          loggers to the individual modules of the estimation toolkit.
##
#########################################################################################

# IMPORTS ===============================================================================

import logging
import sys


# CONSTANTS =============================================================================

ROOT_LOGGER_NAME = "outputerror"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%H:%M:%S"


# CLASS =================================================================================

class LoggerManager:
    """Singleton manager for the package logging hierarchy.

    All modules obtain their logger through :meth:`get_logger`, which returns
    children of the ``outputerror`` root logger.  Configuring the root once
    (level, format, output stream) therefore applies to the whole package.

    Example
    -------
    .. code-block:: python

        from outputerror import LoggerManager

        LoggerManager().configure(level=logging.DEBUG)   # per-iteration output
        LoggerManager().configure(enabled=False)         # silence the package
    """

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance


    def __init__(self):
        if self._initialized:
            return

        self._root = logging.getLogger(ROOT_LOGGER_NAME)
        self._root.propagate = False
        self._handler = None
        self._initialized = True

        self.configure()


    def configure(
        self,
        enabled=True,
        output=None,
        level=logging.INFO,
        format=None,
        date_format=None,
    ):
        """(Re)configure the package root logger.

        Parameters
        ----------
        enabled : bool
            when ``False`` all package log records are dropped
        output : stream, optional
            target stream for the handler, defaults to ``sys.stdout``
        level : int
            logging level of the root logger
        format : str, optional
            record format string
        date_format : str, optional
            timestamp format string
        """

        if self._handler is not None:
            self._root.removeHandler(self._handler)
            self._handler = None

        if not enabled:
            self._handler = logging.NullHandler()
            self._root.addHandler(self._handler)
            self._root.setLevel(logging.CRITICAL + 1)
            return

        self._handler = logging.StreamHandler(output if output is not None else sys.stdout)
        self._handler.setFormatter(
            logging.Formatter(
                format or DEFAULT_FORMAT,
                datefmt=date_format or DEFAULT_DATE_FORMAT,
            )
        )
        self._root.addHandler(self._handler)
        self._root.setLevel(level)


    def set_level(self, level, module=None):
        """Set the level of the root logger or of a single module logger."""
        if module is None:
            self._root.setLevel(level)
        else:
            self.get_logger(module).setLevel(level)


    def get_logger(self, name):
        """Return the child logger ``outputerror.<name>``."""
        if name.startswith(ROOT_LOGGER_NAME):
            return logging.getLogger(name)
        return self._root.getChild(name)


    @property
    def root(self):
        """The package root logger."""
        return self._root
