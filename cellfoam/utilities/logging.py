"""Logging utilities for ``cellfoam``.

Two loggers are configured from the package configuration file:

- :py:data:`mylog`: the main logger, used for all user facing messages (growth progress, retries).
- :py:data:`devlog`: the development logger, disabled by default, which traces the cell divisions.
"""
import logging
import sys
from abc import ABC, abstractmethod

from cellfoam.utilities.config import fmparams

# Setting up the logging system
streams = dict(
    mylog=getattr(sys, fmparams["logging", "mylog", "stream"]),
    devlog=getattr(sys, fmparams["logging", "devlog", "stream"]),
)
_loggers = dict(mylog=logging.Logger("cellfoam"), devlog=logging.Logger("cellfoam-development"))

_handlers = {}

for k, v in _loggers.items():
    # Construct the formatter string.
    _handlers[k] = logging.StreamHandler(streams[k])
    _handlers[k].setFormatter(logging.Formatter(fmparams["logging", k, "format"]))
    v.addHandler(_handlers[k])
    v.setLevel(fmparams["logging", k, "level"])
    v.propagate = False

    if k != "mylog":
        v.disabled = not fmparams["logging", k, "enabled"]

mylog: logging.Logger = _loggers["mylog"]
""":py:class:`logging.Logger`: The main logger for ``cellfoam``."""
devlog: logging.Logger = _loggers["devlog"]
""":py:class:`logging.Logger`: The development logger for ``cellfoam``."""


class LogDescriptor(ABC):
    LOG_CLASS = logging.Logger  # Default to the standard Logger; can be overridden in subclasses

    def __get__(self, instance, owner) -> LOG_CLASS:
        if not hasattr(owner, "_logger") or owner._logger is None:
            # Fetch the logger default and then set the logger class to
            # the one specified by the descriptor class.
            original_logger_class = logging.getLoggerClass()
            logging.setLoggerClass(self.LOG_CLASS)

            try:
                # Get the logger as an instance of LOGCLASS
                owner._logger = logging.getLogger(owner.__name__)
                self.configure_logger(owner._logger)
            finally:
                # Restore the original logging class
                logging.setLoggerClass(original_logger_class)

        return owner._logger

    @abstractmethod
    def configure_logger(self, logger):
        pass


class FoamLogDescriptor(LogDescriptor):
    """Class level logger of foam objects; used when no logger is injected."""

    def configure_logger(self, logger):
        _handler = logging.StreamHandler(streams["mylog"])
        _handler.setFormatter(logging.Formatter(fmparams["logging"]["mylog"]["format"]))
        if len(logger.handlers) == 0:
            logger.addHandler(_handler)
        logger.setLevel(fmparams["logging"]["mylog"]["level"])
        logger.propagate = False
