"""Logging helpers for the cfspeedtest package"""

import logging
import sys
from typing import Optional, TextIO

import urllib3

# Package-level logger; module loggers (cfspeedtest.*) propagate to it
_logger = logging.getLogger("cfspeedtest")
# Add a null handler if no handlers exist to avoid using root logger
if not _logger.handlers:
    _logger.addHandler(logging.NullHandler())

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def set_log_level(level: int = logging.WARNING) -> None:
    """
    Set the logging level for the speedtest package.

    Args:
        level: Logging level (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL)
              Use logging.NOTSET to defer to the parent logger.

    Examples:
        >>> import logging
        >>> from cfspeedtest import set_log_level
        >>> set_log_level(logging.ERROR)  # Only show errors
    """
    _logger.setLevel(level)


def silence_warnings() -> None:
    """
    Silence all log output from the package and urllib3's own warnings.

    Example:
        >>> from cfspeedtest import silence_warnings
        >>> silence_warnings()  # No more warnings will be shown
    """
    _logger.setLevel(logging.CRITICAL + 1)  # Set to level above CRITICAL to silence all
    urllib3.disable_warnings()


def configure_logging(verbose: bool = False, stream: Optional[TextIO] = None) -> logging.Handler:
    """Attach a stderr handler for command-line use. Returns the handler."""
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    for existing in list(_logger.handlers):
        if not isinstance(existing, logging.NullHandler):
            _logger.removeHandler(existing)

    _logger.addHandler(handler)
    _logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    return handler
