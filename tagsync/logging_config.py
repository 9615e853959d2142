"""
Logging configuration for tagsync.

Progress goes to stderr through the ``tagsync`` logger; HTTP client chatter
is suppressed unless debug mode is on.
"""

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)-5s %(message)s"
_DEBUG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _stderr_handler(logger: logging.Logger) -> logging.Handler:
    """Return the logger's stderr handler, creating it if needed."""
    for handler in logger.handlers:
        if isinstance(handler, logging.StreamHandler) and handler.stream == sys.stderr:
            return handler
    handler = logging.StreamHandler(sys.stderr)
    logger.addHandler(handler)
    return handler


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging for normal runs.

    The ``tagsync`` logger reports INFO and above; ``httpx`` and ``httpcore``
    are raised to WARNING so every request does not print a line.

    Args:
        quiet: If True, suppress HTTP client output. If False, leave it alone.
    """
    tagsync_logger = logging.getLogger("tagsync")
    tagsync_logger.setLevel(logging.INFO)
    handler = _stderr_handler(tagsync_logger)
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%H:%M:%S"))
    tagsync_logger.propagate = False

    if quiet:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    tagsync_logger = logging.getLogger("tagsync")
    handler = _stderr_handler(tagsync_logger)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_DEBUG_FORMAT, datefmt="%H:%M:%S"))
    tagsync_logger.propagate = False

    for name in ("tagsync", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.DEBUG)
    # HTTP client loggers propagate to the root; give it a handler too
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        root_handler = logging.StreamHandler(sys.stderr)
        root_handler.setLevel(logging.DEBUG)
        root_handler.setFormatter(logging.Formatter(_DEBUG_FORMAT, datefmt="%H:%M:%S"))
        root_logger.addHandler(root_handler)
