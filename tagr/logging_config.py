"""
Logging configuration for tagr.

Quiet by default: the engine is a library, and warnings about individual
files are returned to the caller rather than printed.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose output.

    Args:
        quiet: If True, only errors from tagr reach the root handlers.
            If False, warnings are shown as well.
    """
    if os.environ.get("TAGR_VERBOSE"):
        quiet = False

    logger = logging.getLogger("tagr")
    if quiet:
        warnings.filterwarnings("ignore", module="tagr")
        if logger.level == logging.NOTSET:
            logger.setLevel(logging.ERROR)
    else:
        warnings.filterwarnings("default", module="tagr")
        logger.setLevel(logging.WARNING)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    tagr_logger = logging.getLogger("tagr")
    tagr_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stderr
               for h in tagr_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        tagr_logger.addHandler(handler)


def configure_ops_log(store_path):
    """Configure a persistent operations log for a tagr store.

    Writes to {store_path}/tagr-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of verbosity.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / "tagr-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    tagr_logger = logging.getLogger("tagr")
    tagr_logger.addHandler(handler)
    # Ensure tagr logger allows INFO through even in quiet mode
    if tagr_logger.level == logging.NOTSET or tagr_logger.level > logging.INFO:
        tagr_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log."""
    if handler is None:
        return
    logging.getLogger("tagr").removeHandler(handler)
    handler.close()
