"""
Logging setup

Maps the configured level names onto the ``meshcall`` logger hierarchy.
"""

import logging
from typing import Optional

TRACE = 5

LOG_LEVEL_MAP = {
    "off": logging.CRITICAL + 10,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

logging.addLevelName(TRACE, "TRACE")


def configure_logging(level: Optional[str], logger_name: str = "meshcall") -> None:
    """Set the level of the meshcall loggers

    Args:
        level: One of off, error, warn, info, debug, trace. None leaves logging untouched.
        logger_name: Root logger of the hierarchy to configure
    """
    if level is None:
        return
    logging.getLogger(logger_name).setLevel(LOG_LEVEL_MAP[level])
