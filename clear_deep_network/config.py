"""Package-wide defaults and a logging helper for scripts."""

import logging
from typing import Optional, Union

# Gradient check defaults (two-sided finite difference)
GRADIENT_CHECK_EPSILON = 1e-4
GRADIENT_CHECK_TOLERANCE = 1e-2

# Worker pool size for layer fan-out. None lets the executor pick.
DEFAULT_MAX_WORKERS: Optional[int] = None

# Sigmoid input clip, avoids overflow in exp(-x)
SIGMOID_CLIP = 500.0

# |h| is clamped below 1 before the soft-sign pre-activation is rebuilt from h
SOFT_SIGN_CLAMP = 1e-12

# Version written into every saved network document
FORMAT_VERSION = 1

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(threadName)s - %(message)s"


def configure_logging(level: Union[int, str] = logging.INFO, filename: Optional[str] = None) -> None:
    """Sets up the root logger used by the package modules.

    Args:
        level: Logging level (e.g. logging.DEBUG or "DEBUG").
        filename: Optional log file. Logs go to stderr when omitted.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    logging.basicConfig(level=level, format=LOG_FORMAT, filename=filename)
    logging.getLogger().setLevel(level)
