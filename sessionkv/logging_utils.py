"""
Logging helpers.

Every module grabs its logger through get_logger(__name__) so the whole
package sits under the "sessionkv" logger hierarchy and can be tuned with a
single handler.
"""

import logging
import sys
from typing import Optional, Union

ROOT_LOGGER_NAME = "sessionkv"

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger inside the package hierarchy."""
    if not name or name == "__main__":
        return logging.getLogger(ROOT_LOGGER_NAME)
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_logging(level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Attach a single stderr handler to the package root logger.

    Safe to call more than once; an existing handler is reused.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    return root
