# -*- coding: utf-8 -*-
import logging
import os

log_formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(threadName)s: %(message)s', datefmt='%Y-%m-%d %H:%M:%S')

log_handler = logging.StreamHandler()
log_handler.setFormatter(log_formatter)

logger = logging.getLogger("framekit")
if not logger.hasHandlers():
    logger.addHandler(log_handler)
    logger.setLevel(logging.WARNING)

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def setup_logging(level: int) -> int:
    """Sets the package logging level. FRAMEKIT_LOG_LEVEL wins over the argument."""
    env_level = (os.getenv("FRAMEKIT_LOG_LEVEL") or "").strip().lower()
    if env_level:
        level = _LEVELS.get(env_level, level)
    logger.setLevel(level)
    logger.debug(f"  -> Debug: Logging level set to {logging.getLevelName(level)}")
    return level
