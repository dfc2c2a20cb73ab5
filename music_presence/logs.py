# music_presence/logs.py
import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

ROOT_LOGGER = "music_presence"
LOG_FILE = "mps_debug.log"

_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str = "") -> logging.Logger:
    """Child of the package logger, handed to components at construction."""
    if not name:
        return logging.getLogger(ROOT_LOGGER)
    if name.startswith(ROOT_LOGGER):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def setup_logging(debug: bool = False, log_dir: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if debug:
        try:
            path = Path(log_dir or ".").resolve() / LOG_FILE
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                path, maxBytes=1_000_000, backupCount=2, encoding="utf-8"
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning("Debug log file unavailable: %s", e)

    return logger


class RateLimitedLog:
    """Drops repeats of the same key inside `interval` seconds."""

    def __init__(self, logger: logging.Logger, interval: float = 5.0, clock=time.monotonic):
        self._logger = logger
        self._interval = interval
        self._clock = clock
        self._last: Dict[str, float] = {}

    def debug(self, key: str, message: str, *args) -> bool:
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < self._interval:
            return False
        self._last[key] = now
        self._logger.debug(message, *args)
        return True
