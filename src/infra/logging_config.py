"""
Logging configuration.

Scheduler passes log to the console and, unless disabled, to one file per
UTC day: <log_dir>/job_orchestrator_YYYYMMDD.log
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

LOGGER_NAME = "src"
LOG_FILE_PREFIX = "job_orchestrator"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DailyRotatingFileHandler(logging.FileHandler):
    """
    File handler that switches to a new file when the UTC date changes.

    Passes spanning midnight UTC are split across two files.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        encoding: str = "utf-8",
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._day = self._today()
        super().__init__(self._path_for(self._day), mode="a", encoding=encoding)

    def _today(self) -> str:
        return self._clock().strftime("%Y%m%d")

    def _path_for(self, day: str) -> str:
        return str(self.log_dir / f"{LOG_FILE_PREFIX}_{day}.log")

    def emit(self, record: logging.LogRecord) -> None:
        day = self._today()
        if day != self._day:
            self.close()
            self._day = day
            self.baseFilename = self._path_for(day)
            self.stream = self._open()
        super().emit(record)


def setup_logging(log_level: str = "INFO", log_dir: Optional[str] = "logs") -> logging.Logger:
    """
    Configure the package logger and return it.

    Modules log through logging.getLogger(__name__), all below "src", so the
    handlers attached here receive scheduler, planner and infra records.
    Calling it again replaces the handlers instead of stacking them.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL; unknown names mean INFO
        log_dir: Directory for the daily files, None for console only
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_dir is not None:
        handlers.append(DailyRotatingFileHandler(log_dir=log_dir))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    destination = handlers[-1].baseFilename if log_dir is not None else "console only"
    logger.info(f"Logging started - level: {logging.getLevelName(level)}, output: {destination}")
    return logger
