"""Registry of per-key debug loggers writing to rotating files.

Used to keep one forensic log per processing date for payment
classification decisions.
"""
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s]: %(message)s"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5


class LoggerRegistry:
    """Creates debug loggers on demand and closes their handlers on shutdown."""

    def __init__(self, log_dir: str | Path, prefix: str = "payment_debug") -> None:
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self._loggers: dict[str, logging.Logger] = {}

    def _file_name(self, key: Optional[str]) -> str:
        if not key:
            return f"{self.prefix}.log"
        return f"{self.prefix}_{key.replace('-', '_')}.log"

    def get_or_create(self, key: Optional[str] = None) -> logging.Logger:
        """Return the logger for ``key`` (e.g. an ISO date), creating it once."""
        log_key = key or "general"
        existing = self._loggers.get(log_key)
        if existing is not None:
            return existing

        self.log_dir.mkdir(parents=True, exist_ok=True)
        debug_logger = logging.getLogger(f"adsync.debug.{self.prefix}.{log_key}")
        debug_logger.setLevel(logging.DEBUG)
        debug_logger.propagate = False

        handler = RotatingFileHandler(
            self.log_dir / self._file_name(key),
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
            delay=True,
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        debug_logger.addHandler(handler)

        self._loggers[log_key] = debug_logger
        return debug_logger

    def keys(self) -> list[str]:
        return sorted(self._loggers)

    def close(self) -> None:
        """Flush and detach every handler created by this registry."""
        for debug_logger in self._loggers.values():
            for handler in list(debug_logger.handlers):
                handler.close()
                debug_logger.removeHandler(handler)
        self._loggers.clear()
