# -*- coding: utf-8 -*-
"""Location: ./toolchest/services/logging_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

Logging Service Implementation.
Configures the root logger once from settings and hands out named loggers.
Output goes to stderr as JSON lines (serialised with orjson) or as plain text,
and optionally to a rotating log file.

Examples:
    >>> service = LoggingService()
    >>> logger = service.get_logger("toolchest.example")
    >>> logger.name
    'toolchest.example'
"""

# Standard
from datetime import datetime, timezone
import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Any, Dict, List, Optional

# Third-Party
import orjson

# First-Party
from toolchest.config import settings

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# LogRecord attributes that are not user-supplied "extra" fields
_RESERVED_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON objects.

    Examples:
        >>> record = logging.LogRecord("toolchest", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        >>> payload = orjson.loads(JSONFormatter().format(record))
        >>> payload["message"], payload["level"], payload["logger"]
        ('hello world', 'INFO', 'toolchest')
    """

    def format(self, record: logging.LogRecord) -> str:
        """Serialise ``record`` to JSON.

        Args:
            record: The log record.

        Returns:
            str: JSON document.
        """
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str).decode()


class LoggingService:
    """Owns the process logging configuration.

    The service is created at import time by each module that logs
    (``logging_service = LoggingService()``) and initialised once by the
    application lifespan. ``get_logger`` works before initialisation; records
    then flow to whatever handlers the root logger already has.
    """

    _configured_handlers: List[logging.Handler] = []

    def __init__(self) -> None:
        self._loggers: Dict[str, logging.Logger] = {}

    async def initialize(self) -> None:
        """Install handlers on the root logger according to settings.

        Examples:
            >>> import asyncio
            >>> service = LoggingService()
            >>> asyncio.run(service.initialize())
            >>> asyncio.run(service.shutdown())
        """
        root = logging.getLogger()
        for handler in LoggingService._configured_handlers:
            root.removeHandler(handler)
        LoggingService._configured_handlers = []

        formatter: logging.Formatter = JSONFormatter() if settings.log_format == "json" else logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")

        # Replace the bootstrap handlers installed by config.py
        for handler in list(root.handlers):
            root.removeHandler(handler)

        console = logging.StreamHandler()
        console.setFormatter(formatter)
        handlers: List[logging.Handler] = [console]

        file_handler = self._build_file_handler()
        if file_handler is not None:
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        for handler in handlers:
            root.addHandler(handler)
        LoggingService._configured_handlers = handlers
        root.setLevel(settings.log_level)
        logging.getLogger("toolchest").info("Logging service initialized (format=%s, level=%s)", settings.log_format, settings.log_level)

    async def shutdown(self) -> None:
        """Flush and detach the handlers installed by ``initialize``."""
        root = logging.getLogger()
        for handler in LoggingService._configured_handlers:
            handler.flush()
            root.removeHandler(handler)
            handler.close()
        LoggingService._configured_handlers = []

    def get_logger(self, name: str) -> logging.Logger:
        """Return (and remember) the named logger.

        Args:
            name: Logger name, normally ``__name__``.

        Returns:
            logging.Logger: The logger.
        """
        if name not in self._loggers:
            self._loggers[name] = logging.getLogger(name)
        return self._loggers[name]

    @staticmethod
    def _build_file_handler() -> Optional[logging.Handler]:
        """Create the file handler when file logging is enabled.

        Returns:
            Optional[logging.Handler]: File handler, or None when disabled.
        """
        if not settings.log_to_file or not settings.log_file:
            return None
        log_path = settings.log_file
        if settings.log_folder:
            os.makedirs(settings.log_folder, exist_ok=True)
            log_path = os.path.join(settings.log_folder, settings.log_file)
        if settings.log_rotation_enabled:
            return RotatingFileHandler(
                log_path,
                mode=settings.log_filemode,
                maxBytes=settings.log_max_size_mb * 1024 * 1024,
                backupCount=settings.log_backup_count,
            )
        return logging.FileHandler(log_path, mode=settings.log_filemode)
