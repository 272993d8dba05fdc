"""Log output settings for the task engine, read from the environment."""

import logging
import os
import sys

from pythonjsonlogger.json import JsonFormatter


def _flag(name: str, default: str = "true") -> bool:
    return os.environ.get(name, default).lower() == "true"


class LoggingConfig:
    """Where engine logs go and how much of the task content they carry."""

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json").lower()
    LOG_SERVICE_NAME = os.environ.get("LOG_SERVICE_NAME", "task-workflow-engine")

    # Reviewer notes and comments may contain client details
    LOG_NOTES_CONTENT = _flag("LOG_NOTES_CONTENT")
    LOG_MASK_SENSITIVE = _flag("LOG_MASK_SENSITIVE")

    # Orchestrator operations slower than this are logged as warnings
    LOG_SLOW_OPERATION_THRESHOLD_MS = int(os.environ.get("LOG_SLOW_OPERATION_THRESHOLD_MS", "1000"))

    # Supabase HTTP stack
    QUIET_LOGGERS = ("httpx", "httpcore", "hpack", "postgrest", "supabase")

    @classmethod
    def build_formatter(cls) -> logging.Formatter:
        if cls.LOG_FORMAT == "json":
            return JsonFormatter(
                "%(timestamp)s %(levelname)s %(name)s %(message)s",
                timestamp=True,
                rename_fields={"levelname": "level"},
                static_fields={"service": cls.LOG_SERVICE_NAME},
            )
        return logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    @classmethod
    def setup_logging(cls) -> None:
        """Replace the root handlers with one stdout handler using the configured format."""
        level = getattr(logging, cls.LOG_LEVEL, logging.INFO)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(cls.build_formatter())

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers[:] = [handler]

        for name in cls.QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
