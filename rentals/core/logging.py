import logging
import os
import sys

from pythonjsonlogger.json import JsonFormatter

from rentals.core.config import settings

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Шумные библиотеки: только предупреждения
QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx", "urllib3", "stripe")


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format.lower() == "json":
        return JsonFormatter(JSON_FORMAT, json_ensure_ascii=False)
    return logging.Formatter(CONSOLE_FORMAT)


def setup_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(settings.log_format))
    root_logger.addHandler(handler)

    for name in ("aiogram", "apscheduler", "uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
