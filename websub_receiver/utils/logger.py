"""Настройка структурированного логирования."""

import logging
import sys

import structlog

from ..config import settings

# Библиотеки, чьи логи приглушаются до WARNING
QUIET_LOGGERS = ("uvicorn.access", "opentelemetry")


def _renderer(log_format: str):
    """JSON для продакшена, цветной вывод для разработки."""
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def configure_logging(level: str | None = None, log_format: str | None = None) -> None:
    """
    Настройка structlog и стандартного logging.

    Args:
        level: Уровень логирования, по умолчанию LOG_LEVEL
        log_format: json или console, по умолчанию LOG_FORMAT
    """
    level = (level or settings.LOG_LEVEL).upper()
    log_format = log_format or settings.LOG_FORMAT
    numeric_level = logging.getLevelName(level)
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    # request_id и прочий контекст запроса приходят из contextvars
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO", utc=True),
            structlog.processors.CallsiteParameterAdder(
                parameters=[structlog.processors.CallsiteParameter.FUNC_NAME]
            ),
            _renderer(log_format),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # uvicorn и opentelemetry пишут через стандартный logging
    logging.basicConfig(
        level=numeric_level,
        format="%(message)s" if log_format == "json"
        else "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        stream=sys.stdout,
        force=True
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> structlog.BoundLogger:
    """Получение логгера с контекстом."""
    return structlog.get_logger(name)
