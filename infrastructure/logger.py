# infrastructure/logger.py
"""
📝 ЛОГИРОВАНИЕ

Структурированные логи через structlog поверх стандартного logging.
В production пишем JSON, в development - читаемый вывод в консоль.
"""

import logging
import sys

import structlog


def setup_logging(level: str = "INFO", json_logs: bool = True):
    """
    Инициализирует логирование.

    Вызывается один раз при старте приложения.
    """

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    # aiogram и aiohttp слишком болтливы на INFO
    logging.getLogger("aiogram.event").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


logger = structlog.get_logger()
