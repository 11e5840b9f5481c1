# app/bot/middlewares/__init__.py
"""
🔄 MIDDLEWARE (перехватчики)

Срабатывают для КАЖДОГО апдейта до обработчика.
"""

from .logging import LoggingMiddleware

__all__ = [
    "LoggingMiddleware",
]
