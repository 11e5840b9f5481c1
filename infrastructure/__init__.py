# infrastructure/__init__.py
"""Инфраструктура приложения: логирование, Admin API, хранилище сессий."""

from .logger import logger, setup_logging
from .admin_api import AdminApiClient, BackendError
from .session_store import (
    MemorySessionStore,
    RedisSessionStore,
    SessionStore,
    create_session_store,
)

__all__ = [
    "logger",
    "setup_logging",
    "AdminApiClient",
    "BackendError",
    "SessionStore",
    "MemorySessionStore",
    "RedisSessionStore",
    "create_session_store",
]
