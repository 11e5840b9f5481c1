# app/api/__init__.py
"""
🌐 HTTP API (FastAPI)

Health-check для Railway/Docker, приём уведомлений о новых заказах
от бэкенда и (в режиме webhook) апдейтов Telegram.
"""

from .app import create_app

__all__ = ["create_app"]
