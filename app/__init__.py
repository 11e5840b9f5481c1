# app/__init__.py
"""Админ-бот сервиса доставки еды: Telegram-бот + HTTP API."""

__version__ = "1.0.0"
