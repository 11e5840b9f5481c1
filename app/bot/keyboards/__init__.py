"""Инициализация клавиатур."""

from .inline import build_inline_keyboard

__all__ = ["build_inline_keyboard"]
