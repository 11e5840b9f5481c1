# app/bot/keyboards/inline.py
"""
Inline-клавиатуры.

Экран движка описывает кнопки как (подпись, action id).
Здесь превращаем их в InlineKeyboardMarkup для Telegram:
action id уходит в callback_data и возвращается в callback_query.
"""

from typing import Optional

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup

from app.bot.screens import Screen


def build_inline_keyboard(screen: Screen) -> Optional[InlineKeyboardMarkup]:
    """
    Ряды кнопок экрана → InlineKeyboardMarkup.

    Экран без кнопок → None (сообщение уйдёт без клавиатуры).
    """

    if not screen.rows:
        return None

    return InlineKeyboardMarkup(inline_keyboard=[
        [
            InlineKeyboardButton(text=button.label, callback_data=button.action)
            for button in row
        ]
        for row in screen.rows
    ])
