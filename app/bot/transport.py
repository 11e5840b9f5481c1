# app/bot/transport.py
"""
📡 TELEGRAM TRANSPORT

Единственное место, где движок касается Telegram:
- send_screen - отправить экран новым сообщением
- edit_screen - отредактировать сообщение (False если Telegram отказал)
- acknowledge - ответить на нажатие кнопки

Отказ в редактировании (сообщение старое, текст не изменился) -
обычная ситуация, движок в этом случае просто шлёт новое сообщение.
"""

from typing import Optional

import structlog
from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest

from app.bot.keyboards import build_inline_keyboard
from app.bot.screens import Screen

logger = structlog.get_logger()


class TelegramTransport:
    def __init__(self, bot: Bot, parse_mode: Optional[str] = "HTML"):
        self.bot = bot
        self.parse_mode = parse_mode

    async def send_screen(self, chat_id: int, screen: Screen) -> Optional[int]:
        message = await self.bot.send_message(
            chat_id=chat_id,
            text=screen.text,
            reply_markup=build_inline_keyboard(screen),
            parse_mode=self.parse_mode,
        )
        return message.message_id

    async def edit_screen(self, chat_id: int, message_id: int, screen: Screen) -> bool:
        try:
            await self.bot.edit_message_text(
                text=screen.text,
                chat_id=chat_id,
                message_id=message_id,
                reply_markup=build_inline_keyboard(screen),
                parse_mode=self.parse_mode,
            )
        except TelegramBadRequest as e:
            logger.info("edit_failed_fallback_to_send", chat_id=chat_id,
                        message_id=message_id, error=e.message)
            return False
        return True

    async def acknowledge(self, callback_id: str, text: Optional[str] = None,
                          alert: bool = False) -> None:
        try:
            await self.bot.answer_callback_query(callback_id, text=text, show_alert=alert)
        except TelegramBadRequest as e:
            # query is too old - пользователю уже всё равно
            logger.info("callback_answer_failed", callback_id=callback_id, error=e.message)
