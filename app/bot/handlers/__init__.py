# app/bot/handlers/__init__.py
"""
🤖 BOT HANDLERS

Тонкий слой между aiogram и движком: достаём из апдейта chat id,
текст или callback_data и передаём в ConversationEngine.
Вся логика (доступ, режимы, экраны) - в движке.

Движок приходит из workflow data диспетчера: dp["engine"] = engine.
"""

from aiogram import F, Router, types
from aiogram.types import ErrorEvent

import structlog

from app.bot.engine import CallbackAction, ConversationEngine, TextMessage

logger = structlog.get_logger()

router = Router()


# ==========================================
# ТЕКСТ И КОМАНДЫ
# ==========================================

@router.message(F.text)
async def on_text(message: types.Message, engine: ConversationEngine):
    """Любой текст, включая /start, /orders, /help, /cancel."""
    await engine.handle_text(TextMessage(
        chat_id=message.chat.id,
        text=message.text,
        event_id=f"msg:{message.message_id}",
    ))


@router.message()
async def on_non_text(message: types.Message, engine: ConversationEngine):
    """Фото, стикеры и прочее - для движка это пустой текст."""
    await engine.handle_text(TextMessage(
        chat_id=message.chat.id,
        text="",
        event_id=f"msg:{message.message_id}",
    ))


# ==========================================
# КНОПКИ
# ==========================================

@router.callback_query(F.data)
async def on_callback(query: types.CallbackQuery, engine: ConversationEngine):
    if query.message is not None:
        chat_id = query.message.chat.id
        message_id = query.message.message_id
    else:
        chat_id = query.from_user.id
        message_id = None

    await engine.handle_callback(CallbackAction(
        chat_id=chat_id,
        action_id=query.data,
        message_id=message_id,
        callback_id=query.id,
    ))


# ==========================================
# ОШИБКИ
# ==========================================

@router.errors()
async def on_error(event: ErrorEvent):
    """
    Последняя ловушка: ошибка одного апдейта не должна ронять polling.
    """
    logger.error(
        "update_failed",
        update_id=event.update.update_id,
        error=str(event.exception),
        error_type=type(event.exception).__name__,
        exc_info=event.exception,
    )
    return True


__all__ = ["router"]
