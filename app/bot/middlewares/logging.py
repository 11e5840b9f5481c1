# app/bot/middlewares/logging.py
"""
Middleware для логирования входящих событий.

Вешается на dp.message и dp.callback_query: пишет что пришло
и сколько заняла обработка (медленный бэкенд сразу виден в логах).
"""

import time
from typing import Any, Awaitable, Callable

import structlog
from aiogram import BaseMiddleware
from aiogram.types import CallbackQuery, Message

logger = structlog.get_logger()


def _describe(event: Message | CallbackQuery) -> dict[str, Any]:
    if isinstance(event, CallbackQuery):
        return {
            "kind": "callback",
            "chat_id": event.message.chat.id if event.message else event.from_user.id,
            "data": event.data,
        }
    return {
        "kind": "message",
        "chat_id": event.chat.id,
        "username": event.from_user.username if event.from_user else None,
        "text": event.text[:50] if event.text else None,
    }


class LoggingMiddleware(BaseMiddleware):

    async def __call__(
        self,
        handler: Callable[[Message | CallbackQuery, dict[str, Any]], Awaitable[Any]],
        event: Message | CallbackQuery,
        data: dict[str, Any]
    ) -> Any:
        info = _describe(event)
        logger.info("update_received", **info)

        started = time.monotonic()
        try:
            return await handler(event, data)
        finally:
            logger.info(
                "update_handled",
                kind=info["kind"],
                chat_id=info["chat_id"],
                duration_ms=round((time.monotonic() - started) * 1000),
            )
