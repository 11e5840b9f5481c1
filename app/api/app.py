# app/api/app.py
"""
FastAPI приложение бота.

Эндпоинты:
- GET  /health - жив ли бот (для Docker / Railway)
- POST /webhook/new-order - бэкенд сообщает о новом заказе, рассылаем админам
- POST <WEBHOOK_PATH> - апдейты Telegram (только в режиме webhook)
"""

import hmac
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import structlog
from aiogram import Bot, Dispatcher
from aiogram.types import Update
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from app.bot.screens import ScreenRenderer
from app.bot.services.notifications import notify_admins_new_order

logger = structlog.get_logger()


def _secret_matches(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode(), expected.encode())


class NewOrderPayload(BaseModel):
    """Тело POST /webhook/new-order: {"order": {...}}."""

    order: Optional[dict[str, Any]] = None


def create_app(
    *,
    transport,
    renderer: ScreenRenderer,
    recipients: Iterable[int],
    admins: Iterable[int] = (),
    bot: Optional[Bot] = None,
    dispatcher: Optional[Dispatcher] = None,
    webhook_path: str = "/telegram/webhook",
    webhook_secret: str = "",
    order_webhook_secret: str = "",
) -> FastAPI:
    """
    Собирает приложение.

    Если переданы bot и dispatcher - регистрируется приём апдейтов Telegram.
    Если задан order_webhook_secret - бэкенд обязан прислать его в X-Webhook-Secret.
    """

    app = FastAPI(
        title="Food Delivery Admin Bot",
        description="Health-check, уведомления о заказах и webhook Telegram",
        version="1.0.0",
    )

    recipients = list(recipients)
    admins = sorted(admins)
    transport_mode = "webhook" if bot is not None and dispatcher is not None else "polling"

    # ==========================================
    # ENDPOINT: Health check
    # ==========================================

    @app.get("/health")
    async def health_check():
        return {
            "status": "ok",
            "service": "admin-telegram-bot",
            "admins": admins,
            "transport": transport_mode,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # ==========================================
    # ENDPOINT: Новый заказ от бэкенда
    # ==========================================

    @app.post("/webhook/new-order")
    async def new_order(payload: NewOrderPayload, request: Request):
        if order_webhook_secret and not _secret_matches(
            request.headers.get("X-Webhook-Secret", ""), order_webhook_secret
        ):
            logger.warning("new_order_webhook_bad_secret")
            raise HTTPException(status_code=403, detail="Forbidden")

        if not payload.order:
            raise HTTPException(status_code=400, detail="No order data")

        logger.info("new_order_webhook", order_id=payload.order.get("id"))
        sent = await notify_admins_new_order(transport, renderer, payload.order, recipients)
        return {"success": True, "notified": sent > 0, "sent": sent}

    # ==========================================
    # ENDPOINT: Telegram webhook
    # ==========================================

    if transport_mode == "webhook":

        @app.post(webhook_path)
        async def telegram_webhook(request: Request):
            if webhook_secret:
                token = request.headers.get("X-Telegram-Bot-Api-Secret-Token", "")
                if not _secret_matches(token, webhook_secret):
                    logger.warning("telegram_webhook_bad_secret", provided=token[:4] + "***")
                    raise HTTPException(status_code=403, detail="Forbidden")

            update = Update.model_validate(await request.json(), context={"bot": bot})
            await dispatcher.feed_update(bot, update)
            return {"ok": True}

    return app
