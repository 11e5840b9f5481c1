# app/bot/services/notifications.py
"""
Сервис уведомлений админов о новых заказах.

Бэкенд дёргает POST /webhook/new-order, мы рассылаем карточку заказа
всем админам. Ошибка отправки одному админу не мешает остальным.
"""

from typing import Iterable

import structlog

from app.bot.screens import ScreenRenderer

logger = structlog.get_logger()


def notification_recipients(admin_chat_id, admin_ids: Iterable[int]) -> list[int]:
    """ADMIN_CHAT_ID + ADMIN_USERS, без повторов, в стабильном порядке."""
    recipients = []
    for chat_id in ([admin_chat_id] if admin_chat_id else []) + sorted(admin_ids):
        if chat_id not in recipients:
            recipients.append(chat_id)
    return recipients


async def notify_admins_new_order(transport, renderer: ScreenRenderer, order: dict,
                                  recipients: Iterable[int]) -> int:
    """
    Отправляет уведомление каждому получателю.

    Возвращает сколько уведомлений ушло.
    """
    screen = renderer.new_order_notification(order)
    sent = 0

    for chat_id in recipients:
        try:
            await transport.send_screen(chat_id, screen)
            sent += 1
        except Exception as e:
            logger.error("admin_notification_failed", chat_id=chat_id,
                         order_id=order.get("id"), error=str(e))

    logger.info("admins_notified", order_id=order.get("id"), sent=sent)
    return sent
