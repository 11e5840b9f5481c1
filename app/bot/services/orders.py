# app/bot/services/orders.py
"""
Сервис заказов.

Заказы живут на бэкенде, бот их не хранит. Здесь:
- таблица допустимых переходов статуса (какие кнопки показывать)
- получение заказов через Admin API
- смена статуса с проверкой по таблице
"""

from dataclasses import dataclass
from typing import Optional

from app.models import OrderStatus
from infrastructure.admin_api import AdminApiClient
from infrastructure.logger import logger


class TransitionNotAllowed(Exception):
    """Перехода нет в таблице для текущего статуса."""

    def __init__(self, current, target):
        super().__init__(f"Переход {getattr(current, 'value', current)} → {getattr(target, 'value', target)} недопустим")
        self.current = current
        self.target = target


# ==========================================
# ТАБЛИЦА ДЕЙСТВИЙ ПО СТАТУСУ
# ==========================================

@dataclass(frozen=True)
class OrderAction:
    verb: str
    label: str
    target: OrderStatus


ORDER_ACTIONS: dict[OrderStatus, tuple[OrderAction, ...]] = {
    OrderStatus.PENDING: (
        OrderAction("confirm", "✅ Подтвердить", OrderStatus.CONFIRMED),
        OrderAction("cancel", "❌ Отменить", OrderStatus.CANCELLED),
    ),
    OrderStatus.CONFIRMED: (
        OrderAction("prepare", "👨‍🍳 В приготовление", OrderStatus.PREPARING),
    ),
    OrderStatus.PREPARING: (
        OrderAction("deliver", "🚚 В доставку", OrderStatus.DELIVERING),
    ),
    OrderStatus.DELIVERING: (
        OrderAction("delivered", "✅ Доставлен", OrderStatus.DELIVERED),
    ),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
}

STATUS_EMOJI = {
    OrderStatus.PENDING: "🆕",
    OrderStatus.CONFIRMED: "✅",
    OrderStatus.PREPARING: "👨‍🍳",
    OrderStatus.DELIVERING: "🚚",
    OrderStatus.DELIVERED: "🎉",
    OrderStatus.CANCELLED: "❌",
}

STATUS_TEXT = {
    OrderStatus.PENDING: "Новый",
    OrderStatus.CONFIRMED: "Подтверждён",
    OrderStatus.PREPARING: "Готовится",
    OrderStatus.DELIVERING: "В доставке",
    OrderStatus.DELIVERED: "Доставлен",
    OrderStatus.CANCELLED: "Отменён",
}

# Заголовки списков заказов (orders:<status>)
STATUS_LIST_TITLE = {
    OrderStatus.PENDING: "Новые",
    OrderStatus.CONFIRMED: "Подтверждённые",
    OrderStatus.PREPARING: "В приготовлении",
    OrderStatus.DELIVERING: "Доставляются",
    OrderStatus.DELIVERED: "Завершённые",
    OrderStatus.CANCELLED: "Отменённые",
}


def parse_status(value) -> Optional[OrderStatus]:
    try:
        return OrderStatus(value)
    except ValueError:
        return None


def offered_actions(status) -> tuple[OrderAction, ...]:
    """Действия для текущего статуса. Неизвестный статус - никаких действий."""
    parsed = parse_status(status)
    if parsed is None:
        return ()
    return ORDER_ACTIONS[parsed]


def is_allowed(current, target) -> bool:
    target = parse_status(target)
    return target is not None and any(
        action.target is target for action in offered_actions(current)
    )


def status_text(status) -> str:
    parsed = parse_status(status)
    return STATUS_TEXT[parsed] if parsed else str(status)


def status_emoji(status) -> str:
    parsed = parse_status(status)
    return STATUS_EMOJI[parsed] if parsed else "📦"


# ==========================================
# СЕРВИС
# ==========================================

class OrderService:
    """Работа с заказами через Admin API."""

    def __init__(self, api: AdminApiClient, page_size: int = 10):
        self.api = api
        self.page_size = page_size

    async def list_orders(self, status: Optional[OrderStatus] = None) -> list[dict]:
        orders = await self.api.list_orders(
            status=status.value if status else None,
            limit=self.page_size,
        )
        logger.info("orders_fetched", status=status.value if status else "all", count=len(orders))
        return orders

    async def get_order(self, order_id: int) -> Optional[dict]:
        """
        Отдельного эндпоинта для заказа нет, ищем в общем списке.
        """
        orders = await self.api.list_orders()
        for order in orders:
            if str(order.get("id")) == str(order_id):
                return order
        logger.warning("order_not_found", order_id=order_id)
        return None

    async def change_status(self, order_id: int, current, target: OrderStatus) -> dict:
        """
        Меняет статус одним PUT.

        Переход, которого нет в таблице для current, отклоняется
        без запроса к бэкенду.
        """
        if not is_allowed(current, target):
            raise TransitionNotAllowed(current, target)
        order = await self.api.update_order_status(order_id, target.value)
        logger.info("order_status_changed", order_id=order_id, status=target.value)
        return order
