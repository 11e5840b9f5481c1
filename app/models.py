# app/models.py
"""
📊 МОДЕЛИ ДАННЫХ

Состояние диалога живёт только у бота, бэкенд про него ничего не знает:
- ChatSession (сессия одного чата)
- режимы диалога (Idle, CreatingDish, EditingDish, EditingDishField, SearchingDish)
- DishDraft (черновик нового блюда)
- DishEditRequest (частичное обновление блюда)
- OrderStatus (статусы заказа)

Модели на pydantic, чтобы сессию можно было положить в Redis как JSON.
"""

import uuid
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


# ==========================================
# ENUMS (Перечисления)
# ==========================================

class OrderStatus(str, Enum):
    """Статусы заказа на бэкенде."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class CreationStep(str, Enum):
    """Шаги пошагового создания блюда."""

    NAME = "name"
    DESCRIPTION = "description"
    PRICE = "price"
    PREP_TIME = "prep_time"


# ==========================================
# ЧЕРНОВИК БЛЮДА
# ==========================================

class DishDraft(BaseModel):
    """
    Накопитель данных при создании блюда.

    restaurant_id задаётся при старте и больше не меняется.
    idempotency_key генерируется один раз на черновик и уходит
    в заголовке Idempotency-Key при отправке.
    """

    restaurant_id: int
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[Decimal] = None
    preparation_time: Optional[int] = None
    is_spicy: bool = False
    is_vegetarian: bool = False
    idempotency_key: str = Field(default_factory=lambda: uuid.uuid4().hex)

    def missing_fields(self) -> list[str]:
        return [
            name for name in ("name", "description", "price", "preparation_time")
            if getattr(self, name) is None
        ]

    def to_payload(self) -> dict[str, Any]:
        """Тело запроса POST /admin/dishes."""
        missing = self.missing_fields()
        if missing:
            raise ValueError(f"Черновик неполный: {', '.join(missing)}")
        return {
            "restaurant_id": self.restaurant_id,
            "name": self.name,
            "description": self.description,
            "price": json_number(self.price),
            "preparation_time": self.preparation_time,
            "ingredients": [],
            "is_vegetarian": self.is_vegetarian,
            "is_spicy": self.is_spicy,
        }


class DishEditRequest(BaseModel):
    """
    Частичное обновление блюда.

    В тело PUT попадают только явно заданные поля.
    """

    dish_id: int
    changes: dict[str, Any] = Field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            key: json_number(value) if isinstance(value, Decimal) else value
            for key, value in self.changes.items()
        }


def json_number(value: Decimal):
    """Decimal → int (если целое) или float, чтобы ушло в JSON."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


# ==========================================
# РЕЖИМЫ ДИАЛОГА
# ==========================================

class Idle(BaseModel):
    kind: Literal["idle"] = "idle"


class CreatingDish(BaseModel):
    kind: Literal["creating_dish"] = "creating_dish"
    draft: DishDraft
    step: CreationStep = CreationStep.NAME


class EditingDish(BaseModel):
    """Ждём блок строк "Поле: значение" для нескольких полей сразу."""

    kind: Literal["editing_dish"] = "editing_dish"
    dish_id: int


class EditingDishField(BaseModel):
    kind: Literal["editing_dish_field"] = "editing_dish_field"
    dish_id: int
    field: str


class SearchingDish(BaseModel):
    kind: Literal["searching_dish"] = "searching_dish"


Mode = Annotated[
    Union[Idle, CreatingDish, EditingDish, EditingDishField, SearchingDish],
    Field(discriminator="kind"),
]


# ==========================================
# СЕССИЯ ЧАТА
# ==========================================

RECENT_EVENTS_LIMIT = 32


class ChatSession(BaseModel):
    """
    Сессия одного чата.

    Создаётся лениво на первом событии, меняется только движком.
    """

    chat_id: int
    mode: Mode = Field(default_factory=Idle)
    last_menu_message_id: Optional[int] = None
    recent_events: list[str] = Field(default_factory=list)

    @property
    def is_idle(self) -> bool:
        return isinstance(self.mode, Idle)

    def reset(self) -> None:
        self.mode = Idle()

    def seen(self, event_id: Optional[str]) -> bool:
        """
        Отмечает событие как обработанное.

        Возвращает True, если такое событие уже было (повторная доставка).
        """
        if event_id is None:
            return False
        if event_id in self.recent_events:
            return True
        self.recent_events.append(event_id)
        del self.recent_events[:-RECENT_EVENTS_LIMIT]
        return False
