# app/bot/access.py
"""
Проверка доступа.

Два плоских списка chat id:
- admin_users - полный доступ (блюда + заказы)
- order_operators - только заказы

Если admin_users пуст - бот открыт всем.
Ролей нет: каждое действие само проверяет нужную возможность.
"""

from dataclasses import dataclass, field


class AuthorizationError(Exception):
    """Чат не имеет права на это действие."""


ACCESS_DENIED_TEXT = (
    "⛔ У вас нет доступа к админ-панели.\n"
    "Обратитесь к администратору."
)
CAPABILITY_DENIED_TEXT = "⛔ Недостаточно прав для этого действия."


@dataclass(frozen=True)
class AccessPolicy:
    admins: frozenset[int] = field(default_factory=frozenset)
    order_operators: frozenset[int] = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls, settings) -> "AccessPolicy":
        return cls(
            admins=settings.admin_user_ids,
            order_operators=settings.order_operator_ids,
        )

    @property
    def is_open(self) -> bool:
        return not self.admins

    def is_authorized(self, chat_id: int) -> bool:
        return self.is_open or chat_id in self.admins or chat_id in self.order_operators

    def can_manage_dishes(self, chat_id: int) -> bool:
        return self.is_open or chat_id in self.admins

    def can_view_orders(self, chat_id: int) -> bool:
        return self.is_authorized(chat_id)

    def require(self, allowed: bool) -> None:
        if not allowed:
            raise AuthorizationError(CAPABILITY_DENIED_TEXT)
