# app/bot/screens.py
"""
🖼 ЭКРАНЫ

Экран = текст + кнопки (ряды пар "подпись, action id").
Каждый метод ScreenRenderer - чистая функция от входных данных:
один и тот же вход даёт один и тот же экран, без глобального состояния
и без "текущего времени" внутри.

Разметка (HTML или простой текст) задаётся стратегией Markup.
"""

import html
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from app.bot.fields import FIELDS, DishField
from app.bot.services.orders import (
    STATUS_LIST_TITLE,
    offered_actions,
    parse_status,
    status_emoji,
    status_text,
)
from app.models import CreationStep, OrderStatus


# ==========================================
# ЭКРАН И КНОПКИ
# ==========================================

@dataclass(frozen=True)
class Button:
    label: str
    action: str


@dataclass(frozen=True)
class Screen:
    text: str
    rows: tuple[tuple[Button, ...], ...] = field(default_factory=tuple)

    @property
    def actions(self) -> list[str]:
        return [button.action for row in self.rows for button in row]


def make_rows(*rows: Iterable[Button]) -> tuple[tuple[Button, ...], ...]:
    return tuple(tuple(row) for row in rows if row)


def action(name: str, *args) -> str:
    """action id вида "dish_view:42" или "order_set:7:pending:confirmed"."""
    return ":".join([name, *(str(arg) for arg in args)])


def parse_action(data: str) -> tuple[str, list[str]]:
    name, *args = data.split(":")
    return name, args


# ==========================================
# РАЗМЕТКА
# ==========================================

class HtmlMarkup:
    parse_mode = "HTML"

    def escape(self, value) -> str:
        return html.escape(str(value), quote=False)

    def bold(self, value) -> str:
        return f"<b>{self.escape(value)}</b>"

    def code(self, value) -> str:
        return f"<code>{self.escape(value)}</code>"


class PlainMarkup:
    parse_mode = None

    def escape(self, value) -> str:
        return str(value)

    def bold(self, value) -> str:
        return str(value)

    def code(self, value) -> str:
        return str(value)


def markup_for(render_mode: str):
    return HtmlMarkup() if render_mode == "html" else PlainMarkup()


# ==========================================
# ФОРМАТИРОВАНИЕ
# ==========================================

def yes_no(value) -> str:
    return "Да" if value else "Нет"


def format_money(value) -> str:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return f"{value} ₽"
    if number.is_integer():
        return f"{int(number)} ₽"
    return f"{number:.2f} ₽"


def format_time(value) -> str:
    if not value:
        return "—"
    try:
        moment = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return str(value)
    return moment.strftime("%d.%m %H:%M")


CREATION_PROMPTS = {
    CreationStep.NAME: "🍽️ Создание нового блюда\n\nВведите название блюда:",
    CreationStep.DESCRIPTION: "📝 Введите описание блюда:",
    CreationStep.PRICE: "💰 Введите цену блюда (только число, например: 350):",
    CreationStep.PREP_TIME: "⏱️ Введите время приготовления в минутах (например: 25):",
}

BACK_TO_MAIN = Button("🏠 Главное меню", "main_menu")


# ==========================================
# РЕНДЕРЕР
# ==========================================

class ScreenRenderer:
    def __init__(self, markup=None):
        self.m = markup or HtmlMarkup()

    def _with_error(self, text: str, error: Optional[str]) -> str:
        if not error:
            return text
        return f"❌ {self.m.escape(error)}\n\n{text}"

    # ---------- общие ----------

    def main_menu(self, can_manage_dishes: bool, can_view_orders: bool, notice: str = "") -> Screen:
        text = f"👑 {self.m.bold('Административная панель')}\n\nВыберите раздел:"
        if notice:
            text = f"{self.m.escape(notice)}\n\n{text}"
        sections = []
        if can_manage_dishes:
            sections.append([
                Button("🍽️ Управление блюдами", "dishes_menu"),
                Button("🏪 Рестораны", "restaurants_menu"),
            ])
        if can_view_orders:
            sections.append([
                Button("📦 Управление заказами", "orders_menu"),
                Button("📊 Статистика", "stats"),
            ])
        sections.append([
            Button("⚙️ Админ-панель", "admin_panel"),
            Button("🆘 Помощь", "help"),
        ])
        return Screen(text, make_rows(*sections))

    def navigation_hint(self, can_manage_dishes: bool, can_view_orders: bool) -> Screen:
        return self.main_menu(
            can_manage_dishes, can_view_orders, notice="Используйте меню для навигации."
        )

    def message(self, text: str, back: Button = BACK_TO_MAIN) -> Screen:
        return Screen(self.m.escape(text), make_rows([back]))

    def error(self, text: str, back: Button = BACK_TO_MAIN) -> Screen:
        return Screen(f"❌ {self.m.escape(text)}", make_rows([back]))

    def help(self) -> Screen:
        text = (
            f"🆘 {self.m.bold('Помощь администратору')}\n\n"
            f"{self.m.bold('Основные функции:')}\n"
            "• 🍽️ Управление блюдами (создание, редактирование, удаление)\n"
            "• 📦 Управление заказами (подтверждение, отслеживание)\n"
            "• 📊 Просмотр статистики\n\n"
            f"{self.m.bold('Быстрые команды:')}\n"
            "/start - Главное меню\n"
            "/orders - Управление заказами\n"
            "/cancel - Отменить текущее действие\n\n"
            f"{self.m.bold('Как работать:')}\n"
            "1. Используйте кнопки меню\n"
            "2. Следуйте инструкциям бота\n"
            "3. Для отмены действия нажмите «Отмена»"
        )
        return Screen(text, make_rows([BACK_TO_MAIN]))

    def admin_panel(self, api_base_url: str, admins: Sequence[int], health: Optional[dict],
                    health_error: Optional[str] = None) -> Screen:
        admins_text = ", ".join(str(a) for a in sorted(admins)) or "Все пользователи"
        text = (
            f"⚙️ {self.m.bold('Административная панель')}\n\n"
            f"🔗 API: {self.m.escape(api_base_url)}\n"
            f"👑 Админы: {self.m.escape(admins_text)}\n\n"
        )
        if health is not None:
            ok = health.get("status") in ("ok", "healthy")
            text += (
                f"{'🟢' if ok else '🔴'} Бэкенд: {self.m.escape(health.get('status', '—'))}\n"
                f"🗄️ База данных: {self.m.escape(health.get('database', '—'))}\n"
                f"🌍 Окружение: {self.m.escape(health.get('environment', '—'))}\n"
                f"🕐 Проверено: {self.m.escape(format_time(health.get('timestamp')))}"
            )
        else:
            text += f"🔴 Бэкенд недоступен: {self.m.escape(health_error or 'нет ответа')}"
        return Screen(text, make_rows([Button("🔄 Обновить", "admin_panel"), BACK_TO_MAIN]))

    def stats(self, orders: list[dict], restaurants: list[dict], dishes_total: int,
              updated_at: str) -> Screen:
        revenue = 0.0
        for order in orders:
            try:
                revenue += float(order.get("total_amount") or 0)
            except (TypeError, ValueError):
                continue
        pending = sum(1 for o in orders if o.get("status") == OrderStatus.PENDING.value)
        text = (
            f"📊 {self.m.bold('Статистика системы')}\n\n"
            f"📦 Всего заказов: {len(orders)}\n"
            f"🆕 Новых заказов: {pending}\n"
            f"💰 Общая выручка: {revenue:.2f} ₽\n"
            f"🏪 Ресторанов: {len(restaurants)}\n"
            f"🍽️ Блюд в системе: {dishes_total}\n\n"
            f"🔄 Обновлено: {self.m.escape(updated_at)}"
        )
        return Screen(text, make_rows([Button("🔄 Обновить", "stats"), BACK_TO_MAIN]))

    # ---------- блюда ----------

    def dishes_menu(self, notice: str = "") -> Screen:
        text = f"🍽️ {self.m.bold('Управление блюдами')}\n\nВыберите действие:"
        if notice:
            text = f"{self.m.escape(notice)}\n\n{text}"
        return Screen(text, make_rows(
            [Button("📋 Список блюд", "dishes_list"), Button("➕ Новое блюдо", "dish_create")],
            [Button("🔍 Найти блюдо", "dish_search")],
            [BACK_TO_MAIN],
        ))

    def dish_list(self, menus: Sequence[tuple[dict, list[dict]]]) -> Screen:
        lines = [f"📋 {self.m.bold('Все блюда')}", ""]
        buttons = []
        for restaurant, dishes in menus:
            if not dishes:
                continue
            lines.append(self.m.bold(restaurant.get("name", "—")))
            for dish in dishes:
                mark = "✅" if dish.get("is_available") else "❌"
                lines.append(
                    f"{mark} {self.m.escape(dish.get('name', '—'))} - "
                    f"{format_money(dish.get('price'))} (ID: {dish.get('id')})"
                )
                buttons.append([Button(f"{mark} {dish.get('name', '—')}", action("dish_view", dish.get("id")))])
            lines.append("")
        if not buttons:
            return Screen(
                "😔 Блюда не найдены. Создайте первое блюдо.",
                make_rows([Button("➕ Новое блюдо", "dish_create")], [Button("🔙 Назад", "dishes_menu")]),
            )
        buttons.append([Button("🔙 Назад", "dishes_menu")])
        return Screen("\n".join(lines).rstrip(), make_rows(*buttons))

    def restaurant_picker(self, restaurants: list[dict]) -> Screen:
        rows = [[Button(r.get("name", "—"), action("dish_create_in", r.get("id")))] for r in restaurants]
        rows.append([Button("❌ Отмена", "cancel:dishes")])
        return Screen(f"🏪 {self.m.bold('Выберите ресторан для нового блюда:')}", make_rows(*rows))

    def creation_prompt(self, step: CreationStep, error: Optional[str] = None) -> Screen:
        text = self.m.escape(CREATION_PROMPTS[step])
        return Screen(self._with_error(text, error), make_rows([Button("❌ Отмена", "cancel:dishes")]))

    def dish_created(self, dish: dict) -> Screen:
        text = (
            f"✅ Блюдо «{self.m.escape(dish.get('name', '—'))}» успешно создано!\n\n"
            f"💰 Цена: {format_money(dish.get('price'))}\n"
            f"⏱️ Время приготовления: {self.m.escape(dish.get('preparation_time', '—'))} мин\n\n"
            f"🆔 ID: {self.m.code(dish.get('id'))}"
        )
        return Screen(text, make_rows(
            [Button("🍽️ Открыть блюдо", action("dish_view", dish.get("id")))],
            [Button("🔙 К блюдам", "dishes_menu"), BACK_TO_MAIN],
        ))

    def dish_detail(self, dish: dict, notice: str = "") -> Screen:
        dish_id = dish.get("id")
        available = bool(dish.get("is_available"))
        lines = [
            f"🍽️ {self.m.bold(dish.get('name', '—'))}",
            "",
            f"📝 {self.m.escape(dish.get('description') or '—')}",
            "",
            f"💰 Цена: {format_money(dish.get('price'))}",
            f"⏱️ Время приготовления: {self.m.escape(dish.get('preparation_time', '—'))} мин",
            f"📊 Статус: {'✅ Доступно' if available else '❌ Недоступно'}",
            f"🌶️ Острое: {yes_no(dish.get('is_spicy'))}",
            f"🥦 Вегетарианское: {yes_no(dish.get('is_vegetarian'))}",
        ]
        if dish.get("restaurant_name"):
            lines.append(f"🏪 Ресторан: {self.m.escape(dish['restaurant_name'])}")
        lines += ["", f"🆔 ID: {self.m.code(dish_id)}"]
        text = "\n".join(lines)
        if notice:
            text = f"{self.m.escape(notice)}\n\n{text}"

        field_buttons = [
            Button(f"✏️ {f.title.capitalize()}", action("dish_field", dish_id, f.key))
            for f in FIELDS if f.key != "available"
        ]
        return Screen(text, make_rows(
            [Button("❌ Сделать недоступным" if available else "✅ Сделать доступным",
                    action("dish_toggle", dish_id))],
            field_buttons[0:2],
            field_buttons[2:4],
            field_buttons[4:6],
            [Button("📝 Несколько полей", action("dish_patch", dish_id)),
             Button("🗑️ Удалить", action("dish_delete", dish_id))],
            [Button("📋 Список блюд", "dishes_list"), BACK_TO_MAIN],
        ))

    def field_prompt(self, dish_id: int, dish_field: DishField, error: Optional[str] = None) -> Screen:
        text = f"✏️ Введите новое значение: {self.m.escape(dish_field.title)}"
        if dish_field.hint:
            text += f" ({self.m.escape(dish_field.hint)})"
        return Screen(self._with_error(text, error),
                      make_rows([Button("❌ Отмена", action("cancel", "dish", dish_id))]))

    def patch_prompt(self, dish_id: int, error: Optional[str] = None) -> Screen:
        labels = "\n".join(
            f"{f.labels[0].capitalize()}: …" + (f" ({f.hint})" if f.hint else "") for f in FIELDS
        )
        text = (
            "📝 Отправьте новые значения, по одному полю в строке:\n\n"
            f"{self.m.escape(labels)}\n\n"
            "Указывайте только то, что нужно изменить."
        )
        return Screen(self._with_error(text, error),
                      make_rows([Button("❌ Отмена", action("cancel", "dish", dish_id))]))

    def search_prompt(self, error: Optional[str] = None) -> Screen:
        text = "🔍 Введите ID блюда:"
        return Screen(self._with_error(text, error), make_rows([Button("❌ Отмена", "cancel:dishes")]))

    def delete_confirm(self, dish: dict) -> Screen:
        dish_id = dish.get("id")
        text = (
            f"🗑️ {self.m.bold('Подтверждение удаления')}\n\n"
            "Вы уверены, что хотите удалить блюдо?\n\n"
            f"🍽️ {self.m.escape(dish.get('name', '—'))}\n"
            f"💰 {format_money(dish.get('price'))}\n"
            f"🏪 {self.m.escape(dish.get('restaurant_name') or '—')}\n\n"
            "⚠️ Если блюдо есть в заказах, оно будет сделано недоступным."
        )
        return Screen(text, make_rows([
            Button("✅ Да, удалить", action("dish_delete_confirm", dish_id)),
            Button("❌ Нет, отмена", action("dish_view", dish_id)),
        ]))

    def dish_deleted(self, result: dict) -> Screen:
        verb = "сделано недоступным" if result.get("soft_delete") else "удалено"
        text = f"✅ Блюдо успешно {verb}"
        dish = result.get("dish")
        if isinstance(dish, dict) and dish.get("name"):
            text += f"\n\n🍽️ «{self.m.escape(dish['name'])}»"
        return self.dishes_menu_with_text(text)

    def dishes_menu_with_text(self, text: str) -> Screen:
        menu = self.dishes_menu()
        return Screen(f"{text}\n\n{menu.text}", menu.rows)

    # ---------- рестораны ----------

    def restaurants_menu(self) -> Screen:
        return Screen(
            f"🏪 {self.m.bold('Рестораны')}\n\nВыберите действие:",
            make_rows([Button("📋 Список ресторанов", "restaurants_list")], [BACK_TO_MAIN]),
        )

    def restaurant_list(self, restaurants: list[dict]) -> Screen:
        if not restaurants:
            return Screen("😔 Рестораны не найдены.", make_rows([Button("🔙 Назад", "restaurants_menu")]))
        lines = [f"🏪 {self.m.bold('Рестораны')}", ""]
        rows = []
        for r in restaurants:
            rating = r.get("rating")
            categories = ", ".join(str(c) for c in r.get("categories") or []) or "—"
            lines += [
                self.m.bold(r.get("name", "—")) + (f" ⭐ {self.m.escape(rating)}" if rating is not None else ""),
                f"🚚 {self.m.escape(r.get('delivery_time', '—'))} | {format_money(r.get('delivery_price', 0))}",
                f"🏷️ {self.m.escape(categories)}",
                "",
            ]
            rows.append([Button(f"🍽️ Меню: {r.get('name', '—')}", action("restaurant_menu", r.get("id")))])
        rows.append([Button("🔙 Назад", "restaurants_menu")])
        return Screen("\n".join(lines).rstrip(), make_rows(*rows))

    def restaurant_menu(self, restaurant_id: int, dishes: list[dict]) -> Screen:
        if not dishes:
            text = f"😔 В меню ресторана #{restaurant_id} пока нет блюд."
        else:
            lines = [f"🍽️ {self.m.bold(f'Меню ресторана #{restaurant_id}')}", ""]
            for dish in dishes:
                mark = "✅" if dish.get("is_available") else "❌"
                lines.append(
                    f"{mark} {self.m.escape(dish.get('name', '—'))} - "
                    f"{format_money(dish.get('price'))} (ID: {dish.get('id')})"
                )
            text = "\n".join(lines)
        rows = [[Button(f"✏️ {d.get('name', '—')}", action("dish_view", d.get("id")))] for d in dishes]
        rows.append([Button("🔙 К ресторанам", "restaurants_list")])
        return Screen(text, make_rows(*rows))

    # ---------- заказы ----------

    def orders_menu(self) -> Screen:
        return Screen(
            f"📦 {self.m.bold('Управление заказами')}\n\nВыберите статус заказов для просмотра:",
            make_rows(
                [Button("🆕 Новые заказы", "orders:pending"), Button("⏳ В обработке", "orders:confirmed")],
                [Button("👨‍🍳 Готовятся", "orders:preparing"), Button("🚚 Доставляются", "orders:delivering")],
                [Button("✅ Завершённые", "orders:delivered"), Button("📊 Все заказы", "orders:all")],
                [BACK_TO_MAIN],
            ),
        )

    def order_list(self, status: Optional[OrderStatus], orders: list[dict]) -> Screen:
        title = STATUS_LIST_TITLE[status] if status else "Все"
        if not orders:
            return Screen(f"😔 {self.m.escape(title)} заказов нет.",
                          make_rows([Button("🔙 К заказам", "orders_menu")]))
        emoji = status_emoji(status.value) if status else "📊"
        lines = [f"{emoji} {self.m.bold(f'{title} заказы')}", ""]
        rows = []
        for order in orders:
            lines += [
                self.m.bold(f"Заказ #{order.get('id')}"),
                f"👤 {self.m.escape(order.get('user_name') or 'Клиент')} | "
                f"📞 {self.m.escape(order.get('user_phone') or 'Нет телефона')}",
                f"🏪 {self.m.escape(order.get('restaurant_name') or '—')}",
                f"💰 {format_money(order.get('total_amount'))}",
                f"📍 {self.m.escape(order.get('delivery_address') or '—')}",
                f"🕐 {self.m.escape(format_time(order.get('order_date')))}",
            ]
            items = order.get("items") or []
            if items:
                summary = ", ".join(f"{i.get('dish_name')} x{i.get('quantity')}" for i in items[:2])
                if len(items) > 2:
                    summary += f" и ещё {len(items) - 2}"
                lines.append(f"🍽️ {self.m.escape(summary)}")
            lines.append("")
            rows.append([Button(
                f"📦 Заказ #{order.get('id')} - {format_money(order.get('total_amount'))}",
                action("order_view", order.get("id")),
            )])
        rows.append([Button("🔙 К заказам", "orders_menu")])
        return Screen("\n".join(lines).rstrip(), make_rows(*rows))

    def order_detail(self, order: dict, notice: str = "") -> Screen:
        order_id = order.get("id")
        status = order.get("status")
        lines = [
            f"📦 {self.m.bold(f'Заказ #{order_id}')}",
            "",
            f"👤 Клиент: {self.m.escape(order.get('user_name') or 'Не указано')}",
            f"📞 Телефон: {self.m.escape(order.get('user_phone') or 'Не указано')}",
            f"🏪 Ресторан: {self.m.escape(order.get('restaurant_name') or '—')}",
            f"📍 Адрес: {self.m.escape(order.get('delivery_address') or '—')}",
            f"💳 Оплата: {self.m.escape(order.get('payment_method') or '—')}",
            f"📊 Статус: {status_emoji(status)} {self.m.escape(status_text(status))}",
            f"🕐 Создан: {self.m.escape(format_time(order.get('order_date')))}",
        ]
        items = order.get("items") or []
        if items:
            lines += ["", self.m.bold("🍽️ Состав заказа:")]
            for item in items:
                try:
                    total = float(item.get("dish_price") or 0) * int(item.get("quantity") or 0)
                except (TypeError, ValueError):
                    total = item.get("dish_price")
                lines.append(
                    f"• {self.m.escape(item.get('dish_name', '—'))} x{item.get('quantity')} - {format_money(total)}"
                )
        lines += ["", f"💰 {self.m.bold('Итого:')} {format_money(order.get('total_amount'))}"]
        text = "\n".join(lines)
        if notice:
            text = f"{self.m.escape(notice)}\n\n{text}"

        current = parse_status(status)
        action_row = [
            Button(a.label, action("order_set", order_id, current.value, a.target.value))
            for a in offered_actions(status)
        ]
        return Screen(text, make_rows(
            action_row,
            [Button("📋 Все заказы", "orders:all"), BACK_TO_MAIN],
        ))

    def order_action_failed(self, order_id, error: str) -> Screen:
        return Screen(
            f"❌ Не удалось изменить статус заказа #{self.m.escape(order_id)}: {self.m.escape(error)}",
            make_rows([Button("🔄 Открыть заказ", action("order_view", order_id))]),
        )

    def new_order_notification(self, order: dict) -> Screen:
        text = (
            f"🆕 {self.m.bold('Новый заказ!')} #{self.m.escape(order.get('id'))}\n\n"
            f"🏪 {self.m.escape(order.get('restaurant_name') or '—')}\n"
            f"💰 {format_money(order.get('total_amount'))}\n"
            f"📍 {self.m.escape(order.get('delivery_address') or '—')}\n"
            f"🕐 {self.m.escape(format_time(order.get('order_date')))}\n\n"
            "Для управления: /orders"
        )
        return Screen(text, make_rows(
            [Button("📦 Открыть заказ", action("order_view", order.get("id")))],
            [Button("🆕 Новые заказы", "orders:pending")],
        ))
