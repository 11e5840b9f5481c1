import asyncio
from datetime import datetime

import pytest

from app.bot.access import ACCESS_DENIED_TEXT, CAPABILITY_DENIED_TEXT, AccessPolicy
from app.bot.engine import CallbackAction, TextMessage
from app.models import CreatingDish, CreationStep, EditingDish, EditingDishField, Idle, SearchingDish
from infrastructure.admin_api import BackendError


def text(chat_id, value, event_id=None):
    return TextMessage(chat_id=chat_id, text=value, event_id=event_id)


def press(chat_id, action_id, message_id=10, callback_id=None):
    return CallbackAction(chat_id=chat_id, action_id=action_id,
                          message_id=message_id, callback_id=callback_id)


# ==========================================
# ДОСТУП
# ==========================================

class TestAccess:
    @pytest.mark.asyncio
    async def test_unauthorized_text_gets_denial_without_api_calls(self, make_engine, api, transport):
        engine = make_engine(AccessPolicy(admins=frozenset({1})))

        await engine.handle_text(text(2, "/start"))
        await engine.handle_text(text(2, "hello"))

        assert api.calls == []
        assert [screen.text for _, screen in transport.sent] == [ACCESS_DENIED_TEXT] * 2

    @pytest.mark.asyncio
    async def test_unauthorized_callback_is_answered_with_alert(self, make_engine, api, transport):
        engine = make_engine(AccessPolicy(admins=frozenset({1})))

        await engine.handle_callback(press(2, "order_set:7:pending:confirmed", callback_id="c1"))

        assert api.calls == []
        assert transport.acks == [("c1", "⛔ Нет доступа", True)]
        assert transport.shown == []

    @pytest.mark.asyncio
    async def test_order_operator_cannot_touch_dishes(self, make_engine, api, transport):
        engine = make_engine(AccessPolicy(admins=frozenset({1}), order_operators=frozenset({2})))

        await engine.handle_callback(press(2, "dish_view:42"))

        assert api.calls == []
        assert CAPABILITY_DENIED_TEXT in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_order_operator_main_menu_has_no_dish_sections(self, make_engine, transport):
        engine = make_engine(AccessPolicy(admins=frozenset({1}), order_operators=frozenset({2})))

        await engine.handle_text(text(2, "/start"))

        actions = transport.last_screen.actions
        assert "orders_menu" in actions
        assert "dishes_menu" not in actions

    @pytest.mark.asyncio
    async def test_order_operator_lists_orders(self, make_engine, api):
        engine = make_engine(AccessPolicy(admins=frozenset({1}), order_operators=frozenset({2})))

        await engine.handle_callback(press(2, "orders:pending"))

        assert api.calls == [("list_orders", (), {"status": "pending", "limit": 10})]


# ==========================================
# СОЗДАНИЕ БЛЮДА
# ==========================================

class TestDishCreation:
    @pytest.mark.asyncio
    async def test_full_flow_creates_exactly_one_dish(self, make_engine, api, store):
        engine = make_engine()

        await engine.handle_callback(press(1, "dish_create_in:3"))
        for value in ("Pizza", "Tasty", "500", "20"):
            await engine.handle_text(text(1, value))

        assert api.names() == ["create_dish"]
        _, (payload,), kwargs = api.calls[0]
        assert payload == {
            "restaurant_id": 3,
            "name": "Pizza",
            "description": "Tasty",
            "price": 500,
            "preparation_time": 20,
            "ingredients": [],
            "is_vegetarian": False,
            "is_spicy": False,
        }
        assert isinstance(payload["price"], int)
        assert kwargs["idempotency_key"]
        assert (await store.get(1)).is_idle

    @pytest.mark.asyncio
    async def test_picker_lists_restaurants(self, make_engine, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "dish_create"))

        assert "dish_create_in:3" in transport.last_screen.actions
        assert "cancel:dishes" in transport.last_screen.actions

    @pytest.mark.asyncio
    async def test_no_restaurants_blocks_creation(self, make_engine, api, store, transport):
        api.restaurants = []
        engine = make_engine()

        await engine.handle_callback(press(1, "dish_create"))

        assert (await store.get(1)).is_idle
        assert "Нет ресторанов" in transport.last_screen.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_price", ["-5", "abc", "0", "NaN", ""])
    async def test_invalid_price_keeps_price_step(self, make_engine, api, store, transport, bad_price):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_create_in:3"))
        await engine.handle_text(text(1, "Pizza"))
        await engine.handle_text(text(1, "Tasty"))

        await engine.handle_text(text(1, bad_price))

        session = await store.get(1)
        assert isinstance(session.mode, CreatingDish)
        assert session.mode.step is CreationStep.PRICE
        assert api.calls == []
        assert "Неверная цена" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_price_with_comma_is_accepted(self, make_engine, api):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_create_in:3"))
        for value in ("Pizza", "Tasty", "450,50", "15"):
            await engine.handle_text(text(1, value))

        _, (payload,), _ = api.calls[0]
        assert payload["price"] == 450.5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_minutes", ["²", "2²", "0", "99999"])
    async def test_invalid_prep_time_keeps_prep_time_step(self, make_engine, api, store, transport, bad_minutes):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_create_in:3"))
        for value in ("Pizza", "Tasty", "500"):
            await engine.handle_text(text(1, value))

        await engine.handle_text(text(1, bad_minutes))

        session = await store.get(1)
        assert isinstance(session.mode, CreatingDish)
        assert session.mode.step is CreationStep.PREP_TIME
        assert session.mode.draft.price == 500
        assert api.calls == []
        assert "Неверное время" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_backend_failure_returns_to_dishes_menu(self, make_engine, api, store, transport):
        api.errors["create_dish"] = BackendError("Restaurant not found", status=404)
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_create_in:3"))
        for value in ("Pizza", "Tasty", "500", "20"):
            await engine.handle_text(text(1, value))

        assert api.names() == ["create_dish"]
        assert (await store.get(1)).is_idle
        assert "Ошибка при создании блюда" in transport.last_screen.text
        assert "dishes_list" in transport.last_screen.actions


# ==========================================
# ОТМЕНА
# ==========================================

class TestCancel:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry", ["dish_create_in:3", "dish_field:42:price", "dish_patch:42", "dish_search"])
    async def test_cancel_leaves_any_text_flow(self, make_engine, api, store, transport, entry):
        engine = make_engine()
        await engine.handle_callback(press(1, entry))

        await engine.handle_callback(press(1, "cancel"))
        await engine.handle_text(text(1, "650"))

        assert api.calls == []
        assert (await store.get(1)).is_idle
        assert "Используйте меню для навигации" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_cancel_button_returns_to_idle(self, make_engine, api, store, transport):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_create_in:3"))
        await engine.handle_text(text(1, "Pizza"))

        await engine.handle_callback(press(1, "cancel:dishes"))
        await engine.handle_text(text(1, "Tasty"))

        assert api.calls == []
        assert (await store.get(1)).is_idle
        assert "Используйте меню для навигации" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_cancel_command_from_edit_mode(self, make_engine, api, store, transport):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_field:42:price"))

        await engine.handle_text(text(1, "/cancel"))
        await engine.handle_text(text(1, "650"))

        assert api.calls == []
        assert (await store.get(1)).is_idle

    @pytest.mark.asyncio
    async def test_cancel_to_dish_shows_the_dish(self, make_engine, api, transport):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_field:42:price"))

        await engine.handle_callback(press(1, "cancel:dish:42"))

        assert api.names() == ["get_dish"]
        assert "Действие отменено" in transport.last_screen.text
        assert "Margherita" in transport.last_screen.text


# ==========================================
# РЕДАКТИРОВАНИЕ БЛЮДА
# ==========================================

class TestDishEditing:
    @pytest.mark.asyncio
    async def test_single_field_sends_only_that_field(self, make_engine, api, store, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "dish_field:42:price"))
        assert isinstance((await store.get(1)).mode, EditingDishField)

        await engine.handle_text(text(1, "650"))

        assert api.calls == [("update_dish", (42, {"price": 650}), {})]
        assert isinstance(api.calls[0][1][1]["price"], int)
        assert (await store.get(1)).is_idle
        assert "650 ₽" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_invalid_field_value_stays_in_field_mode(self, make_engine, api, store, transport):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_field:42:prep_time"))

        await engine.handle_text(text(1, "soon"))

        assert api.calls == []
        assert isinstance((await store.get(1)).mode, EditingDishField)
        assert "Неверное время" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_patch_block_updates_several_fields(self, make_engine, api, store):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_patch:42"))
        assert isinstance((await store.get(1)).mode, EditingDish)

        await engine.handle_text(text(1, "Название: Маргарита\nЦена: 550,50\nОстрое: да"))

        assert api.calls == [
            ("update_dish", (42, {"name": "Маргарита", "price": 550.5, "is_spicy": True}), {})
        ]

    @pytest.mark.asyncio
    async def test_patch_block_with_unknown_label_is_rejected(self, make_engine, api, store, transport):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_patch:42"))

        await engine.handle_text(text(1, "Цвет: красный"))

        assert api.calls == []
        assert isinstance((await store.get(1)).mode, EditingDish)
        assert "неизвестное поле" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_toggle(self, make_engine, api, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "dish_toggle:42"))

        assert api.names() == ["toggle_dish"]
        assert "Недоступно" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_search_by_id(self, make_engine, api, store, transport):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_search"))

        await engine.handle_text(text(1, "abc"))
        assert api.calls == []

        await engine.handle_text(text(1, "#42"))
        assert api.names() == ["get_dish"]
        assert "Margherita" in transport.last_screen.text
        assert (await store.get(1)).is_idle

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", ["4²", "²", "0"])
    async def test_search_rejects_non_ascii_digits(self, make_engine, api, store, transport, bad_id):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_search"))

        await engine.handle_text(text(1, bad_id))

        assert api.calls == []
        assert isinstance((await store.get(1)).mode, SearchingDish)
        assert "числовой ID" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_patch_block_with_bad_minutes_is_rejected(self, make_engine, api, store, transport):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_patch:42"))

        await engine.handle_text(text(1, "Цена: 500\nВремя: ²"))

        assert api.calls == []
        assert isinstance((await store.get(1)).mode, EditingDish)
        assert "Неверное время" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_missing_dish(self, make_engine, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "dish_view:999"))

        assert "не найдено" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_delete_asks_for_confirmation_first(self, make_engine, api, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "dish_delete:42"))
        assert api.names() == ["get_dish"]
        assert "dish_delete_confirm:42" in transport.last_screen.actions

        await engine.handle_callback(press(1, "dish_delete_confirm:42"))
        assert api.names() == ["get_dish", "delete_dish"]
        assert "успешно удалено" in transport.last_screen.text


# ==========================================
# ЗАКАЗЫ
# ==========================================

class TestOrders:
    @pytest.mark.asyncio
    async def test_status_change_renders_next_actions(self, make_engine, api, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "order_set:7:pending:confirmed"))

        assert api.calls == [("update_order_status", (7, "confirmed"), {})]
        assert transport.sent == []
        screen = transport.last_screen
        assert "order_set:7:confirmed:preparing" in screen.actions
        assert "Подтверждён" in screen.text

    @pytest.mark.asyncio
    async def test_failed_change_leaves_order_screen_alone(self, make_engine, api, transport):
        api.errors["update_order_status"] = BackendError("Internal error", status=500)
        engine = make_engine()

        await engine.handle_callback(press(1, "order_set:7:pending:confirmed"))

        assert transport.edits == []
        assert len(transport.sent) == 1
        assert "Не удалось изменить статус заказа #7" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_disallowed_transition_never_reaches_backend(self, make_engine, api, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "order_set:7:delivered:pending"))

        assert api.calls == []
        assert transport.edits == []
        assert "недопустим" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_order_view(self, make_engine, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "order_view:7"))

        assert transport.last_screen.actions[:2] == [
            "order_set:7:pending:confirmed",
            "order_set:7:pending:cancelled",
        ]

    @pytest.mark.asyncio
    async def test_orders_command(self, make_engine, transport):
        engine = make_engine()

        await engine.handle_text(text(1, "/orders"))

        assert "orders:pending" in transport.last_screen.actions


# ==========================================
# ДОСТАВКА СОБЫТИЙ И ПОКАЗ ЭКРАНОВ
# ==========================================

class TestDelivery:
    @pytest.mark.asyncio
    async def test_repeated_text_event_is_processed_once(self, make_engine, store, transport):
        engine = make_engine()
        await engine.handle_callback(press(1, "dish_create_in:3"))

        await engine.handle_text(text(1, "Pizza", event_id="msg:5"))
        await engine.handle_text(text(1, "Pizza", event_id="msg:5"))

        session = await store.get(1)
        assert session.mode.step is CreationStep.DESCRIPTION
        assert session.mode.draft.description is None
        assert len(transport.sent) == 1

    @pytest.mark.asyncio
    async def test_repeated_callback_is_processed_once(self, make_engine, api):
        engine = make_engine()

        await engine.handle_callback(press(1, "dish_toggle:42", callback_id="c7"))
        await engine.handle_callback(press(1, "dish_toggle:42", callback_id="c7"))

        assert api.names() == ["toggle_dish"]

    @pytest.mark.asyncio
    async def test_edit_refused_falls_back_to_new_message(self, make_engine, store, transport):
        transport.edit_ok = False
        engine = make_engine()

        await engine.handle_callback(press(1, "main_menu", message_id=10))

        assert len(transport.edits) == 1
        assert len(transport.sent) == 1
        assert (await store.get(1)).last_menu_message_id == 101

    @pytest.mark.asyncio
    async def test_same_chat_events_run_one_at_a_time(self, make_engine, api):
        api.delay = 0.01
        engine = make_engine()

        await asyncio.gather(
            engine.handle_callback(press(1, "dish_view:42", callback_id="a")),
            engine.handle_callback(press(1, "dish_view:42", callback_id="b")),
        )

        assert api.max_active == 1
        assert api.names() == ["get_dish", "get_dish"]
        assert engine._locks == {}

    @pytest.mark.asyncio
    async def test_different_chats_run_in_parallel(self, make_engine, api):
        api.delay = 0.01
        engine = make_engine()

        await asyncio.gather(
            engine.handle_callback(press(1, "dish_view:42")),
            engine.handle_callback(press(2, "dish_view:42")),
        )

        assert api.max_active == 2
        assert engine._locks == {}

    @pytest.mark.asyncio
    async def test_backend_error_resets_flow(self, make_engine, api, store, transport):
        api.errors["list_restaurants"] = BackendError("Bad gateway", status=502)
        engine = make_engine()

        await engine.handle_callback(press(1, "dishes_list"))

        assert isinstance((await store.get(1)).mode, Idle)
        assert "Ошибка API" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_unknown_callback_shows_main_menu(self, make_engine, api, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "something_old:1"))

        assert api.calls == []
        assert "dishes_menu" in transport.last_screen.actions


# ==========================================
# ПРОЧИЕ ЭКРАНЫ
# ==========================================

class TestMiscScreens:
    @pytest.mark.asyncio
    async def test_stats(self, make_engine, api, transport):
        engine = make_engine(now=lambda: datetime(2024, 5, 1, 12, 30, 15))

        await engine.handle_callback(press(1, "stats"))

        screen_text = transport.last_screen.text
        assert "Всего заказов: 1" in screen_text
        assert "Блюд в системе: 1" in screen_text
        assert "12:30:15" in screen_text

    @pytest.mark.asyncio
    async def test_admin_panel_reports_backend_health(self, make_engine, api, transport):
        engine = make_engine(api_base_url="https://api.example.com")

        await engine.handle_callback(press(1, "admin_panel"))

        assert api.names() == ["health"]
        assert "🟢 Бэкенд: ok" in transport.last_screen.text
        assert "https://api.example.com" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_admin_panel_with_backend_down(self, make_engine, api, transport):
        api.errors["health"] = BackendError("API не ответил вовремя")
        engine = make_engine()

        await engine.handle_callback(press(1, "admin_panel"))

        assert "Бэкенд недоступен" in transport.last_screen.text

    @pytest.mark.asyncio
    async def test_restaurant_menu(self, make_engine, api, transport):
        engine = make_engine()

        await engine.handle_callback(press(1, "restaurant_menu:3"))

        assert api.calls == [("get_restaurant_menu", (3,), {})]
        assert "dish_view:42" in transport.last_screen.actions
