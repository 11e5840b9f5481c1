# app/bot/engine.py
"""
🧠 CONVERSATION ENGINE

Сердце бота. На каждое входящее событие (текст или нажатие кнопки):
1. Проверяем доступ (чужим - отказ, без запросов к бэкенду)
2. Берём сессию чата из хранилища
3. По режиму сессии и событию решаем, что делать
4. Делаем не больше одного изменяющего запроса к Admin API
5. Показываем следующий экран (редактируем сообщение или шлём новое)

События одного чата обрабатываются строго по очереди (lock на чат),
разные чаты - параллельно.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol

import structlog

from app.bot.access import ACCESS_DENIED_TEXT, AccessPolicy, AuthorizationError
from app.bot.fields import (
    ValidationError,
    get_field,
    parse_dish_id,
    parse_field,
    parse_minutes,
    parse_patch_block,
    parse_price,
    parse_text,
)
from app.bot.screens import Button, Screen, ScreenRenderer, parse_action
from app.bot.services.orders import OrderService, TransitionNotAllowed, parse_status, status_text
from app.models import (
    ChatSession,
    CreatingDish,
    CreationStep,
    DishDraft,
    DishEditRequest,
    EditingDish,
    EditingDishField,
    SearchingDish,
)
from infrastructure.admin_api import AdminApiClient, BackendError
from infrastructure.session_store import SessionStore

logger = structlog.get_logger()


# ==========================================
# СОБЫТИЯ И ТРАНСПОРТ
# ==========================================

@dataclass(frozen=True)
class TextMessage:
    chat_id: int
    text: str
    event_id: Optional[str] = None


@dataclass(frozen=True)
class CallbackAction:
    chat_id: int
    action_id: str
    message_id: Optional[int] = None
    callback_id: Optional[str] = None

    @property
    def event_id(self) -> Optional[str]:
        return f"cb:{self.callback_id}" if self.callback_id else None


class Transport(Protocol):
    async def send_screen(self, chat_id: int, screen: Screen) -> Optional[int]: ...

    async def edit_screen(self, chat_id: int, message_id: int, screen: Screen) -> bool: ...

    async def acknowledge(self, callback_id: str, text: Optional[str] = None,
                          alert: bool = False) -> None: ...


@dataclass
class _Context:
    session: ChatSession
    message_id: Optional[int] = None
    from_callback: bool = False

    @property
    def chat_id(self) -> int:
        return self.session.chat_id


CANCELLED_TEXT = "❌ Действие отменено."

# Какие возможности нужны для callback'ов (None - достаточно общего доступа)
DISHES = "dishes"
ORDERS = "orders"

NEXT_STEP = {
    CreationStep.NAME: CreationStep.DESCRIPTION,
    CreationStep.DESCRIPTION: CreationStep.PRICE,
    CreationStep.PRICE: CreationStep.PREP_TIME,
}


def _int_arg(args: list[str], index: int) -> int:
    try:
        return int(args[index])
    except (IndexError, ValueError):
        raise ValidationError("Некорректная кнопка. Откройте меню заново.") from None


class ConversationEngine:
    def __init__(
        self,
        api: AdminApiClient,
        store: SessionStore,
        access: AccessPolicy,
        transport: Transport,
        renderer: Optional[ScreenRenderer] = None,
        orders: Optional[OrderService] = None,
        api_base_url: str = "",
        now: Callable[[], datetime] = datetime.now,
    ):
        self.api = api
        self.store = store
        self.access = access
        self.transport = transport
        self.screens = renderer or ScreenRenderer()
        self.orders = orders or OrderService(api)
        self.api_base_url = api_base_url
        self.now = now
        # chat_id -> (lock, сколько событий держат или ждут его)
        self._locks: dict[int, tuple[asyncio.Lock, int]] = {}

        self._routes: dict[str, tuple[Callable[[_Context, list[str]], Awaitable[None]], Optional[str]]] = {
            "main_menu": (self._cb_main_menu, None),
            "help": (self._cb_help, None),
            "admin_panel": (self._cb_admin_panel, None),
            "cancel": (self._cb_cancel, None),
            "dishes_menu": (self._cb_dishes_menu, DISHES),
            "dishes_list": (self._cb_dishes_list, DISHES),
            "dish_create": (self._cb_dish_create, DISHES),
            "dish_create_in": (self._cb_dish_create_in, DISHES),
            "dish_search": (self._cb_dish_search, DISHES),
            "dish_view": (self._cb_dish_view, DISHES),
            "dish_toggle": (self._cb_dish_toggle, DISHES),
            "dish_field": (self._cb_dish_field, DISHES),
            "dish_patch": (self._cb_dish_patch, DISHES),
            "dish_delete": (self._cb_dish_delete, DISHES),
            "dish_delete_confirm": (self._cb_dish_delete_confirm, DISHES),
            "restaurants_menu": (self._cb_restaurants_menu, DISHES),
            "restaurants_list": (self._cb_restaurants_list, DISHES),
            "restaurant_menu": (self._cb_restaurant_menu, DISHES),
            "orders_menu": (self._cb_orders_menu, ORDERS),
            "orders": (self._cb_orders, ORDERS),
            "order_view": (self._cb_order_view, ORDERS),
            "order_set": (self._cb_order_set, ORDERS),
            "stats": (self._cb_stats, ORDERS),
        }

    # ==========================================
    # ВХОДНЫЕ ТОЧКИ
    # ==========================================

    async def handle_text(self, event: TextMessage) -> None:
        if not self.access.is_authorized(event.chat_id):
            logger.warning("access_denied", chat_id=event.chat_id)
            await self.transport.send_screen(event.chat_id, Screen(ACCESS_DENIED_TEXT))
            return

        async with self._lock(event.chat_id):
            await self._process(event.chat_id, event.event_id, None, False,
                                lambda ctx: self._on_text(ctx, event.text))

    async def handle_callback(self, event: CallbackAction) -> None:
        if not self.access.is_authorized(event.chat_id):
            logger.warning("access_denied", chat_id=event.chat_id, action=event.action_id)
            if event.callback_id:
                await self.transport.acknowledge(event.callback_id, "⛔ Нет доступа", alert=True)
            return

        if event.callback_id:
            await self.transport.acknowledge(event.callback_id)

        async with self._lock(event.chat_id):
            await self._process(event.chat_id, event.event_id, event.message_id, True,
                                lambda ctx: self._on_callback(ctx, event.action_id))

    @asynccontextmanager
    async def _lock(self, chat_id: int):
        """
        Lock чата. Убирается из словаря, когда его больше никто не держит и не ждёт.
        """
        lock, users = self._locks.get(chat_id) or (asyncio.Lock(), 0)
        self._locks[chat_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[chat_id]
            if users == 1:
                del self._locks[chat_id]
            else:
                self._locks[chat_id] = (lock, users - 1)

    async def _process(self, chat_id, event_id, message_id, from_callback, handler) -> None:
        session = await self.store.get(chat_id)
        if session.seen(event_id):
            logger.info("duplicate_event_skipped", chat_id=chat_id, event_id=event_id)
            return

        ctx = _Context(session=session, message_id=message_id, from_callback=from_callback)
        try:
            await handler(ctx)
        except ValidationError as e:
            await self._show(ctx, self.screens.error(str(e)))
        except AuthorizationError as e:
            logger.warning("capability_denied", chat_id=chat_id)
            await self._show(ctx, self.screens.message(str(e)))
        except BackendError as e:
            logger.error("backend_error", chat_id=chat_id, path=e.path, status=e.status, error=e.message)
            ctx.session.reset()
            await self._show(ctx, self.screens.error(f"Ошибка API: {e}"))
        except Exception as e:
            logger.exception("event_failed", chat_id=chat_id, error=str(e))
            ctx.session.reset()
            await self._show(ctx, self.screens.error("Что-то пошло не так. Попробуйте ещё раз."))
        finally:
            await self.store.set(ctx.session)

    # ==========================================
    # ПОКАЗ ЭКРАНА
    # ==========================================

    async def _show(self, ctx: _Context, screen: Screen) -> None:
        """
        Редактируем сообщение, на кнопку которого нажали.
        Если редактировать нечего или Telegram отказал - шлём новое.
        """
        target = ctx.message_id
        if target is None and ctx.from_callback:
            target = ctx.session.last_menu_message_id

        if target is not None and await self.transport.edit_screen(ctx.chat_id, target, screen):
            ctx.session.last_menu_message_id = target
            return

        await self._send_new(ctx, screen)

    async def _send_new(self, ctx: _Context, screen: Screen) -> None:
        message_id = await self.transport.send_screen(ctx.chat_id, screen)
        if message_id is not None:
            ctx.session.last_menu_message_id = message_id

    def _main_menu(self, ctx: _Context, notice: str = "") -> Screen:
        return self.screens.main_menu(
            self.access.can_manage_dishes(ctx.chat_id),
            self.access.can_view_orders(ctx.chat_id),
            notice=notice,
        )

    def _require(self, ctx: _Context, capability: Optional[str]) -> None:
        if capability == DISHES:
            self.access.require(self.access.can_manage_dishes(ctx.chat_id))
        elif capability == ORDERS:
            self.access.require(self.access.can_view_orders(ctx.chat_id))

    # ==========================================
    # ТЕКСТ
    # ==========================================

    async def _on_text(self, ctx: _Context, text: str) -> None:
        text = text or ""
        if text.startswith("/"):
            await self._on_command(ctx, text)
            return

        mode = ctx.session.mode
        logger.info("text_received", chat_id=ctx.chat_id, mode=mode.kind)

        if isinstance(mode, CreatingDish):
            await self._creation_step(ctx, mode, text)
        elif isinstance(mode, EditingDishField):
            await self._edit_field(ctx, mode, text)
        elif isinstance(mode, EditingDish):
            await self._edit_patch(ctx, mode, text)
        elif isinstance(mode, SearchingDish):
            await self._search(ctx, text)
        else:
            await self._show(ctx, self.screens.navigation_hint(
                self.access.can_manage_dishes(ctx.chat_id),
                self.access.can_view_orders(ctx.chat_id),
            ))

    async def _on_command(self, ctx: _Context, text: str) -> None:
        command = text.split()[0][1:].split("@")[0].lower()
        logger.info("command_received", chat_id=ctx.chat_id, command=command)

        if command == "start":
            ctx.session.reset()
            await self._show(ctx, self._main_menu(ctx))
        elif command == "cancel":
            ctx.session.reset()
            await self._show(ctx, self._main_menu(ctx, notice=CANCELLED_TEXT))
        elif command == "orders":
            self._require(ctx, ORDERS)
            await self._show(ctx, self.screens.orders_menu())
        elif command == "help":
            await self._show(ctx, self.screens.help())
        else:
            await self._show(ctx, self.screens.navigation_hint(
                self.access.can_manage_dishes(ctx.chat_id),
                self.access.can_view_orders(ctx.chat_id),
            ))

    async def _creation_step(self, ctx: _Context, mode: CreatingDish, text: str) -> None:
        draft = mode.draft
        try:
            if mode.step is CreationStep.NAME:
                draft.name = parse_text(text)
            elif mode.step is CreationStep.DESCRIPTION:
                draft.description = parse_text(text)
            elif mode.step is CreationStep.PRICE:
                draft.price = parse_price(text)
            else:
                draft.preparation_time = parse_minutes(text)
        except ValidationError as e:
            await self._show(ctx, self.screens.creation_prompt(mode.step, error=str(e)))
            return

        if mode.step is not CreationStep.PREP_TIME:
            mode.step = NEXT_STEP[mode.step]
            await self._show(ctx, self.screens.creation_prompt(mode.step))
            return

        await self._submit_draft(ctx, draft)

    async def _submit_draft(self, ctx: _Context, draft: DishDraft) -> None:
        payload = draft.to_payload()
        ctx.session.reset()
        try:
            dish = await self.api.create_dish(payload, idempotency_key=draft.idempotency_key)
        except BackendError as e:
            logger.error("dish_create_failed", chat_id=ctx.chat_id, error=str(e))
            await self._show(ctx, self.screens.dishes_menu_with_text(
                f"❌ Ошибка при создании блюда: {self.screens.m.escape(str(e))}"
            ))
            return

        logger.info("dish_created", chat_id=ctx.chat_id, dish_id=dish.get("id"))
        await self._show(ctx, self.screens.dish_created(dish))

    async def _edit_field(self, ctx: _Context, mode: EditingDishField, text: str) -> None:
        dish_field = get_field(mode.field)
        try:
            patch = parse_field(mode.field, text)
        except ValidationError as e:
            await self._show(ctx, self.screens.field_prompt(mode.dish_id, dish_field, error=str(e)))
            return

        request = DishEditRequest(dish_id=mode.dish_id, changes=patch)
        await self._apply_patch(ctx, request, f"✅ {dish_field.title.capitalize()}: изменено")

    async def _edit_patch(self, ctx: _Context, mode: EditingDish, text: str) -> None:
        try:
            patch = parse_patch_block(text)
        except ValidationError as e:
            await self._show(ctx, self.screens.patch_prompt(mode.dish_id, error=str(e)))
            return

        request = DishEditRequest(dish_id=mode.dish_id, changes=patch)
        await self._apply_patch(ctx, request, f"✅ Изменено полей: {len(patch)}")

    async def _apply_patch(self, ctx: _Context, request: DishEditRequest, notice: str) -> None:
        ctx.session.reset()
        try:
            dish = await self.api.update_dish(request.dish_id, request.to_payload())
        except BackendError as e:
            logger.error("dish_update_failed", chat_id=ctx.chat_id, dish_id=request.dish_id, error=str(e))
            await self._show(ctx, self.screens.dishes_menu_with_text(
                f"❌ Ошибка при обновлении блюда #{request.dish_id}: {self.screens.m.escape(str(e))}"
            ))
            return

        logger.info("dish_updated", chat_id=ctx.chat_id, dish_id=request.dish_id,
                    fields=sorted(request.changes))
        await self._show(ctx, self.screens.dish_detail(dish, notice=notice))

    async def _search(self, ctx: _Context, text: str) -> None:
        try:
            dish_id = parse_dish_id(text)
        except ValidationError as e:
            await self._show(ctx, self.screens.search_prompt(error=str(e)))
            return

        ctx.session.reset()
        await self._show_dish(ctx, dish_id)

    async def _show_dish(self, ctx: _Context, dish_id: int, notice: str = "") -> None:
        try:
            dish = await self.api.get_dish(dish_id)
        except BackendError as e:
            text = (
                f"Блюдо #{dish_id} не найдено." if e.status == 404
                else f"Ошибка загрузки блюда #{dish_id}: {e}"
            )
            await self._show(ctx, self.screens.error(text, back=Button("🔙 К блюдам", "dishes_menu")))
            return
        await self._show(ctx, self.screens.dish_detail(dish, notice=notice))

    # ==========================================
    # КНОПКИ
    # ==========================================

    async def _on_callback(self, ctx: _Context, action_id: str) -> None:
        name, args = parse_action(action_id)
        logger.info("callback_received", chat_id=ctx.chat_id, action=name, mode=ctx.session.mode.kind)

        route = self._routes.get(name)
        if route is None:
            logger.warning("unknown_callback", chat_id=ctx.chat_id, action=action_id)
            await self._show(ctx, self._main_menu(ctx))
            return

        handler, capability = route
        self._require(ctx, capability)
        # Любая кнопка прерывает текстовый сценарий, нужные режимы ставят сами обработчики
        ctx.session.reset()
        await handler(ctx, args)

    async def _cb_main_menu(self, ctx, args):
        await self._show(ctx, self._main_menu(ctx))

    async def _cb_help(self, ctx, args):
        await self._show(ctx, self.screens.help())

    async def _cb_cancel(self, ctx, args):
        logger.info("flow_cancelled", chat_id=ctx.chat_id, destination=":".join(args) or "main")
        if args and args[0] == "dishes":
            await self._show(ctx, self.screens.dishes_menu(notice=CANCELLED_TEXT))
        elif args and args[0] == "dish":
            await self._show_dish(ctx, _int_arg(args, 1), notice=CANCELLED_TEXT)
        else:
            await self._show(ctx, self._main_menu(ctx, notice=CANCELLED_TEXT))

    async def _cb_admin_panel(self, ctx, args):
        health, health_error = None, None
        try:
            health = await self.api.health()
        except BackendError as e:
            health_error = str(e)
        await self._show(ctx, self.screens.admin_panel(
            self.api_base_url, sorted(self.access.admins), health, health_error
        ))

    # ---------- блюда ----------

    async def _cb_dishes_menu(self, ctx, args):
        await self._show(ctx, self.screens.dishes_menu())

    async def _cb_dishes_list(self, ctx, args):
        restaurants = await self.api.list_restaurants()
        if not restaurants:
            await self._show(ctx, self.screens.dishes_menu_with_text(
                "😔 Рестораны не найдены. Сначала добавьте ресторан."
            ))
            return

        menus = []
        for restaurant in restaurants:
            try:
                menus.append((restaurant, await self.api.get_restaurant_menu(restaurant.get("id"))))
            except BackendError as e:
                logger.warning("restaurant_menu_failed", restaurant_id=restaurant.get("id"), error=str(e))
        await self._show(ctx, self.screens.dish_list(menus))

    async def _cb_dish_create(self, ctx, args):
        restaurants = await self.api.list_restaurants()
        if not restaurants:
            await self._show(ctx, self.screens.dishes_menu_with_text(
                "❌ Нет ресторанов. Сначала создайте ресторан."
            ))
            return
        await self._show(ctx, self.screens.restaurant_picker(restaurants))

    async def _cb_dish_create_in(self, ctx, args):
        restaurant_id = _int_arg(args, 0)
        ctx.session.mode = CreatingDish(draft=DishDraft(restaurant_id=restaurant_id))
        logger.info("dish_creation_started", chat_id=ctx.chat_id, restaurant_id=restaurant_id)
        await self._show(ctx, self.screens.creation_prompt(CreationStep.NAME))

    async def _cb_dish_search(self, ctx, args):
        ctx.session.mode = SearchingDish()
        await self._show(ctx, self.screens.search_prompt())

    async def _cb_dish_view(self, ctx, args):
        await self._show_dish(ctx, _int_arg(args, 0))

    async def _cb_dish_toggle(self, ctx, args):
        dish_id = _int_arg(args, 0)
        dish = await self.api.toggle_dish(dish_id)
        logger.info("dish_toggled", chat_id=ctx.chat_id, dish_id=dish_id,
                    is_available=dish.get("is_available"))
        state = "✅ Доступно" if dish.get("is_available") else "❌ Недоступно"
        await self._show(ctx, self.screens.dish_detail(dish, notice=f"🔄 Статус блюда изменён на: {state}"))

    async def _cb_dish_field(self, ctx, args):
        dish_id = _int_arg(args, 0)
        dish_field = get_field(args[1]) if len(args) > 1 else None
        if dish_field is None:
            raise ValidationError("Неизвестное поле блюда.")
        ctx.session.mode = EditingDishField(dish_id=dish_id, field=dish_field.key)
        await self._show(ctx, self.screens.field_prompt(dish_id, dish_field))

    async def _cb_dish_patch(self, ctx, args):
        dish_id = _int_arg(args, 0)
        ctx.session.mode = EditingDish(dish_id=dish_id)
        await self._show(ctx, self.screens.patch_prompt(dish_id))

    async def _cb_dish_delete(self, ctx, args):
        dish = await self.api.get_dish(_int_arg(args, 0))
        await self._show(ctx, self.screens.delete_confirm(dish))

    async def _cb_dish_delete_confirm(self, ctx, args):
        dish_id = _int_arg(args, 0)
        result = await self.api.delete_dish(dish_id)
        logger.info("dish_deleted", chat_id=ctx.chat_id, dish_id=dish_id,
                    soft_delete=bool(result.get("soft_delete")))
        await self._show(ctx, self.screens.dish_deleted(result))

    # ---------- рестораны ----------

    async def _cb_restaurants_menu(self, ctx, args):
        await self._show(ctx, self.screens.restaurants_menu())

    async def _cb_restaurants_list(self, ctx, args):
        await self._show(ctx, self.screens.restaurant_list(await self.api.list_restaurants()))

    async def _cb_restaurant_menu(self, ctx, args):
        restaurant_id = _int_arg(args, 0)
        dishes = await self.api.get_restaurant_menu(restaurant_id)
        await self._show(ctx, self.screens.restaurant_menu(restaurant_id, dishes))

    # ---------- заказы ----------

    async def _cb_orders_menu(self, ctx, args):
        await self._show(ctx, self.screens.orders_menu())

    async def _cb_orders(self, ctx, args):
        raw = args[0] if args else "all"
        status = None if raw == "all" else parse_status(raw)
        if raw != "all" and status is None:
            raise ValidationError("Неизвестный статус заказа.")
        orders = await self.orders.list_orders(status)
        await self._show(ctx, self.screens.order_list(status, orders))

    async def _cb_order_view(self, ctx, args):
        order_id = _int_arg(args, 0)
        order = await self.orders.get_order(order_id)
        if order is None:
            await self._show(ctx, self.screens.error(
                f"Заказ #{order_id} не найден", back=Button("🔙 К заказам", "orders_menu")
            ))
            return
        await self._show(ctx, self.screens.order_detail(order))

    async def _cb_order_set(self, ctx, args):
        order_id = _int_arg(args, 0)
        current = args[1] if len(args) > 1 else None
        target = parse_status(args[2]) if len(args) > 2 else None
        if target is None:
            raise ValidationError("Некорректная кнопка. Откройте заказ заново.")

        try:
            order = await self.orders.change_status(order_id, current, target)
        except (BackendError, TransitionNotAllowed) as e:
            # Экран заказа не трогаем: на нём последний известный статус
            logger.error("order_status_change_failed", chat_id=ctx.chat_id, order_id=order_id,
                         target=target.value, error=str(e))
            await self._send_new(ctx, self.screens.order_action_failed(order_id, str(e)))
            return

        if not isinstance(order, dict) or "status" not in order:
            order = {"id": order_id, "status": target.value}
        order.setdefault("id", order_id)
        await self._show(ctx, self.screens.order_detail(
            order, notice=f"✅ Статус заказа #{order_id} изменён на «{status_text(target)}»"
        ))

    async def _cb_stats(self, ctx, args):
        orders = await self.api.list_orders()
        restaurants = await self.api.list_restaurants()
        dishes_total = 0
        for restaurant in restaurants:
            try:
                dishes_total += len(await self.api.get_restaurant_menu(restaurant.get("id")))
            except BackendError as e:
                logger.warning("restaurant_menu_failed", restaurant_id=restaurant.get("id"), error=str(e))
        await self._show(ctx, self.screens.stats(
            orders, restaurants, dishes_total, updated_at=self.now().strftime("%H:%M:%S")
        ))
