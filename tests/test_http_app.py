import pytest
from aiogram import Bot, Dispatcher
from httpx import ASGITransport, AsyncClient

from app.api.app import create_app
from app.bot.screens import ScreenRenderer
from app.bot.services.notifications import notification_recipients, notify_admins_new_order

from tests.fakes import FakeTransport

ORDER = {"id": 31, "restaurant_name": "Pizza Place", "total_amount": 900}


def client_for(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


class FlakyTransport(FakeTransport):
    def __init__(self, broken):
        super().__init__()
        self.broken = broken

    async def send_screen(self, chat_id, screen):
        if chat_id in self.broken:
            raise RuntimeError("Forbidden: bot was blocked by the user")
        return await super().send_screen(chat_id, screen)


class TestHealthAndNotifications:
    @pytest.mark.asyncio
    async def test_health(self):
        app = create_app(transport=FakeTransport(), renderer=ScreenRenderer(),
                         recipients=[], admins={2, 1})
        async with client_for(app) as client:
            resp = await client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["admins"] == [1, 2]
        assert data["transport"] == "polling"

    @pytest.mark.asyncio
    async def test_new_order_without_order_is_rejected(self):
        transport = FakeTransport()
        app = create_app(transport=transport, renderer=ScreenRenderer(), recipients=[1])
        async with client_for(app) as client:
            resp = await client.post("/webhook/new-order", json={})

        assert resp.status_code == 400
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_new_order_is_sent_to_every_recipient(self):
        transport = FakeTransport()
        app = create_app(transport=transport, renderer=ScreenRenderer(), recipients=[1, 2])
        async with client_for(app) as client:
            resp = await client.post("/webhook/new-order", json={"order": ORDER})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "notified": True, "sent": 2}
        assert [chat_id for chat_id, _ in transport.sent] == [1, 2]
        assert "Новый заказ" in transport.sent[0][1].text

    @pytest.mark.asyncio
    @pytest.mark.parametrize("headers", [{}, {"X-Webhook-Secret": "wrong"}])
    async def test_new_order_with_bad_secret_is_forbidden(self, headers):
        transport = FakeTransport()
        app = create_app(transport=transport, renderer=ScreenRenderer(), recipients=[1],
                         order_webhook_secret="k3y")
        async with client_for(app) as client:
            resp = await client.post("/webhook/new-order", json={"order": ORDER}, headers=headers)

        assert resp.status_code == 403
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_new_order_with_secret_is_sent(self):
        transport = FakeTransport()
        app = create_app(transport=transport, renderer=ScreenRenderer(), recipients=[1],
                         order_webhook_secret="k3y")
        async with client_for(app) as client:
            resp = await client.post("/webhook/new-order", json={"order": ORDER},
                                     headers={"X-Webhook-Secret": "k3y"})

        assert resp.status_code == 200
        assert [chat_id for chat_id, _ in transport.sent] == [1]


class TestTelegramWebhook:
    UPDATE = {
        "update_id": 1,
        "message": {
            "message_id": 5,
            "date": 1714564800,
            "chat": {"id": 1, "type": "private"},
            "from": {"id": 1, "is_bot": False, "first_name": "Admin"},
            "text": "/start",
        },
    }

    def make_app(self, received):
        bot = Bot(token="42:TEST")
        dp = Dispatcher()

        @dp.message()
        async def record(message):
            received.append(message.text)

        return create_app(transport=FakeTransport(), renderer=ScreenRenderer(), recipients=[],
                          bot=bot, dispatcher=dp, webhook_path="/tg", webhook_secret="s3cret")

    @pytest.mark.asyncio
    async def test_wrong_secret_is_forbidden(self):
        received = []
        async with client_for(self.make_app(received)) as client:
            resp = await client.post("/tg", json=self.UPDATE,
                                     headers={"X-Telegram-Bot-Api-Secret-Token": "wrong"})

        assert resp.status_code == 403
        assert received == []

    @pytest.mark.asyncio
    async def test_update_is_fed_to_dispatcher(self):
        received = []
        async with client_for(self.make_app(received)) as client:
            resp = await client.post("/tg", json=self.UPDATE,
                                     headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"})

        assert resp.status_code == 200
        assert received == ["/start"]


class TestNotificationService:
    def test_recipients_are_deduplicated(self):
        assert notification_recipients(5, {3, 5, 1}) == [5, 1, 3]
        assert notification_recipients(None, {2}) == [2]

    @pytest.mark.asyncio
    async def test_one_failed_recipient_does_not_stop_others(self):
        transport = FlakyTransport(broken={1})

        sent = await notify_admins_new_order(transport, ScreenRenderer(), ORDER, [1, 2, 3])

        assert sent == 2
        assert [chat_id for chat_id, _ in transport.sent] == [2, 3]
