import pytest

from app.bot.access import AccessPolicy
from app.bot.engine import ConversationEngine
from app.bot.screens import ScreenRenderer
from infrastructure.session_store import MemorySessionStore
from tests.fakes import FakeApi, FakeTransport


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def store():
    return MemorySessionStore()


@pytest.fixture
def make_engine(api, transport, store):
    def factory(access=None, **kwargs):
        return ConversationEngine(
            api=api,
            store=store,
            access=access or AccessPolicy(),
            transport=transport,
            renderer=ScreenRenderer(),
            **kwargs,
        )

    return factory
