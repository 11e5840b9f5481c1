# infrastructure/session_store.py
"""
🗂 SESSION STORE

Хранилище сессий чатов (в каком шаге диалога находится админ).

- MemorySessionStore - в памяти процесса, теряется при перезапуске
- RedisSessionStore - в Redis, переживает перезапуск бота

Движок получает хранилище снаружи и знает только get/set/reset.
"""

from abc import ABC, abstractmethod
from typing import Optional

from redis.asyncio import Redis

from app.models import ChatSession
from infrastructure.logger import logger


class SessionStore(ABC):

    @abstractmethod
    async def get(self, chat_id: int) -> ChatSession:
        """Сессия чата. Если её нет - новая, в режиме Idle."""

    @abstractmethod
    async def set(self, session: ChatSession) -> None:
        ...

    async def reset(self, chat_id: int) -> ChatSession:
        session = ChatSession(chat_id=chat_id)
        await self.set(session)
        return session

    async def close(self) -> None:
        return None


class MemorySessionStore(SessionStore):
    def __init__(self):
        self._sessions: dict[int, ChatSession] = {}

    async def get(self, chat_id: int) -> ChatSession:
        session = self._sessions.get(chat_id)
        if session is None:
            session = ChatSession(chat_id=chat_id)
            self._sessions[chat_id] = session
        # Отдаём копию: изменения видны только после set()
        return session.model_copy(deep=True)

    async def set(self, session: ChatSession) -> None:
        self._sessions[session.chat_id] = session.model_copy(deep=True)


class RedisSessionStore(SessionStore):
    KEY_PREFIX = "admin_bot:session:"

    def __init__(self, redis, ttl: Optional[int] = None):
        self.redis = redis
        self.ttl = ttl

    def _key(self, chat_id: int) -> str:
        return f"{self.KEY_PREFIX}{chat_id}"

    async def get(self, chat_id: int) -> ChatSession:
        raw = await self.redis.get(self._key(chat_id))
        if raw is None:
            return ChatSession(chat_id=chat_id)
        return ChatSession.model_validate_json(raw)

    async def set(self, session: ChatSession) -> None:
        await self.redis.set(self._key(session.chat_id), session.model_dump_json(), ex=self.ttl)

    async def close(self) -> None:
        await self.redis.aclose()


def create_session_store(redis_url: str = "", ttl: Optional[int] = None) -> SessionStore:
    """
    Redis, если задан REDIS_URL, иначе память.
    """
    if not redis_url:
        logger.info("session_store_selected", backend="memory")
        return MemorySessionStore()

    redis = Redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
    logger.info("session_store_selected", backend="redis")
    return RedisSessionStore(redis, ttl=ttl)


async def check_redis_connection(store: SessionStore) -> bool:
    """Проверяет что Redis живой (для memory всегда True)."""
    if not isinstance(store, RedisSessionStore):
        return True
    try:
        await store.redis.ping()
        return True
    except Exception as e:
        logger.error("redis_connection_error", error=str(e))
        return False
