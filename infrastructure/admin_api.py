# infrastructure/admin_api.py
"""
🌐 ADMIN API CLIENT

Обёртка над REST API бэкенда доставки.

- Каждый запрос несёт заголовок X-Admin-API-Key
- Таймаут на запрос (по умолчанию 10 секунд)
- GET-запросы повторяются при сетевых ошибках и 5xx
- Любая ошибка (не 2xx, таймаут, сеть) превращается в BackendError
"""

import asyncio
import json as jsonlib
from typing import Any, Optional

import aiohttp
import structlog

logger = structlog.get_logger()


class BackendError(Exception):
    """Бэкенд ответил ошибкой или не ответил вовсе."""

    def __init__(self, message: str, status: Optional[int] = None, path: str = ""):
        super().__init__(message)
        self.message = message
        self.status = status
        self.path = path

    def __str__(self) -> str:
        if self.status:
            return f"{self.message} (HTTP {self.status})"
        return self.message


RETRY_STATUSES = {502, 503, 504}


class AdminApiClient:
    """
    Клиент админского API.

    Сессию aiohttp можно передать снаружи (тесты, общий пул соединений),
    иначе она создаётся лениво при первом запросе.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 10.0,
        retries: int = 2,
        session: Optional[aiohttp.ClientSession] = None,
        backoff: float = 0.5,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.retries = retries
        self.backoff = backoff
        self._session = session
        self._own_session = session is None

    def _build_headers(self, extra: Optional[dict[str, str]] = None) -> dict[str, str]:
        headers = {
            "X-Admin-API-Key": self.api_key,
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._own_session = True
        return self._session

    async def close(self):
        if self._own_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ==========================================
    # БАЗОВЫЙ ЗАПРОС
    # ==========================================

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict[str, Any]] = None,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> Any:
        attempts = 1 + (self.retries if method == "GET" else 0)

        for attempt in range(attempts):
            try:
                return await self._request_once(method, path, json, params, headers)
            except BackendError as e:
                retryable = e.status is None or e.status in RETRY_STATUSES
                if not retryable or attempt == attempts - 1:
                    raise
                logger.warning(
                    "admin_api_retry",
                    method=method,
                    path=path,
                    attempt=attempt + 1,
                    error=str(e),
                )
                await asyncio.sleep(self.backoff * 2 ** attempt)

    async def _request_once(self, method, path, json, params, headers) -> Any:
        url = f"{self.base_url}{path}"
        session = self._get_session()

        try:
            async with session.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._build_headers(headers),
                timeout=self.timeout,
            ) as resp:
                text = await resp.text()
                if resp.status >= 400:
                    message = _error_message(text) or resp.reason or "Ошибка API"
                    logger.error(
                        "admin_api_error",
                        method=method,
                        path=path,
                        status=resp.status,
                        body=text[:200],
                    )
                    raise BackendError(message, status=resp.status, path=path)
                if not text:
                    return {}
                try:
                    return await resp.json(content_type=None)
                except ValueError:
                    logger.warning("admin_api_non_json", path=path, body=text[:200])
                    raise BackendError("Некорректный ответ API", status=resp.status, path=path)

        except asyncio.TimeoutError:
            logger.error("admin_api_timeout", method=method, path=path)
            raise BackendError("API не ответил вовремя", path=path) from None
        except aiohttp.ClientError as e:
            logger.error("admin_api_network_error", method=method, path=path, error=str(e))
            raise BackendError(f"Сетевая ошибка: {e}", path=path) from None

    # ==========================================
    # РЕСТОРАНЫ
    # ==========================================

    async def list_restaurants(self) -> list[dict]:
        return await self.request("GET", "/restaurants") or []

    async def get_restaurant_menu(self, restaurant_id: int) -> list[dict]:
        return await self.request("GET", f"/restaurants/{restaurant_id}/menu") or []

    # ==========================================
    # БЛЮДА
    # ==========================================

    async def get_dish(self, dish_id: int) -> dict:
        result = await self.request("GET", f"/bot/dish/{dish_id}")
        return _unwrap_dish(result, f"/bot/dish/{dish_id}")

    async def toggle_dish(self, dish_id: int) -> dict:
        result = await self.request("POST", f"/bot/dish/{dish_id}/toggle")
        return _unwrap_dish(result, f"/bot/dish/{dish_id}/toggle")

    async def create_dish(self, payload: dict, idempotency_key: Optional[str] = None) -> dict:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else None
        result = await self.request("POST", "/admin/dishes", json=payload, headers=headers)
        return _unwrap_dish(result, "/admin/dishes")

    async def update_dish(self, dish_id: int, patch: dict) -> dict:
        result = await self.request("PUT", f"/admin/dishes/{dish_id}", json=patch)
        return _unwrap_dish(result, f"/admin/dishes/{dish_id}")

    async def delete_dish(self, dish_id: int) -> dict:
        return await self.request("DELETE", f"/admin/dishes/{dish_id}") or {}

    # ==========================================
    # ЗАКАЗЫ
    # ==========================================

    async def list_orders(self, status: Optional[str] = None, limit: Optional[int] = None) -> list[dict]:
        params = {}
        if status:
            params["status"] = status
        if limit:
            params["limit"] = limit
        return await self.request("GET", "/admin/orders", params=params or None) or []

    async def update_order_status(self, order_id: int, status: str) -> dict:
        result = await self.request(
            "PUT", f"/admin/orders/{order_id}/status", json={"status": status}
        )
        if isinstance(result, dict) and isinstance(result.get("order"), dict):
            return result["order"]
        return result

    # ==========================================
    # HEALTH
    # ==========================================

    async def health(self) -> dict:
        return await self.request("GET", "/health")


def _error_message(body: str) -> Optional[str]:
    """Достаёт текст ошибки из JSON-ответа, если он там есть."""
    try:
        data = jsonlib.loads(body)
    except ValueError:
        return None
    if isinstance(data, dict):
        for key in ("error", "message", "detail"):
            if isinstance(data.get(key), str):
                return data[key]
    return None


def _unwrap_dish(result: Any, path: str) -> dict:
    if isinstance(result, dict) and isinstance(result.get("dish"), dict):
        return result["dish"]
    raise BackendError("В ответе API нет блюда", path=path)
