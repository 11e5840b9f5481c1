# config/settings.py
"""
Settings файл - здесь живут все настройки админ-бота.

Логика: при запуске читаем .env и создаём объект 'config'.
Pydantic валидирует типы (API_TIMEOUT должен быть числом и т.д.)
и сразу подскажет что не так.
"""

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_id_list(raw: str) -> frozenset[int]:
    """
    Разбирает список chat id из строки вида "123, 456".

    Пустые элементы пропускаются, мусор - ошибка конфигурации.
    """
    ids = set()
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            ids.add(int(chunk))
        except ValueError:
            raise ValueError(f"Некорректный chat id в списке: {chunk!r}") from None
    return frozenset(ids)


class Settings(BaseSettings):
    """
    Основной класс настроек.

    Все поля читаются из переменных окружения (регистр не важен).
    """

    # ==========================================
    # TELEGRAM BOT
    # ==========================================
    bot_token: str = ""
    admin_chat_id: Optional[int] = None

    # ==========================================
    # ДОСТУП
    # ==========================================
    # Полный доступ (блюда + заказы). Пусто = бот открыт всем
    admin_users: str = ""
    # Только заказы, без управления блюдами
    order_operators: str = ""

    # ==========================================
    # ADMIN API (бэкенд доставки)
    # ==========================================
    admin_api_key: str = ""
    api_base_url: str = "https://food-delivery-api-production-8385.up.railway.app"
    api_timeout: float = 10.0
    api_retries: int = 2
    orders_page_size: int = 10

    # ==========================================
    # ОТОБРАЖЕНИЕ
    # ==========================================
    render_mode: Literal["html", "plain"] = "html"

    # ==========================================
    # HTTP (health + вебхуки)
    # ==========================================
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # ==========================================
    # TELEGRAM WEBHOOK (если пусто - polling)
    # ==========================================
    webhook_url: str = ""
    webhook_path: str = "/telegram/webhook"
    webhook_secret: str = ""

    # ==========================================
    # УВЕДОМЛЕНИЯ О ЗАКАЗАХ (POST /webhook/new-order)
    # ==========================================
    # Если задан - бэкенд шлёт его в заголовке X-Webhook-Secret
    order_webhook_secret: str = ""

    # ==========================================
    # REDIS (если пусто - сессии в памяти)
    # ==========================================
    redis_url: str = ""
    session_ttl: int = 60 * 60 * 24

    # ==========================================
    # ENVIRONMENT
    # ==========================================
    environment: Literal["development", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False
    )

    @property
    def admin_user_ids(self) -> frozenset[int]:
        return parse_id_list(self.admin_users)

    @property
    def order_operator_ids(self) -> frozenset[int]:
        return parse_id_list(self.order_operators)

    @property
    def use_webhook(self) -> bool:
        return bool(self.webhook_url)

    @property
    def telegram_webhook_url(self) -> str:
        """Полный URL для setWebhook."""
        return self.webhook_url.rstrip("/") + self.webhook_path

    @property
    def parse_mode(self) -> Optional[str]:
        return "HTML" if self.render_mode == "html" else None

    def validate_required(self) -> None:
        """Проверка критических переменных перед запуском."""
        missing = [
            name for name, value in (
                ("BOT_TOKEN", self.bot_token),
                ("ADMIN_API_KEY", self.admin_api_key),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Не заданы переменные окружения: {', '.join(missing)}")
        # Списки доступа разбираем заранее, чтобы ошибка была при старте
        self.admin_user_ids
        self.order_operator_ids


config = Settings()
