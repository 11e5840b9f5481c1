# main.py
"""
🚀 ГЛАВНЫЙ ФАЙЛ ЗАПУСКА БОТА

Точка входа: собирает зависимости (бот, Admin API, хранилище сессий,
движок диалога) и запускает одновременно:
- приём апдейтов Telegram (polling или webhook)
- FastAPI (health-check и уведомления о новых заказах)
"""

import asyncio

import structlog
import uvicorn
from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties

from app.api.app import create_app
from app.bot.access import AccessPolicy
from app.bot.engine import ConversationEngine
from app.bot.handlers import router
from app.bot.middlewares import LoggingMiddleware
from app.bot.screens import ScreenRenderer, markup_for
from app.bot.services.notifications import notification_recipients
from app.bot.services.orders import OrderService
from app.bot.transport import TelegramTransport
from config.settings import config
from infrastructure.admin_api import AdminApiClient
from infrastructure.logger import setup_logging
from infrastructure.session_store import check_redis_connection, create_session_store

logger = structlog.get_logger()


# ==========================================
# 🤖 BOT STARTUP & SHUTDOWN
# ==========================================

async def on_startup(bot: Bot):
    """Уведомляем админ-чат что бот живой. Ошибка не блокирует запуск."""
    logger.info("bot_starting")

    if not config.admin_chat_id:
        logger.warning("admin_chat_id_not_set", message="ADMIN_CHAT_ID не установлен в .env")
        return

    try:
        await bot.send_message(
            chat_id=config.admin_chat_id,
            text="✅ Админ-бот запущен!\n\nИспользуйте /start для входа в панель.",
            parse_mode=None,
        )
        logger.info("admin_chat_notified")
    except Exception as e:
        logger.error("admin_chat_notification_failed", error=str(e))


async def on_shutdown(bot: Bot, api: AdminApiClient, store):
    logger.info("bot_shutdown")

    for name, close in (
        ("bot_session", bot.session.close),
        ("admin_api", api.close),
        ("session_store", store.close),
    ):
        try:
            await close()
            logger.info("resource_closed", resource=name)
        except Exception as e:
            logger.error("resource_close_error", resource=name, error=str(e))


# ==========================================
# 🚀 ГЛАВНАЯ ФУНКЦИЯ ЗАПУСКА
# ==========================================

async def main():
    # ========== ИНИЦИАЛИЗАЦИЯ ==========

    setup_logging(config.log_level, json_logs=config.environment == "production")
    logger.info("application_start", environment=config.environment)

    config.validate_required()
    logger.info("config_validated", api_base_url=config.api_base_url,
                admins=len(config.admin_user_ids), operators=len(config.order_operator_ids))

    # ========== ЗАВИСИМОСТИ ==========

    bot = Bot(
        token=config.bot_token,
        default=DefaultBotProperties(parse_mode=config.parse_mode),
    )

    store = create_session_store(config.redis_url, ttl=config.session_ttl)
    if not await check_redis_connection(store):
        raise RuntimeError("Redis недоступен, проверьте REDIS_URL")

    api = AdminApiClient(
        base_url=config.api_base_url,
        api_key=config.admin_api_key,
        timeout=config.api_timeout,
        retries=config.api_retries,
    )

    transport = TelegramTransport(bot, parse_mode=config.parse_mode)
    renderer = ScreenRenderer(markup_for(config.render_mode))
    access = AccessPolicy.from_settings(config)

    engine = ConversationEngine(
        api=api,
        store=store,
        access=access,
        transport=transport,
        renderer=renderer,
        orders=OrderService(api, page_size=config.orders_page_size),
        api_base_url=config.api_base_url,
    )

    # ========== ДИСПЕТЧЕР ==========

    dp = Dispatcher()
    dp["engine"] = engine
    dp.message.middleware(LoggingMiddleware())
    dp.callback_query.middleware(LoggingMiddleware())
    dp.include_router(router)

    app = create_app(
        transport=transport,
        renderer=renderer,
        recipients=notification_recipients(config.admin_chat_id, config.admin_user_ids),
        admins=config.admin_user_ids,
        bot=bot if config.use_webhook else None,
        dispatcher=dp if config.use_webhook else None,
        webhook_path=config.webhook_path,
        webhook_secret=config.webhook_secret,
        order_webhook_secret=config.order_webhook_secret,
    )

    await on_startup(bot)

    # ========== ЗАПУСК БОТА И API ОДНОВРЕМЕННО ==========

    async def run_bot():
        if config.use_webhook:
            await bot.set_webhook(
                config.telegram_webhook_url,
                secret_token=config.webhook_secret or None,
                drop_pending_updates=False,
            )
            logger.info("webhook_set", url=config.telegram_webhook_url)
            return

        await bot.delete_webhook(drop_pending_updates=False)
        logger.info("polling_started", bot_username=f"@{(await bot.get_me()).username}")
        await dp.start_polling(bot)

    async def run_api():
        server = uvicorn.Server(uvicorn.Config(
            app,
            host=config.api_host,
            port=config.api_port,
            log_level="info",
            access_log=config.debug,
        ))
        logger.info("fastapi_starting", host=config.api_host, port=config.api_port)
        await server.serve()

    try:
        await asyncio.gather(run_bot(), run_api())
    except asyncio.CancelledError:
        logger.info("services_cancelled")
        raise
    except Exception as e:
        logger.error("fatal_error", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        await on_shutdown(bot, api, store)


# ==========================================
# 📌 ENTRY POINT
# ==========================================

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("app_interrupted", message="⛔ Приложение остановлено (Ctrl+C)")
    finally:
        logger.info("app_final_shutdown")
