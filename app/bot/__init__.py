"""Telegram-часть: движок диалога, экраны, транспорт."""
