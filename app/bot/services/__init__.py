"""Сервисы бота: заказы и уведомления."""
