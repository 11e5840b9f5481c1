"""Настройки приложения."""
