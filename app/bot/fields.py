# app/bot/fields.py
"""
Поля блюда, которые админ может вводить текстом.

Одна таблица FIELDS описывает каждое поле: ключ в callback, имя поля в API,
подписи (по-русски и по-английски) и парсер. Чтобы сделать новое поле
редактируемым, достаточно добавить строку в таблицу.
"""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional


class ValidationError(ValueError):
    """Введённый текст не подходит под правила поля."""


# ==========================================
# ПАРСЕРЫ
# ==========================================

YES_WORDS = {"да", "д", "yes", "y", "true", "1", "+"}
NO_WORDS = {"нет", "н", "no", "n", "false", "0", "-"}


def parse_text(text: str) -> str:
    value = text.strip()
    if not value:
        raise ValidationError("Значение не может быть пустым.")
    return value


PRICE_RE = re.compile(r"[0-9]{1,7}(\.[0-9]+)?")
MINUTES_RE = re.compile(r"[0-9]{1,4}")
DISH_ID_RE = re.compile(r"[0-9]{1,18}")

MAX_PRICE = Decimal("1000000")
MAX_PREP_MINUTES = 24 * 60


def parse_price(text: str) -> Decimal:
    """
    Положительная цена с точностью до копеек, запятая тоже подходит.

    Экспоненциальная запись (1e5) не принимается.
    """
    raw = text.strip().replace(" ", "").replace(",", ".")
    if not PRICE_RE.fullmatch(raw):
        raise ValidationError("Неверная цена. Введите число больше 0.")
    value = Decimal(raw).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    if value <= 0 or value > MAX_PRICE:
        raise ValidationError(f"Неверная цена. Введите число от 0.01 до {MAX_PRICE}.")
    return value


def parse_minutes(text: str) -> int:
    raw = text.strip()
    if not MINUTES_RE.fullmatch(raw):
        raise ValidationError("Неверное время. Введите целое число минут больше 0.")
    value = int(raw)
    if value <= 0 or value > MAX_PREP_MINUTES:
        raise ValidationError(f"Неверное время. Введите целое число минут от 1 до {MAX_PREP_MINUTES}.")
    return value


def parse_yes_no(text: str) -> bool:
    word = text.strip().lower()
    if word in YES_WORDS:
        return True
    if word in NO_WORDS:
        return False
    raise ValidationError("Ответьте «да» или «нет».")


def parse_dish_id(text: str) -> int:
    raw = text.strip().lstrip("#")
    if not DISH_ID_RE.fullmatch(raw) or int(raw) <= 0:
        raise ValidationError("Введите числовой ID блюда, например: 42")
    return int(raw)


# ==========================================
# ТАБЛИЦА ПОЛЕЙ
# ==========================================

@dataclass(frozen=True)
class DishField:
    key: str
    api_field: str
    title: str
    labels: tuple[str, ...]
    parse: Callable[[str], Any]
    hint: str = ""


FIELDS: tuple[DishField, ...] = (
    DishField("name", "name", "название", ("название", "name"), parse_text),
    DishField("description", "description", "описание", ("описание", "description"), parse_text),
    DishField("price", "price", "цена", ("цена", "price"), parse_price, "число, например: 350"),
    DishField(
        "prep_time", "preparation_time", "время приготовления",
        ("время", "время приготовления", "prep_time", "preparation_time"),
        parse_minutes, "минуты, например: 25",
    ),
    DishField("spicy", "is_spicy", "острое", ("острое", "острота", "spicy"), parse_yes_no, "да/нет"),
    DishField(
        "vegetarian", "is_vegetarian", "вегетарианское",
        ("вегетарианское", "vegetarian"), parse_yes_no, "да/нет",
    ),
    DishField(
        "available", "is_available", "доступность",
        ("доступно", "доступность", "available"), parse_yes_no, "да/нет",
    ),
)

FIELDS_BY_KEY = {field.key: field for field in FIELDS}
FIELDS_BY_LABEL = {label: field for field in FIELDS for label in field.labels}


def get_field(key: str) -> Optional[DishField]:
    return FIELDS_BY_KEY.get(key)


def parse_field(key: str, text: str) -> dict[str, Any]:
    """Один ввод для одного поля → патч из одного ключа."""
    field = FIELDS_BY_KEY[key]
    return {field.api_field: field.parse(text)}


def parse_patch_block(text: str) -> dict[str, Any]:
    """
    Разбирает блок строк "Поле: значение" в частичный патч.

    Пример:
        Название: Маргарита
        Цена: 550
    → {"name": "Маргарита", "price": Decimal("550")}

    Неизвестная подпись или ошибка в любом значении - ValidationError,
    частичный патч не возвращаем.
    """
    patch: dict[str, Any] = {}
    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        label, sep, value = line.partition(":")
        if not sep:
            raise ValidationError(f"Строка {line_no}: нужен формат «Поле: значение».")
        field = FIELDS_BY_LABEL.get(label.strip().lower())
        if field is None:
            raise ValidationError(f"Строка {line_no}: неизвестное поле «{label.strip()}».")
        try:
            patch[field.api_field] = field.parse(value)
        except ValidationError as e:
            raise ValidationError(f"{field.title.capitalize()}: {e}") from None
    if not patch:
        raise ValidationError("Не найдено ни одного поля.")
    return patch
