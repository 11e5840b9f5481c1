from decimal import Decimal

import pytest

from app.bot.fields import (
    FIELDS,
    ValidationError,
    parse_dish_id,
    parse_field,
    parse_minutes,
    parse_patch_block,
    parse_price,
    parse_yes_no,
)
from app.models import DishDraft, DishEditRequest, json_number


class TestParsers:
    @pytest.mark.parametrize("raw, expected", [
        ("500", Decimal("500")),
        (" 350 ", Decimal("350")),
        ("12.345", Decimal("12.35")),
        ("450,5", Decimal("450.5")),
        ("1 200", Decimal("1200")),
    ])
    def test_price_accepts(self, raw, expected):
        assert parse_price(raw) == expected

    @pytest.mark.parametrize("raw", [
        "", "abc", "-5", "0", "NaN", "Infinity", "5р",
        "1e-400", "1e5000", "1E3", "0.001", "2000000", "²", "5²",
    ])
    def test_price_rejects(self, raw):
        with pytest.raises(ValidationError):
            parse_price(raw)

    def test_minutes(self):
        assert parse_minutes(" 25 ") == 25
        for raw in ("0", "-1", "2.5", "много", "", "²", "2²", "１５", "99999"):
            with pytest.raises(ValidationError):
                parse_minutes(raw)

    def test_yes_no(self):
        assert parse_yes_no("Да") is True
        assert parse_yes_no("no") is False
        with pytest.raises(ValidationError):
            parse_yes_no("может быть")

    def test_dish_id(self):
        assert parse_dish_id("#17") == 17
        for raw in ("0", "4²", "²", "9" * 40):
            with pytest.raises(ValidationError):
                parse_dish_id(raw)

    def test_price_goes_to_json_as_cents(self):
        draft = DishDraft(restaurant_id=1, name="A", description="B",
                          price=parse_price("0.019"), preparation_time=5)
        assert draft.to_payload()["price"] == 0.02


class TestFieldTable:
    def test_keys_are_unique(self):
        keys = [f.key for f in FIELDS]
        assert len(keys) == len(set(keys))

    def test_parse_field_uses_api_name(self):
        assert parse_field("prep_time", "30") == {"preparation_time": 30}
        assert parse_field("vegetarian", "да") == {"is_vegetarian": True}


class TestPatchBlock:
    def test_several_fields(self):
        patch = parse_patch_block("Название: Маргарита\n\nцена: 550\nВремя: 15")
        assert patch == {"name": "Маргарита", "price": Decimal("550"), "preparation_time": 15}

    def test_value_may_contain_colon(self):
        assert parse_patch_block("Описание: Соус: томатный") == {"description": "Соус: томатный"}

    @pytest.mark.parametrize("block, message", [
        ("Цвет: красный", "неизвестное поле"),
        ("просто текст", "Поле: значение"),
        ("Цена: дорого", "Цена"),
        ("   \n", "ни одного поля"),
        ("Время: ²", "Время приготовления"),
    ])
    def test_rejects(self, block, message):
        with pytest.raises(ValidationError, match=message):
            parse_patch_block(block)


class TestDraft:
    def test_incomplete_draft_has_no_payload(self):
        draft = DishDraft(restaurant_id=1, name="Pizza")
        assert draft.missing_fields() == ["description", "price", "preparation_time"]
        with pytest.raises(ValueError):
            draft.to_payload()

    def test_each_draft_has_own_idempotency_key(self):
        assert DishDraft(restaurant_id=1).idempotency_key != DishDraft(restaurant_id=1).idempotency_key

    def test_edit_request_payload(self):
        request = DishEditRequest(dish_id=5, changes={"price": Decimal("99.90"), "is_spicy": False})
        assert request.to_payload() == {"price": 99.9, "is_spicy": False}

    def test_json_number(self):
        assert json_number(Decimal("500.00")) == 500
        assert isinstance(json_number(Decimal("500.00")), int)
        assert json_number(Decimal("12.5")) == 12.5
