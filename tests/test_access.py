import pytest

from app.bot.access import AccessPolicy, AuthorizationError
from config.settings import Settings, parse_id_list


def test_empty_admin_list_opens_bot():
    policy = AccessPolicy()
    assert policy.is_open
    assert policy.is_authorized(12345)
    assert policy.can_manage_dishes(12345)


def test_admins_and_operators():
    policy = AccessPolicy(admins=frozenset({1}), order_operators=frozenset({2}))

    assert policy.is_authorized(1) and policy.can_manage_dishes(1) and policy.can_view_orders(1)
    assert policy.is_authorized(2) and policy.can_view_orders(2)
    assert not policy.can_manage_dishes(2)
    assert not policy.is_authorized(3)
    assert not policy.can_view_orders(3)


def test_require():
    AccessPolicy().require(True)
    with pytest.raises(AuthorizationError):
        AccessPolicy().require(False)


def test_parse_id_list():
    assert parse_id_list("") == frozenset()
    assert parse_id_list(" 1, 2,,3 ") == frozenset({1, 2, 3})
    with pytest.raises(ValueError):
        parse_id_list("1, admin")


def test_policy_from_settings():
    settings = Settings(_env_file=None, admin_users="10,11", order_operators="20")
    policy = AccessPolicy.from_settings(settings)
    assert policy.admins == frozenset({10, 11})
    assert policy.order_operators == frozenset({20})


def test_settings_validation_lists_missing_variables():
    settings = Settings(_env_file=None, bot_token="", admin_api_key="")
    with pytest.raises(ValueError, match="BOT_TOKEN, ADMIN_API_KEY"):
        settings.validate_required()


def test_settings_webhook_url():
    settings = Settings(_env_file=None, webhook_url="https://bot.example.com/", webhook_path="/tg")
    assert settings.use_webhook
    assert settings.telegram_webhook_url == "https://bot.example.com/tg"
    assert Settings(_env_file=None, render_mode="plain").parse_mode is None
