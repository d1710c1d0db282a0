"""
Unit tests for configuration
"""

from decimal import Decimal

import pytest

from config.redpacket_config import RedPacketConfig


def test_config_loading():
    """Test that configuration loads correctly"""
    from config.config import DATABASE_URL, EXPIRY_CHECK_INTERVAL_MINUTES, validate_config

    assert DATABASE_URL
    assert EXPIRY_CHECK_INTERVAL_MINUTES > 0
    assert callable(validate_config)


def test_validate_config_requires_bot_token(monkeypatch):
    import config.config as cfg

    monkeypatch.setattr(cfg, "BOT_TOKEN", "")
    with pytest.raises(ValueError, match="BOT_TOKEN is required"):
        cfg.validate_config()

    monkeypatch.setattr(cfg, "BOT_TOKEN", "123:abc")
    assert cfg.validate_config() is True


def test_engine_defaults():
    config = RedPacketConfig()

    assert config.limits.min_amount == Decimal("1.00")
    assert config.limits.max_amount == Decimal("10000.00")
    assert (config.limits.min_count, config.limits.max_count) == (1, 100)
    assert config.limits.min_share == Decimal("0.01")
    assert config.quotas.hourly_send_count == 3
    assert config.permissions.group_only is True
    assert config.permissions.allow_self_claim is False
    assert config.conversation.ttl_seconds == 300
    assert config.packet_ttl_hours == 24
    assert "red" in config.command_aliases


def test_engine_config_from_env(monkeypatch):
    monkeypatch.setenv("REDPACKET_MAX_AMOUNT", "500.00")
    monkeypatch.setenv("REDPACKET_HOURLY_SEND_COUNT", "0")
    monkeypatch.setenv("REDPACKET_ALLOW_SELF_CLAIM", "true")
    monkeypatch.setenv("REDPACKET_TTL_HOURS", "12")

    config = RedPacketConfig.from_env()

    assert config.limits.max_amount == Decimal("500.00")
    assert config.quotas.hourly_send_count == 0
    assert config.permissions.allow_self_claim is True
    assert config.packet_ttl_hours == 12
