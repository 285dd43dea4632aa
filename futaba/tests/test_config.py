import logging
from datetime import timedelta

import pytest

from futaba.core.config import Settings, get_reference_timezone, validate_config
from futaba.core.errors import ConfigurationError


def _settings(**overrides):
    return Settings(_env_file=None, **overrides)


def test_defaults():
    cfg = _settings()
    assert cfg.CHECKIN_TOKEN == "으어어"
    assert (cfg.FREE_PASS_MONTH, cfg.FREE_PASS_DAY) == (4, 1)
    assert cfg.BACKFILL_PAGE_SIZE == 100
    assert cfg.MEMBER_PAGE_SIZE == 1000
    assert cfg.MISSING_DAYS_DETAIL_LIMIT == 10


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CHANNEL_ID", "1234")
    monkeypatch.setenv("REFERENCE_UTC_OFFSET_HOURS", "0")
    cfg = _settings()
    assert cfg.CHANNEL_ID == 1234
    assert get_reference_timezone(cfg).utcoffset(None) == timedelta(0)


def test_reference_timezone_default_is_utc_plus_nine():
    assert get_reference_timezone(_settings()).utcoffset(None) == timedelta(hours=9)


def test_validate_config_strict_raises():
    with pytest.raises(ConfigurationError) as exc_info:
        validate_config(strict=True, settings_obj=_settings(DISCORD_BOT_TOKEN=None, GUILD_ID=None, CHANNEL_ID=None))
    assert "DISCORD_BOT_TOKEN" in exc_info.value.message


def test_validate_config_lenient_warns(caplog):
    logger = logging.getLogger("futaba.test_config")
    with caplog.at_level(logging.WARNING, logger="futaba.test_config"):
        assert validate_config(strict=False, settings_obj=_settings(DISCORD_BOT_TOKEN=None, GUILD_ID=1, CHANNEL_ID=2), logger=logger)
    assert "DISCORD_BOT_TOKEN" in caplog.text
    assert "GUILD_ID" not in caplog.text


def test_validate_config_complete():
    cfg = _settings(DISCORD_BOT_TOKEN="t", GUILD_ID=1, CHANNEL_ID=2)
    assert validate_config(strict=True, settings_obj=cfg) is True
