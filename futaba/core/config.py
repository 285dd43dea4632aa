import logging
from datetime import timedelta, timezone, tzinfo

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

from futaba.core.errors import ConfigurationError


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///db.db"
    TEST_DATABASE_URL: Optional[str] = None

    # Discord
    DISCORD_BOT_TOKEN: Optional[str] = None
    GUILD_ID: Optional[int] = None
    CHANNEL_ID: Optional[int] = None
    DISCORD_API_BASE: str = "https://discord.com/api/v10"
    DISCORD_HTTP_TIMEOUT_SECONDS: float = 10.0
    DISCORD_RATE_LIMIT_RETRIES: int = 3

    # Seed for the first-ever backfill (no cursor, empty history)
    INIT_MESSAGE_ID: Optional[int] = None

    # Check-in rules
    CHECKIN_TOKEN: str = "으어어"
    FREE_PASS_MONTH: int = 4
    FREE_PASS_DAY: int = 1
    REFERENCE_UTC_OFFSET_HOURS: int = 9

    # Paging and reporting
    BACKFILL_PAGE_SIZE: int = 100
    MEMBER_PAGE_SIZE: int = 1000
    MISSING_DAYS_DETAIL_LIMIT: int = 10

    # Remove non-check-in messages posted to the monitored channel
    DELETE_INVALID_LIVE_EVENTS: bool = True

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def get_reference_timezone(settings_obj: Optional[Settings] = None) -> tzinfo:
    """Fixed-offset zone every calendar date is attributed in."""
    cfg = settings_obj or settings
    return timezone(timedelta(hours=cfg.REFERENCE_UTC_OFFSET_HOURS))


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise ConfigurationError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("futaba")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DISCORD_BOT_TOKEN",
        "GUILD_ID",
        "CHANNEL_ID",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise ConfigurationError(message)
        log.warning(message)

    return True
