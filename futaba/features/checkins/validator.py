from __future__ import annotations

from datetime import tzinfo
from typing import Tuple

from futaba.core.config import get_reference_timezone, settings
from futaba.features.checkins.snowflake import event_date
from futaba.models.checkin import InboundEvent


def is_checkin(
    event: InboundEvent,
    *,
    token: str,
    tz: tzinfo,
    free_pass: Tuple[int, int] = (4, 1),
) -> bool:
    """Is this a check-in by a human?

    Bots and edited messages never count. On the free pass day (month, day)
    any content counts; otherwise the content must equal the token exactly.
    """
    if event.author_is_bot or event.edited:
        return False

    day = event_date(event.event_id, tz)
    if (day.month, day.day) == free_pass:
        return True
    return event.content == token


class CheckinValidator:
    """``is_checkin`` bound to deployment settings."""

    def __init__(self, *, token: str, tz: tzinfo, free_pass: Tuple[int, int] = (4, 1)):
        self.token = token
        self.tz = tz
        self.free_pass = free_pass

    def __call__(self, event: InboundEvent) -> bool:
        return is_checkin(event, token=self.token, tz=self.tz, free_pass=self.free_pass)

    @classmethod
    def from_settings(cls, settings_obj=None) -> "CheckinValidator":
        cfg = settings_obj or settings
        return cls(
            token=cfg.CHECKIN_TOKEN,
            tz=get_reference_timezone(cfg),
            free_pass=(cfg.FREE_PASS_MONTH, cfg.FREE_PASS_DAY),
        )
