from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from futaba.models.checkin import StreakState


def advance(prior: Optional[StreakState], day: date) -> StreakState:
    """Streak state after one more accepted check-in dated ``day``.

    Only "yesterday" continues a streak. Anything else, including a second
    check-in on ``last_date`` itself or an event older than it, restarts the
    current streak at 1 and keeps the longest streak as it was.
    """
    if prior is None or prior.last_date is None:
        longest = prior.longest if prior else 0
        return StreakState(longest=max(longest, 1), current=1, last_date=day)

    if day == prior.last_date + timedelta(days=1):
        current = prior.current + 1
        return StreakState(longest=max(prior.longest, current), current=current, last_date=day)

    return StreakState(longest=prior.longest, current=1, last_date=day)
