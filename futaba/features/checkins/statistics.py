"""
futaba/features/checkins/statistics.py

Read-only reporting over the check-in ledger.

Year boundaries are midnights in the reference time zone, turned into snowflake
bounds so history can be range-scanned on its primary key. Queries do not share
a snapshot; each one reads whatever has been committed when it runs.
"""
from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable, List, Optional, Tuple, Union

from sqlalchemy import func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from futaba.core.database import get_engine, history, participants
from futaba.core.errors import NotFoundError, StorageFailure
from futaba.core.logging import log_event
from futaba.features.checkins import snowflake
from futaba.models.checkin import (
    MissingDays,
    ParticipantDetail,
    RankingEntry,
    StreakBasis,
    YearlyEntry,
    YearlyStatistics,
)

DETAIL_LIMIT_COUNT = 10

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _snowflake_at(moment: datetime) -> int:
    # Anything before the Discord epoch maps to the lowest id
    try:
        return snowflake.encode(moment)
    except ValueError:
        return 0


def find_missing_days(event_ids: List[int], begin_id: int, end_id: int, first_day: date) -> List[date]:
    """Days in [begin_id, end_id) whose one-day window holds none of ``event_ids``.

    ``event_ids`` must be sorted ascending.
    """
    one_day = timedelta(days=1)
    missing: List[date] = []
    position = 0
    window_start = begin_id
    day = first_day
    while window_start < end_id:
        window_end = snowflake.add_duration(window_start, one_day)
        while position < len(event_ids) and event_ids[position] < window_start:
            position += 1
        if position == len(event_ids) or event_ids[position] >= window_end:
            missing.append(day)
        window_start = window_end
        day += one_day
    return missing


class StatisticsService:
    def __init__(
        self,
        engine: Optional[Engine] = None,
        *,
        tz: tzinfo,
        clock: Clock = _utc_now,
        detail_limit: int = DETAIL_LIMIT_COUNT,
    ):
        self.engine = engine or get_engine()
        self.tz = tz
        self.clock = clock
        self.detail_limit = detail_limit

    @contextmanager
    def _connect(self):
        try:
            with self.engine.connect() as conn:
                yield conn
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Statistics query failed: {exc}") from exc

    def today(self) -> date:
        return self.clock().astimezone(self.tz).date()

    def yearly_range(self, year: Optional[int] = None) -> Tuple[int, int, int, int]:
        """Return (year, days, begin_id, end_id) for a calendar year.

        The current year ends at the end of today, so ``days`` counts Jan 1
        through today.
        """
        today = self.today()
        year = year or today.year
        begin = snowflake.day_start(date(year, 1, 1), self.tz)
        if year != today.year:
            end = snowflake.day_start(date(year + 1, 1, 1), self.tz)
        else:
            end = snowflake.day_start(today, self.tz) + timedelta(days=1)
        days = (end - begin).days
        begin_id = _snowflake_at(begin)
        end_id = _snowflake_at(end)
        log_event("info", f"yearly stats {begin.isoformat()}({begin_id}) ~ {end.isoformat()}({end_id}) ({days} days)")
        return year, days, begin_id, end_id

    def current_streak_range(self) -> Tuple[date, date]:
        """[yesterday, tomorrow): a last check-in in here means the streak is alive."""
        today = self.today()
        return today - timedelta(days=1), today + timedelta(days=1)

    def total_ranking(self) -> List[RankingEntry]:
        with self._connect() as conn:
            rows = conn.execute(
                select(participants.c.name, participants.c.count)
                .where(participants.c.count > 0)
                .order_by(participants.c.count.desc(), participants.c.actor_id)
            ).all()
        return [RankingEntry(name=row.name, value=row.count) for row in rows]

    def streak_ranking(self, basis: Union[StreakBasis, str]) -> List[RankingEntry]:
        basis = StreakBasis(basis)
        if basis is StreakBasis.LONGEST:
            column = participants.c.longest_streak
            query = select(participants.c.name, column.label("streak"))
        else:
            column = participants.c.current_streak
            begin, end = self.current_streak_range()
            query = select(participants.c.name, column.label("streak")).where(
                participants.c.last_date >= begin,
                participants.c.last_date < end,
            )

        with self._connect() as conn:
            rows = conn.execute(query.order_by(column.desc(), participants.c.actor_id)).all()
        return [RankingEntry(name=row.name, value=row.streak) for row in rows]

    def yearly_statistics(self, year: Optional[int] = None) -> YearlyStatistics:
        year, days, begin_id, end_id = self.yearly_range(year)
        with self._connect() as conn:
            rows = conn.execute(
                select(
                    history.c.actor_id,
                    participants.c.name,
                    func.count(history.c.event_id).label("count"),
                )
                .select_from(history.join(participants, history.c.actor_id == participants.c.actor_id))
                .where(history.c.event_id >= begin_id, history.c.event_id < end_id)
                .group_by(history.c.actor_id, participants.c.name)
            ).all()

        entries = [
            YearlyEntry(actor_id=row.actor_id, name=row.name, count=row.count, ratio=row.count * 100 // days)
            for row in rows
        ]
        entries.sort(key=lambda entry: (-entry.count, entry.actor_id))
        return YearlyStatistics(year=year, total_days=days, entries=entries)

    def participant_detail(
        self,
        actor_id: int,
        joined_at: Optional[Union[datetime, date]] = None,
    ) -> ParticipantDetail:
        with self._connect() as conn:
            participant = conn.execute(
                select(
                    participants.c.name,
                    participants.c.longest_streak,
                    participants.c.current_streak,
                ).where(participants.c.actor_id == actor_id)
            ).first()
            if participant is None:
                raise NotFoundError(f"Unknown participant {actor_id}")

            year, days, begin_id, end_id = self.yearly_range(None)
            event_ids = conn.execute(
                select(history.c.event_id)
                .where(
                    history.c.actor_id == actor_id,
                    history.c.event_id >= begin_id,
                    history.c.event_id < end_id,
                )
                .order_by(history.c.event_id.asc())
            ).scalars().all()
            total_count = conn.execute(
                select(func.count()).select_from(history).where(history.c.actor_id == actor_id)
            ).scalar_one()

        yearly_count = len(event_ids)
        missing = find_missing_days(list(event_ids), begin_id, end_id, date(year, 1, 1))
        if len(missing) < self.detail_limit:
            missing_days = MissingDays(count=len(missing), dates=missing)
        else:
            missing_days = MissingDays(count=len(missing))

        tenure_days = tenure_ratio = None
        if joined_at is not None:
            joined = joined_at.astimezone(self.tz).date() if isinstance(joined_at, datetime) else joined_at
            tenure_days = max(1, (self.today() - joined).days)
            tenure_ratio = total_count * 100 // tenure_days

        return ParticipantDetail(
            actor_id=actor_id,
            name=participant.name,
            longest_streak=participant.longest_streak,
            current_streak=participant.current_streak,
            year=year,
            yearly_count=yearly_count,
            yearly_ratio=yearly_count * 100 // days,
            total_count=total_count,
            missing_days=missing_days,
            tenure_days=tenure_days,
            tenure_ratio=tenure_ratio,
        )
