"""
Tests for the reporting queries.

Tests cover:
- Yearly totals and ratios (current year ends today, past years are whole)
- Total, current and longest streak rankings
- Per-participant detail with missing days and tenure
"""
from datetime import date, datetime, timezone

import pytest

from futaba.core.errors import NotFoundError
from futaba.features.checkins import snowflake
from futaba.features.checkins.statistics import StatisticsService, find_missing_days
from futaba.models.checkin import StreakBasis
from futaba.tests.fakes import KST, checkin_id, make_event


def _checkins(ledger, actor_id, days):
    for day in days:
        ledger.record(make_event(checkin_id(day), author_id=actor_id))


def _jan(*days):
    return [date(2024, 1, d) for d in days]


@pytest.fixture
def stats_at(engine, tz, fixed_clock):
    def _make(year, month, day, **kwargs):
        return StatisticsService(engine, tz=tz, clock=fixed_clock(year, month, day), **kwargs)

    return _make


def test_yearly_statistics_for_current_year(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    _checkins(ledger, 1, _jan(1, 2, 4))

    result = stats_at(2024, 1, 10).yearly_statistics()

    assert result.year == 2024
    assert result.total_days == 10
    assert [(e.name, e.count, e.ratio) for e in result.entries] == [("A", 3, 30)]


def test_yearly_statistics_sorted_by_count(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    ledger.upsert_participant(2, "B")
    ledger.upsert_participant(3, "C")
    _checkins(ledger, 1, _jan(1))
    _checkins(ledger, 2, _jan(1, 2, 3))
    _checkins(ledger, 3, _jan(2, 3))

    result = stats_at(2024, 1, 5).yearly_statistics(2024)

    assert [(e.actor_id, e.count) for e in result.entries] == [(2, 3), (3, 2), (1, 1)]
    assert [e.ratio for e in result.entries] == [60, 40, 20]


def test_yearly_statistics_excludes_other_years(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    _checkins(ledger, 1, [date(2023, 12, 31), date(2024, 1, 1)])

    stats = stats_at(2024, 1, 1)
    assert [e.count for e in stats.yearly_statistics(2024).entries] == [1]
    assert [e.count for e in stats.yearly_statistics(2023).entries] == [1]


def test_year_boundary_is_midnight_in_reference_zone(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    # Midnight KST on Jan 1st is still Dec 31st in UTC
    ledger.record(make_event(checkin_id(date(2024, 1, 1), hour=0) + 1, author_id=1))

    result = stats_at(2024, 1, 1).yearly_statistics(2024)
    assert [e.count for e in result.entries] == [1]


@pytest.mark.parametrize("year, days", [(2023, 365), (2024, 366)])
def test_past_years_count_whole_year(stats_at, year, days):
    result = stats_at(2025, 6, 1).yearly_statistics(year)
    assert result.total_days == days
    assert result.entries == []


def test_yearly_range_bounds(stats_at):
    year, days, begin_id, end_id = stats_at(2024, 3, 1).yearly_range()
    assert (year, days) == (2024, 61)
    assert snowflake.decode(begin_id, KST) == datetime(2024, 1, 1, tzinfo=KST)
    assert snowflake.decode(end_id, KST) == datetime(2024, 3, 2, tzinfo=KST)


def test_yearly_range_before_epoch_clamps_to_zero(stats_at):
    _, days, begin_id, end_id = stats_at(2024, 3, 1).yearly_range(2010)
    assert days == 365
    assert begin_id == 0
    assert end_id == 0


def test_total_ranking(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    ledger.upsert_participant(2, "B")
    ledger.upsert_participant(3, "never")
    _checkins(ledger, 1, _jan(1))
    _checkins(ledger, 2, _jan(1, 2))

    ranking = stats_at(2024, 1, 5).total_ranking()
    assert [(r.name, r.value) for r in ranking] == [("B", 2), ("A", 1)]


def test_streak_rankings(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    ledger.upsert_participant(2, "B")
    ledger.upsert_participant(3, "C")
    _checkins(ledger, 1, _jan(8, 9))
    _checkins(ledger, 2, _jan(5, 6, 7))
    _checkins(ledger, 3, _jan(10))

    stats = stats_at(2024, 1, 10)

    current = stats.streak_ranking(StreakBasis.CURRENT)
    assert [(r.name, r.value) for r in current] == [("A", 2), ("C", 1)]

    longest = stats.streak_ranking("longest")
    assert [(r.name, r.value) for r in longest] == [("B", 3), ("A", 2), ("C", 1)]


def test_unknown_streak_basis_is_rejected(stats_at):
    with pytest.raises(ValueError):
        stats_at(2024, 1, 1).streak_ranking("weekly")


def test_participant_detail_lists_missing_days(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    missed = {3, 7, 15}
    _checkins(ledger, 1, _jan(*[d for d in range(1, 21) if d not in missed]))

    detail = stats_at(2024, 1, 20).participant_detail(1)

    assert detail.name == "A"
    assert detail.yearly_count == 17
    assert detail.yearly_ratio == 85
    assert detail.total_count == 17
    assert detail.missing_days.detailed
    assert detail.missing_days.dates == _jan(3, 7, 15)
    assert detail.missing_days.count == 3
    assert detail.current_streak == 5
    assert detail.longest_streak == 7
    assert detail.tenure_days is None


def test_participant_detail_falls_back_to_count(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    _checkins(ledger, 1, _jan(1, 2, 3, 4, 5))

    detail = stats_at(2024, 1, 20).participant_detail(1)

    assert detail.missing_days.count == 15
    assert detail.missing_days.dates is None
    assert not detail.missing_days.detailed


def test_detail_limit_is_configurable(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    _checkins(ledger, 1, _jan(1, 2))

    detail = stats_at(2024, 1, 5, detail_limit=3).participant_detail(1)
    assert detail.missing_days.dates is None
    assert detail.missing_days.count == 3


def test_participant_detail_tenure(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    _checkins(ledger, 1, _jan(*[d for d in range(1, 21) if d not in (3, 7, 15)]))

    stats = stats_at(2024, 1, 20)
    detail = stats.participant_detail(1, joined_at=date(2024, 1, 11))
    assert detail.tenure_days == 9
    assert detail.tenure_ratio == 188

    # 16:00 UTC on Jan 9th is already Jan 10th in the reference zone
    joined = datetime(2024, 1, 9, 16, 0, tzinfo=timezone.utc)
    assert stats.participant_detail(1, joined_at=joined).tenure_days == 10


def test_tenure_is_at_least_one_day(ledger, stats_at):
    ledger.upsert_participant(1, "A")
    _checkins(ledger, 1, _jan(20))

    detail = stats_at(2024, 1, 20).participant_detail(1, joined_at=date(2024, 1, 20))
    assert detail.tenure_days == 1
    assert detail.tenure_ratio == 100


def test_participant_detail_unknown_actor(stats_at):
    with pytest.raises(NotFoundError):
        stats_at(2024, 1, 1).participant_detail(404)


def test_find_missing_days():
    begin = snowflake.date_to_snowflake(date(2024, 2, 1), KST)
    end = snowflake.date_to_snowflake(date(2024, 2, 6), KST)
    events = sorted([checkin_id(date(2024, 2, 2)), checkin_id(date(2024, 2, 2), hour=23), checkin_id(date(2024, 2, 5))])

    assert find_missing_days(events, begin, end, date(2024, 2, 1)) == [
        date(2024, 2, 1),
        date(2024, 2, 3),
        date(2024, 2, 4),
    ]
    assert find_missing_days([], begin, begin, date(2024, 2, 1)) == []
