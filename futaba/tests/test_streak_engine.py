from datetime import date, timedelta

from futaba.features.checkins.streaks import advance
from futaba.models.checkin import StreakState

DAY_ONE = date(2024, 1, 1)


def test_first_checkin_starts_streak():
    state = advance(None, DAY_ONE)
    assert (state.current, state.longest, state.last_date) == (1, 1, DAY_ONE)


def test_first_checkin_keeps_higher_longest():
    state = advance(StreakState(longest=5, current=0, last_date=None), DAY_ONE)
    assert (state.current, state.longest) == (1, 5)


def test_consecutive_day_extends_streak():
    state = advance(StreakState(longest=2, current=2, last_date=DAY_ONE), DAY_ONE + timedelta(days=1))
    assert (state.current, state.longest) == (3, 3)


def test_consecutive_days_are_monotonic():
    state = None
    previous_longest = 0
    for offset in range(30):
        prior_current = state.current if state else 0
        state = advance(state, DAY_ONE + timedelta(days=offset))
        assert state.current == prior_current + 1
        assert state.longest >= previous_longest
        previous_longest = state.longest
    assert (state.current, state.longest) == (30, 30)


def test_gap_resets_current_and_keeps_longest():
    prior = StreakState(longest=7, current=4, last_date=DAY_ONE)
    state = advance(prior, DAY_ONE + timedelta(days=2))
    assert (state.current, state.longest) == (1, 7)


def test_same_day_repeat_resets_current_streak():
    # Only "yesterday" continues a streak, so a second check-in today restarts it
    prior = StreakState(longest=3, current=3, last_date=DAY_ONE)
    state = advance(prior, DAY_ONE)
    assert (state.current, state.longest) == (1, 3)
    assert state.last_date == DAY_ONE


def test_out_of_order_event_resets_current_streak():
    prior = StreakState(longest=4, current=2, last_date=DAY_ONE + timedelta(days=5))
    state = advance(prior, DAY_ONE)
    assert (state.current, state.longest) == (1, 4)
    assert state.last_date == DAY_ONE


def test_concrete_three_event_scenario():
    after_day1 = advance(None, date(2024, 1, 1))
    after_day2 = advance(after_day1, date(2024, 1, 2))
    after_day4 = advance(after_day2, date(2024, 1, 4))
    assert (after_day1.current, after_day1.longest) == (1, 1)
    assert (after_day2.current, after_day2.longest) == (2, 2)
    assert (after_day4.current, after_day4.longest) == (1, 2)
