# futaba/conftest.py
from datetime import datetime, timedelta, timezone

import pytest

from futaba.core.database import build_engine, create_all_tables
from futaba.features.checkins.ledger import LedgerStore

KST = timezone(timedelta(hours=9))


@pytest.fixture(scope="session")
def tz():
    """Reference time zone used throughout the tests (UTC+9)."""
    return KST


@pytest.fixture(scope="function")
def engine():
    """Isolated in-memory SQLite database per test."""
    eng = build_engine("sqlite:///:memory:")
    create_all_tables(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def ledger(engine, tz):
    return LedgerStore(engine, tz=tz)


@pytest.fixture
def fixed_clock():
    """Factory for clocks frozen at a wall-clock time in the reference zone."""

    def _make(year, month, day, hour=12, minute=0):
        moment = datetime(year, month, day, hour, minute, tzinfo=KST)
        return lambda: moment

    return _make
