"""
futaba/models/checkin.py
Domain and read models for check-in ingestion and statistics.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RecordOutcome(str, Enum):
    """Result of offering one validated event to the ledger."""
    ACCEPTED = "accepted"
    DUPLICATE = "duplicate"
    UNKNOWN_ACTOR = "unknown_actor"


class StreakBasis(str, Enum):
    CURRENT = "current"
    LONGEST = "longest"


class InboundEvent(BaseModel):
    """A raw message observed on the monitored stream."""

    model_config = ConfigDict(frozen=True)

    event_id: int = Field(ge=0, description="Snowflake of the message")
    stream_id: Optional[int] = Field(default=None, description="Channel the message was posted to")
    author_id: int
    author_name: str = ""
    author_is_bot: bool = False
    content: str = ""
    edited: bool = Field(default=False, description="True once the message has been edited")


class Member(BaseModel):
    """An entry of the membership feed."""

    model_config = ConfigDict(frozen=True)

    actor_id: int
    username: str
    nickname: Optional[str] = None

    @property
    def display_name(self) -> str:
        # if there is no nickname, use the account name
        return self.nickname or self.username


class Participant(BaseModel):
    model_config = ConfigDict(frozen=True)

    actor_id: int
    name: str
    count: int = Field(default=0, ge=0)
    current_streak: int = Field(default=0, ge=0)
    longest_streak: int = Field(default=0, ge=0)
    last_date: Optional[date] = None


@dataclass(frozen=True)
class StreakState:
    """
    Streak bookkeeping for one participant. Calendar dates are in the
    reference time zone; no DB concerns.
    """

    longest: int = 0
    current: int = 0
    last_date: Optional[date] = None


class IngestionState(BaseModel):
    """Explicit backfill state, passed into and returned from a run."""

    model_config = ConfigDict(frozen=True)

    stream_id: str
    cursor: Optional[int] = None
    pages: int = 0
    events_seen: int = 0
    accepted: int = 0
    duplicates: int = 0
    unknown_actors: int = 0
    rejected: int = 0
    stopped: bool = Field(default=False, description="True when a stop was requested mid-run")


class RankingEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: int


class YearlyEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    actor_id: int
    name: str
    count: int = Field(ge=0)
    ratio: int = Field(ge=0, description="count * 100 // total_days")


class YearlyStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    year: int
    total_days: int = Field(ge=1)
    entries: List[YearlyEntry] = Field(default_factory=list, description="Sorted by count DESC")


class MissingDays(BaseModel):
    """Days without a check-in: the explicit list when short, else only the count."""

    model_config = ConfigDict(frozen=True)

    count: int = Field(ge=0)
    dates: Optional[List[date]] = None

    @property
    def detailed(self) -> bool:
        return self.dates is not None


class ParticipantDetail(BaseModel):
    model_config = ConfigDict(frozen=True)

    actor_id: int
    name: str
    longest_streak: int
    current_streak: int
    year: int
    yearly_count: int
    yearly_ratio: int
    total_count: int
    missing_days: MissingDays
    tenure_days: Optional[int] = None
    tenure_ratio: Optional[int] = None
