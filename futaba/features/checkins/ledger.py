"""
futaba/features/checkins/ledger.py

SQL-backed check-in ledger.

Owns the participants and history tables and the persisted backfill cursors:
- history is append-only, keyed by event_id (the only dedupe mechanism)
- record() inserts a history row and advances the participant's streak in one
  transaction; the insert comes first so the write lock is held before the
  streak is read
- duplicate event ids are an outcome, not an error
"""
from __future__ import annotations

from datetime import datetime, timezone, tzinfo
from typing import Optional

from sqlalchemy import func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from futaba.core.database import get_db_session, get_engine, history, ingestion_cursors, participants
from futaba.core.errors import StorageFailure
from futaba.core.logging import log_event
from futaba.features.checkins.snowflake import event_date
from futaba.features.checkins.streaks import advance
from futaba.models.checkin import InboundEvent, Participant, RecordOutcome, StreakState


class LedgerStore:
    """Persistence for participants, check-in history and cursors."""

    def __init__(self, engine: Optional[Engine] = None, *, tz: tzinfo):
        self.engine = engine or get_engine()
        self.tz = tz

    # Write side -------------------------------------------------------
    def record(self, event: InboundEvent) -> RecordOutcome:
        """Count one validated check-in.

        The history insert runs first so the transaction holds its write lock
        (SQLite RESERVED lock, or the new row on PostgreSQL) before the
        participant's streak is read. The participant row is then read with
        FOR UPDATE where the dialect supports it.

        Returns DUPLICATE when the event id is already in history and
        UNKNOWN_ACTOR (nothing written) for unregistered authors. Any other
        database error rolls the transaction back and raises StorageFailure.
        """
        day = event_date(event.event_id, self.tz)
        try:
            with get_db_session(self.engine) as session:
                try:
                    session.execute(
                        insert(history).values(
                            event_id=event.event_id,
                            actor_id=event.author_id,
                            date=day,
                        )
                    )
                except IntegrityError:
                    session.rollback()
                    # A foreign key violation also lands here for unknown authors
                    if not self._participant_exists(session, event.author_id):
                        return self._unknown_actor(event)
                    log_event(
                        "info",
                        f"Duplicated item - user: {event.author_id}, event_id: {event.event_id}, date: {day}",
                        actor_id=event.author_id,
                        event_id=event.event_id,
                    )
                    return RecordOutcome.DUPLICATE

                row = session.execute(
                    select(
                        participants.c.longest_streak,
                        participants.c.current_streak,
                        participants.c.last_date,
                    )
                    .where(participants.c.actor_id == event.author_id)
                    .with_for_update()
                ).first()
                if row is None:
                    session.rollback()
                    return self._unknown_actor(event)

                state = advance(
                    StreakState(longest=row.longest_streak, current=row.current_streak, last_date=row.last_date),
                    day,
                )
                session.execute(
                    update(participants)
                    .where(participants.c.actor_id == event.author_id)
                    .values(
                        count=participants.c.count + 1,
                        longest_streak=state.longest,
                        current_streak=state.current,
                        last_date=state.last_date,
                        updated_at=datetime.now(timezone.utc),
                    )
                )
        except SQLAlchemyError as exc:
            log_event(
                "error",
                f"Failed to record event {event.event_id}: {exc}",
                actor_id=event.author_id,
                event_id=event.event_id,
                error_code=StorageFailure.code,
            )
            raise StorageFailure(f"Failed to record event {event.event_id}") from exc

        log_event(
            "debug",
            f"Counted {event.event_id} for {event.author_id} on {day} (streak {state.current}/{state.longest})",
            actor_id=event.author_id,
            event_id=event.event_id,
        )
        return RecordOutcome.ACCEPTED

    @staticmethod
    def _participant_exists(session, actor_id: int) -> bool:
        return session.execute(
            select(participants.c.actor_id).where(participants.c.actor_id == actor_id)
        ).first() is not None

    @staticmethod
    def _unknown_actor(event: InboundEvent) -> RecordOutcome:
        log_event(
            "info",
            f"Try to increase counter for unknown user - {event.author_name}({event.author_id})",
            actor_id=event.author_id,
            event_id=event.event_id,
        )
        return RecordOutcome.UNKNOWN_ACTOR

    def upsert_participant(self, actor_id: int, display_name: str) -> None:
        """Insert a participant or refresh its name; counters are left alone."""
        log_event("info", f"Try insert or update name for user {display_name} - id: {actor_id}", actor_id=actor_id)
        now = datetime.now(timezone.utc)
        try:
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(participants.c.actor_id).where(participants.c.actor_id == actor_id)
                ).first()
                if existing:
                    conn.execute(
                        update(participants)
                        .where(participants.c.actor_id == actor_id)
                        .values(name=display_name, updated_at=now)
                    )
                else:
                    conn.execute(insert(participants).values(actor_id=actor_id, name=display_name, updated_at=now))
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to insert user {actor_id}") from exc

    # Read side --------------------------------------------------------
    def get_participant(self, actor_id: int) -> Optional[Participant]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(participants).where(participants.c.actor_id == actor_id)
                ).first()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to query user info {actor_id}") from exc
        if row is None:
            return None
        return Participant(
            actor_id=row.actor_id,
            name=row.name,
            count=row.count,
            current_streak=row.current_streak,
            longest_streak=row.longest_streak,
            last_date=row.last_date,
        )

    def latest_event_id(self) -> Optional[int]:
        """Highest event id in history, or None when history is empty."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(select(func.max(history.c.event_id))).scalar()
        except SQLAlchemyError as exc:
            raise StorageFailure("Failed to read latest event id") from exc

    # Cursor -----------------------------------------------------------
    def load_cursor(self, stream_id: str) -> Optional[int]:
        try:
            with self.engine.connect() as conn:
                return conn.execute(
                    select(ingestion_cursors.c.last_event_id).where(ingestion_cursors.c.stream_id == stream_id)
                ).scalar()
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to load cursor for {stream_id}") from exc

    def save_cursor(self, stream_id: str, event_id: int) -> None:
        now = datetime.now(timezone.utc)
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    update(ingestion_cursors)
                    .where(ingestion_cursors.c.stream_id == stream_id)
                    .values(last_event_id=event_id, updated_at=now)
                )
                if result.rowcount == 0:
                    conn.execute(
                        insert(ingestion_cursors).values(stream_id=stream_id, last_event_id=event_id, updated_at=now)
                    )
        except SQLAlchemyError as exc:
            raise StorageFailure(f"Failed to save cursor for {stream_id}") from exc
        log_event("info", f"Saved cursor {event_id}", stream_id=stream_id)
