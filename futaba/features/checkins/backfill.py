"""
futaba/features/checkins/backfill.py

Resumable catch-up ingestion of a monitored stream.

A run pages through the source strictly after the cursor, oldest first, and
feeds every valid check-in to the ledger. The cursor moves to the largest id of
each page, valid or not, and is persisted only once the whole page has been
recorded, so a failure mid-page makes the next run repeat that page. Repeats are
harmless because LedgerStore.record is idempotent on event id.
"""
from __future__ import annotations

import threading
from typing import Callable, List, Optional, Protocol

from futaba.core.errors import AppError, ConfigurationError, SourceFailure
from futaba.core.logging import bind_run_id, log_event
from futaba.features.checkins.ledger import LedgerStore
from futaba.models.checkin import InboundEvent, IngestionState, RecordOutcome

MESSAGES_LIMIT = 100

EventCallback = Callable[[InboundEvent], None]


class EventSource(Protocol):
    def list_events_after(self, cursor: int, limit: int) -> List[InboundEvent]:
        """Up to ``limit`` events with id > cursor, in any order."""
        ...

    def current_stream_head(self) -> Optional[int]:
        """Id of the most recent event, None for an empty stream."""
        ...

    def subscribe(self, callback: EventCallback) -> None:
        ...


class BackfillController:
    """Drives paged retrieval for one stream from its cursor up to the head."""

    def __init__(
        self,
        source: EventSource,
        ledger: LedgerStore,
        validator: Callable[[InboundEvent], bool],
        *,
        stream_id: str,
        seed: Optional[int] = None,
        page_size: int = MESSAGES_LIMIT,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.source = source
        self.ledger = ledger
        self.validator = validator
        self.stream_id = stream_id
        self.seed = seed
        self.page_size = page_size

    def initial_state(self) -> IngestionState:
        """Resolve the starting cursor.

        The largest of the persisted cursor, the newest history row and the
        seed. With none of the three there is nowhere to start from.
        """
        candidates = [
            c
            for c in (self.ledger.load_cursor(self.stream_id), self.ledger.latest_event_id(), self.seed)
            if c is not None
        ]
        if not candidates:
            raise ConfigurationError(
                f"No cursor or history for stream {self.stream_id}; an initial event id (INIT_MESSAGE_ID) is required"
            )
        return IngestionState(stream_id=self.stream_id, cursor=max(candidates))

    def run(self, state: Optional[IngestionState] = None, stop: Optional[threading.Event] = None) -> IngestionState:
        """Page until the source is exhausted, the head is reached, or ``stop`` is set.

        Returns the updated state. A stop request is honoured between pages:
        the page in flight is fully applied and its cursor persisted first.
        """
        bind_run_id()
        state = state or self.initial_state()
        if state.cursor is None:
            state = state.model_copy(update={"cursor": self.initial_state().cursor})

        log_event("info", "try retrieve missing message", stream_id=self.stream_id)
        target = self._call_source(self.source.current_stream_head)
        if target is None:
            log_event("info", "stream has no messages", stream_id=self.stream_id)
            return state
        log_event("info", f"current last message id is {target}", stream_id=self.stream_id)

        while state.cursor < target:
            if stop is not None and stop.is_set():
                log_event("info", f"stop requested, cursor held at {state.cursor}", stream_id=self.stream_id)
                return state.model_copy(update={"stopped": True})

            log_event("info", f"get history after {state.cursor}", stream_id=self.stream_id)
            page = self._call_source(self.source.list_events_after, state.cursor, self.page_size)
            if not page:
                break
            if max(event.event_id for event in page) <= state.cursor:
                raise SourceFailure(f"Source returned no events after {state.cursor} for stream {self.stream_id}")

            state = self.process_page(state, page)
            self.ledger.save_cursor(self.stream_id, state.cursor)

            if len(page) < self.page_size:
                break

        log_event("info", f"last message id is {target}, cursor at {state.cursor}", stream_id=self.stream_id)
        return state

    def process_page(self, state: IngestionState, page: List[InboundEvent]) -> IngestionState:
        """Apply one page in id order and return the state with the cursor at its max id.

        StorageFailure propagates before the state is returned, leaving the
        caller's cursor where it was.
        """
        counts = {"accepted": 0, "duplicates": 0, "unknown_actors": 0, "rejected": 0}
        most_new_id = state.cursor or 0
        for event in sorted(page, key=lambda e: e.event_id):
            most_new_id = max(most_new_id, event.event_id)
            if not self.validator(event):
                counts["rejected"] += 1
                continue
            outcome = self.ledger.record(event)
            if outcome is RecordOutcome.ACCEPTED:
                counts["accepted"] += 1
            elif outcome is RecordOutcome.DUPLICATE:
                counts["duplicates"] += 1
            else:
                counts["unknown_actors"] += 1

        return state.model_copy(
            update={
                "cursor": most_new_id,
                "pages": state.pages + 1,
                "events_seen": state.events_seen + len(page),
                "accepted": state.accepted + counts["accepted"],
                "duplicates": state.duplicates + counts["duplicates"],
                "unknown_actors": state.unknown_actors + counts["unknown_actors"],
                "rejected": state.rejected + counts["rejected"],
            }
        )

    def _call_source(self, fn, *args):
        try:
            return fn(*args)
        except AppError:
            raise
        except Exception as exc:
            log_event("error", f"Event source call failed: {exc}", stream_id=self.stream_id, error_code=SourceFailure.code)
            raise SourceFailure(f"Event source call failed for stream {self.stream_id}") from exc


class LiveIngestor:
    """Single-event path for messages pushed by the source while connected.

    Never writes the persisted cursor; only a completed backfill page does.
    """

    def __init__(
        self,
        source,
        ledger: LedgerStore,
        validator: Callable[[InboundEvent], bool],
        *,
        stream_id: Optional[int] = None,
        delete_invalid: bool = False,
    ):
        self.source = source
        self.ledger = ledger
        self.validator = validator
        self.stream_id = stream_id
        self.delete_invalid = delete_invalid

    def handle(self, event: InboundEvent) -> Optional[RecordOutcome]:
        if self.stream_id is not None and event.stream_id is not None and event.stream_id != self.stream_id:
            return None

        if not self.validator(event):
            if self.delete_invalid:
                log_event("info", f"Remove non check-in message {event.event_id}", actor_id=event.author_id, event_id=event.event_id)
                self.source.delete_event(event.event_id)
            return None

        return self.ledger.record(event)

    def subscribe(self) -> None:
        self.source.subscribe(self.handle)
