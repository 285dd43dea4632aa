"""
Catch up on check-ins posted while the bot was offline.

Registers guild members, then pages the monitored channel from the persisted
cursor. SIGINT/SIGTERM stop after the page in flight has been recorded.
"""
from __future__ import annotations

import argparse
import json
import signal
import threading
from typing import Optional

from futaba.core.config import get_reference_timezone, settings, validate_config
from futaba.core.database import check_connection, create_all_tables, init_engine
from futaba.core.errors import AppError, StorageFailure
from futaba.core.logging import configure_logging, log_event
from futaba.features.checkins.backfill import BackfillController
from futaba.features.checkins.discord_source import DiscordSource
from futaba.features.checkins.ledger import LedgerStore
from futaba.features.checkins.membership import sync_members
from futaba.features.checkins.validator import CheckinValidator
from futaba.models.checkin import IngestionState


def run_backfill(
    source,
    ledger: LedgerStore,
    *,
    seed: Optional[int],
    page_size: int,
    sync_membership: bool = True,
    stop: Optional[threading.Event] = None,
    settings_obj=None,
) -> IngestionState:
    cfg = settings_obj or settings
    if sync_membership:
        sync_members(source, ledger, page_size=cfg.MEMBER_PAGE_SIZE)

    controller = BackfillController(
        source,
        ledger,
        CheckinValidator.from_settings(cfg),
        stream_id=str(cfg.CHANNEL_ID),
        seed=seed,
        page_size=page_size,
    )
    return controller.run(stop=stop)


def _install_stop_handlers(stop: threading.Event) -> None:
    def _request_stop(signum, _frame):
        log_event("info", f"begin stop sequence (signal {signum})")
        stop.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)


def main() -> int:
    parser = argparse.ArgumentParser(description="Backfill check-in history from the monitored channel.")
    parser.add_argument("--seed", type=int, default=settings.INIT_MESSAGE_ID, help="Initial message id for the first-ever run.")
    parser.add_argument("--page-size", dest="page_size", type=int, default=settings.BACKFILL_PAGE_SIZE)
    parser.add_argument("--skip-members", dest="sync_membership", action="store_false", help="Do not sync guild members first.")
    args = parser.parse_args()

    configure_logging(settings.ENV)
    stop = threading.Event()
    _install_stop_handlers(stop)

    try:
        validate_config(strict=True)
        engine = init_engine()
        if not check_connection(engine):
            raise StorageFailure("Database is unreachable")
        create_all_tables(engine)
        ledger = LedgerStore(engine, tz=get_reference_timezone())
        source = DiscordSource.from_settings()
        try:
            state = run_backfill(
                source,
                ledger,
                seed=args.seed,
                page_size=args.page_size,
                sync_membership=args.sync_membership,
                stop=stop,
            )
        finally:
            source.close()
    except AppError as exc:
        log_event("error", f"Backfill failed: {exc.message}", error_code=exc.code)
        return 1

    print(json.dumps(state.model_dump(), ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
