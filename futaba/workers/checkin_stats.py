"""Print one check-in statistics query as JSON."""
from __future__ import annotations

import argparse
import json

from futaba.core.config import get_reference_timezone, settings
from futaba.core.database import check_connection, init_engine
from futaba.core.errors import AppError, StorageFailure
from futaba.core.logging import configure_logging, log_event
from futaba.features.checkins.statistics import StatisticsService
from futaba.models.checkin import StreakBasis


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Show check-in statistics.")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("total", help="total ranking")

    streaks = sub.add_parser("streaks", help="streaks ranking")
    streaks.add_argument("--basis", choices=[b.value for b in StreakBasis], default=StreakBasis.CURRENT.value)

    year = sub.add_parser("year", help="yearly count")
    year.add_argument("--year", type=int, default=None, help="default is current year.")

    user = sub.add_parser("user", help="user detail")
    user.add_argument("--actor-id", dest="actor_id", type=int, required=True)
    return parser


def run_query(service: StatisticsService, args: argparse.Namespace):
    if args.command == "total":
        return [entry.model_dump() for entry in service.total_ranking()]
    if args.command == "streaks":
        return [entry.model_dump() for entry in service.streak_ranking(args.basis)]
    if args.command == "year":
        return service.yearly_statistics(args.year).model_dump(mode="json")
    return service.participant_detail(args.actor_id).model_dump(mode="json")


def main() -> int:
    args = build_parser().parse_args()
    configure_logging(settings.ENV)

    try:
        engine = init_engine()
        if not check_connection(engine):
            raise StorageFailure("Database is unreachable")
        service = StatisticsService(
            engine,
            tz=get_reference_timezone(),
            detail_limit=settings.MISSING_DAYS_DETAIL_LIMIT,
        )
        result = run_query(service, args)
    except AppError as exc:
        log_event("error", exc.message, error_code=exc.code)
        return 1

    print(json.dumps(result, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
