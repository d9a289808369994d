#!/usr/bin/env python3
"""
Main entry point for Swipe Insights.

Provides a command-line interface for ingesting dating-app exports into
insights.db and reporting on what is stored.
"""
from typing import List, Optional
import argparse
import logging
import os
import sys

from swipe_insights.analysis import (
    get_conversation_lengths,
    get_database_summary,
    get_profile_meta,
    get_usage_series,
)
from swipe_insights.config import Config, get_config
from swipe_insights.database import InsightsDatabase
from swipe_insights.ingest.errors import ProfileNotFoundError
from swipe_insights.ingest.pipeline import (
    get_ingest_status,
    recompute_meta,
    reset_profile_data,
    run_ingest,
)
from swipe_insights.ingest.validation import validate_insights_db
from swipe_insights.logger_config import get_log_level, setup_logging
from swipe_insights.utils import Colors, format_count, format_duration, format_rate

logger = logging.getLogger(__name__)


def print_section(title: str) -> None:
    """Print a formatted section title."""
    print(f"\n{Colors.BOLD}{Colors.HEADER}{'=' * 60}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.HEADER}{title}{Colors.ENDC}")
    print(f"{Colors.BOLD}{Colors.HEADER}{'=' * 60}{Colors.ENDC}\n")


def _parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ingest and analyze dating-app data exports.")
    parser.add_argument(
        "--db-path",
        default=None,
        help="Path to insights.db (defaults to $SWIPE_INSIGHTS_DB_PATH or ~/.swipe_insights/insights.db).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest one export (URL or file).")
    ingest.add_argument("source", help="http(s) URL or local path of the export JSON.")
    ingest.add_argument("--platform", required=True, choices=["tinder", "hinge"])
    ingest.add_argument("--profile-id", required=True, help="External account id of the export.")
    ingest.add_argument("--user-id", default=None, help="Owning user account.")
    ingest.add_argument(
        "--absorb-from",
        default=None,
        help="Older external id of the same person to merge into this one.",
    )
    ingest.add_argument("--country", default=None, help="Country code override.")
    ingest.add_argument("--timezone", default=None, help="Timezone of the user.")

    subparsers.add_parser("status", help="Show schema state and row counts.")
    subparsers.add_parser("validate", help="Run integrity checks.")

    reset = subparsers.add_parser("reset", help="Delete a profile and all of its rows.")
    reset.add_argument("profile_id")

    meta = subparsers.add_parser("meta", help="Show a profile's statistics snapshot.")
    meta.add_argument("profile_id")
    meta.add_argument("--period", default="all-time", help="all-time, last-N-days, YYYY or YYYY-Qn.")

    recompute = subparsers.add_parser("recompute", help="Rebuild a profile's stored snapshots.")
    recompute.add_argument("profile_id")

    chart = subparsers.add_parser("chart", help="Write a profile's activity chart as HTML.")
    chart.add_argument("profile_id")
    chart.add_argument("--output", required=True, help="HTML file to write.")

    serve = subparsers.add_parser("serve", help="Run the read-only API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def _cmd_ingest(args: argparse.Namespace, config: Config) -> int:
    config.ensure_analysis_dir()
    result = run_ingest(
        source=args.source,
        platform=args.platform,
        profile_id=args.profile_id,
        user_id=args.user_id,
        analysis_db_path=config.analysis_db_path,
        absorb_from=args.absorb_from,
        country=args.country or config.default_country,
        timezone_name=args.timezone or config.default_timezone,
        timeout=config.fetch_timeout_seconds,
    )
    color = Colors.OKGREEN if result.success else Colors.FAIL
    print(f"{color}{result}{Colors.ENDC}")
    return 0 if result.success else 1


def _cmd_status(config: Config) -> int:
    status = get_ingest_status(config.analysis_db_path)
    print_section("Ingestion Status")
    if not status["exists"]:
        print(f"{Colors.WARNING}No database at {config.analysis_db_path_str}{Colors.ENDC}")
        return 1

    print(f"Schema valid: {status['schema_valid']}")
    for key, value in status.items():
        if key.endswith("_count"):
            print(f"  {key[:-6]:20s}: {format_count(value):>10}")
    print(f"Last ingest: {status.get('last_ingest_at') or '-'}")
    print(f"Schema version: {status.get('schema_version') or '-'}")

    with InsightsDatabase(config) as db:
        summary = get_database_summary(db)
    print(f"Tables: {summary['table_count']}")
    return 0


def _cmd_meta(args: argparse.Namespace, config: Config) -> int:
    with InsightsDatabase(config) as db:
        snapshot = get_profile_meta(db, args.profile_id, args.period)
    if snapshot is None:
        print(f"{Colors.FAIL}Profile not found: {args.profile_id}{Colors.ENDC}")
        return 1

    source = "stored" if snapshot["stored"] else "computed"
    print_section(f"{args.profile_id} - {args.period} ({source})")
    print(f"Window: {snapshot['from_date']} .. {snapshot['to_date']} ({snapshot['days_in_period']} days)")
    print(f"Days active: {snapshot['days_active']}")
    print(f"Likes / passes: {snapshot['swipe_likes_total']:,} / {snapshot['swipe_passes_total']:,}")
    print(f"Like rate: {format_rate(snapshot['like_rate'])}")
    print(f"Match rate: {format_rate(snapshot['match_rate'])}")
    print(f"Swipes per swiping day: {snapshot['swipes_per_day']:.1f}")
    print(
        f"Conversations: {snapshot['conversation_count']} "
        f"({snapshot['conversations_with_messages']} with messages, {snapshot['ghosted_count']} ghosted)"
    )
    print(f"Typical response time: {format_duration(snapshot['average_response_time_seconds'])}")
    print(f"Mean response time: {format_duration(snapshot['mean_response_time_seconds'])}")
    print(f"Longest conversation: {snapshot['longest_conversation_days'] or 0} days")
    return 0


def _cmd_chart(args: argparse.Namespace, config: Config) -> int:
    from swipe_insights.visualization import plot_profile_dashboard

    with InsightsDatabase(config) as db:
        series = get_usage_series(db, args.profile_id)
        lengths = get_conversation_lengths(db, args.profile_id)
    plot_profile_dashboard(series, lengths, title=args.profile_id, output_file=args.output)
    print(f"{Colors.OKGREEN}Chart written to {args.output}{Colors.ENDC}")
    return 0


def _cmd_serve(args: argparse.Namespace, config: Config) -> int:
    import uvicorn

    os.environ["SWIPE_INSIGHTS_DB_PATH"] = config.analysis_db_path_str
    uvicorn.run("swipe_insights.api:app", host=args.host, port=args.port)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main function."""
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)

    config = get_config(analysis_db_path=args.db_path)
    setup_logging(level=get_log_level(), log_file=config.log_file)

    if args.command == "ingest":
        return _cmd_ingest(args, config)
    if args.command == "serve":
        return _cmd_serve(args, config)

    if not config.validate():
        print(f"{Colors.FAIL}Error: Database file not found or not readable.{Colors.ENDC}")
        print(f"  {config.analysis_db_path_str}")
        return 1

    try:
        if args.command == "status":
            return _cmd_status(config)
        if args.command == "validate":
            result = validate_insights_db(config.analysis_db_path)
            print(result)
            return 0 if result.passed else 1
        if args.command == "reset":
            deleted = reset_profile_data(config.analysis_db_path, args.profile_id)
            print(f"{Colors.OKGREEN}Deleted {sum(deleted.values())} rows: {deleted}{Colors.ENDC}")
            return 0
        if args.command == "meta":
            return _cmd_meta(args, config)
        if args.command == "recompute":
            snapshots = recompute_meta(config.analysis_db_path, args.profile_id)
            print(f"{Colors.OKGREEN}Recomputed {len(snapshots)} snapshots{Colors.ENDC}")
            return 0
        if args.command == "chart":
            return _cmd_chart(args, config)
    except ProfileNotFoundError as e:
        print(f"{Colors.FAIL}Error: {e}{Colors.ENDC}")
        return 1
    except Exception as e:
        print(f"{Colors.FAIL}Error: {e}{Colors.ENDC}")
        logging.exception("Error during execution")
        return 1

    return 1


if __name__ == '__main__':
    sys.exit(main())
