#!/usr/bin/env python3
"""
Competition Engine CLI

Usage:
    python -m competition_engine.cli <command> [options]

Commands:
    init-db        Create missing tables
    process-round  Run qualification for a closed round
    reconcile      Recompute feed visibility for a competition
    evaluate       Evaluate early termination for a competition
    sweep          Run one maintenance sweep over active competitions
    leaderboard    Print a round leaderboard
    winners        Print the winners of an ended competition

Environment:
    DATABASE_URL             Async SQLAlchemy URL
    ENGAGEMENT_SERVICE_URL   Engagement service base URL (optional)
    LOG_LEVEL                DEBUG|INFO|WARNING|ERROR
"""
import sys
import argparse
import logging
from typing import Optional

from competition_engine import __version__
from competition_engine.cli.competition_commands import CompetitionCommand


def setup_logging(level: str = "INFO") -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="competitions",
        description="Multi-round competition engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s process-round --round-id 12
  %(prog)s reconcile --competition-id 3
  %(prog)s --dry-run sweep
  %(prog)s leaderboard --round-id 12 --page-size 10
        """
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without executing"
    )

    parser.add_argument(
        "--database-url",
        help="Override DATABASE_URL"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("init-db", help="Create missing tables")

    process_parser = subparsers.add_parser("process-round", help="Run qualification for a closed round")
    process_parser.add_argument("--round-id", "-r", type=int, required=True, help="Round ID")

    reconcile_parser = subparsers.add_parser("reconcile", help="Recompute feed visibility")
    reconcile_parser.add_argument("--competition-id", "-c", type=int, required=True, help="Competition ID")

    evaluate_parser = subparsers.add_parser("evaluate", help="Evaluate early termination")
    evaluate_parser.add_argument("--competition-id", "-c", type=int, required=True, help="Competition ID")

    subparsers.add_parser("sweep", help="Run one maintenance sweep")

    leaderboard_parser = subparsers.add_parser("leaderboard", help="Print a round leaderboard")
    leaderboard_parser.add_argument("--round-id", "-r", type=int, required=True, help="Round ID")
    leaderboard_parser.add_argument("--cursor", type=int, help="Last entry id of the previous page")
    leaderboard_parser.add_argument("--page-size", type=int, help="Entries per page")

    winners_parser = subparsers.add_parser("winners", help="Print competition winners")
    winners_parser.add_argument("--competition-id", "-c", type=int, required=True, help="Competition ID")

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if not parsed.command:
        parser.print_help()
        return 1

    setup_logging(parsed.log_level)

    handler = CompetitionCommand(dry_run=parsed.dry_run, database_url=parsed.database_url)
    return handler.execute(parsed)


if __name__ == "__main__":
    sys.exit(main())
