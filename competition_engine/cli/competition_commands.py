"""
Competition CLI Commands

Each command opens its own engine, runs one service call and prints the
result as JSON.
"""
import os
import json
import asyncio
from typing import Optional

from competition_engine.config.feature_flags import load_engine_settings
from competition_engine.exceptions import AlreadyTerminated, CompetitionEngineError


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


class CompetitionCommand:
    """Competition CLI command handler."""

    def __init__(self, dry_run: bool = False, database_url: Optional[str] = None):
        self.dry_run = dry_run
        self.database_url = database_url or os.environ.get(
            "DATABASE_URL",
            "sqlite+aiosqlite:///./competitions.db"
        )

    def execute(self, args) -> int:
        """Execute a competition command."""
        handlers = {
            "init-db": lambda: self._init_db(),
            "process-round": lambda: self._process_round(args.round_id),
            "reconcile": lambda: self._reconcile(args.competition_id),
            "evaluate": lambda: self._evaluate(args.competition_id),
            "sweep": lambda: self._sweep(),
            "leaderboard": lambda: self._leaderboard(args.round_id, args.cursor, args.page_size),
            "winners": lambda: self._winners(args.competition_id),
        }
        handler = handlers.get(args.command)
        if handler is None:
            print(f"Error: Unknown command {args.command}")
            return 1

        try:
            return asyncio.run(handler())
        except CompetitionEngineError as e:
            print(f"Error [{e.code}]: {e.message}")
            return 2
        except Exception as e:
            print(f"Error: {e}")
            return 1

    async def _run(self, operation):
        """Open an engine and reader, run operation(session_factory, settings, reader), dispose."""
        from competition_engine.database import build_engine, build_session_factory
        from competition_engine.services.engagement_service import build_engagement_reader

        engine = build_engine(self.database_url)
        session_factory = build_session_factory(engine)
        settings = load_engine_settings()
        reader = build_engagement_reader(settings, session_factory)
        try:
            return await operation(session_factory, settings, reader)
        finally:
            await reader.aclose()
            await engine.dispose()

    async def _init_db(self) -> int:
        from competition_engine.database import build_engine
        from competition_engine.orm.base import Base

        if self.dry_run:
            print(f"[DRY RUN] Would create tables: {', '.join(sorted(Base.metadata.tables))}")
            return 0

        engine = build_engine(self.database_url)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        finally:
            await engine.dispose()
        print("✓ Tables created")
        return 0

    async def _process_round(self, round_id: int) -> int:
        from competition_engine.services.qualification_service import QualificationService
        from competition_engine.services.termination_service import TerminationService

        print(f"=== Process Round {round_id} ===")
        if self.dry_run:
            print(f"[DRY RUN] Would process qualification for round {round_id}")
            return 0

        async def operation(session_factory, settings, reader):
            async with session_factory() as db:
                try:
                    result = await QualificationService(settings, reader).process_round(db, round_id)
                except AlreadyTerminated as e:
                    print(f"No-op: {e.message}")
                    return 0
                _print_json(result.to_dict())
                decision = await TerminationService(settings, reader).evaluate(db, result.competition_id)
                _print_json(decision.to_dict())
            return 0

        return await self._run(operation)

    async def _reconcile(self, competition_id: int) -> int:
        from competition_engine.services.visibility_service import VisibilityService

        print(f"=== Reconcile Competition {competition_id} ===")
        if self.dry_run:
            print(f"[DRY RUN] Would reconcile visibility for competition {competition_id}")
            return 0

        async def operation(session_factory, settings, reader):
            async with session_factory() as db:
                report = await VisibilityService().reconcile_competition(db, competition_id)
            _print_json(report.to_dict())
            return 0

        return await self._run(operation)

    async def _evaluate(self, competition_id: int) -> int:
        from competition_engine.services.termination_service import TerminationService

        print(f"=== Evaluate Competition {competition_id} ===")
        if self.dry_run:
            print(f"[DRY RUN] Would evaluate termination for competition {competition_id}")
            return 0

        async def operation(session_factory, settings, reader):
            async with session_factory() as db:
                decision = await TerminationService(settings, reader).evaluate(db, competition_id)
            _print_json(decision.to_dict())
            return 0

        return await self._run(operation)

    async def _sweep(self) -> int:
        from competition_engine.tasks.sweep import run_sweep_once

        print("=== Sweep ===")

        async def operation(session_factory, settings, reader):
            report = await run_sweep_once(session_factory, settings, reader, dry_run=self.dry_run)
            _print_json(report.to_dict())
            return 1 if report.failures else 0

        return await self._run(operation)

    async def _leaderboard(self, round_id: int, cursor: Optional[int], page_size: Optional[int]) -> int:
        from competition_engine.services.leaderboard_service import LeaderboardService

        async def operation(session_factory, settings, reader):
            async with session_factory() as db:
                page = await LeaderboardService(settings, reader).build_leaderboard(
                    db, round_id, cursor=cursor, page_size=page_size
                )
            print(f"=== Leaderboard: {page.round_name} ===")
            print(f"\n{'Rank':<6} {'Entry':<8} {'User':<8} {'Likes':<8}")
            print("-" * 32)
            for row in page.entries:
                rank = row.rank if row.rank is not None else "-"
                print(f"{rank:<6} {row.entry_id:<8} {row.user_id:<8} {row.likes:<8}")
            if page.next_cursor is not None:
                print(f"\nNext cursor: {page.next_cursor}")
            return 0

        return await self._run(operation)

    async def _winners(self, competition_id: int) -> int:
        from competition_engine.services.leaderboard_service import LeaderboardService

        async def operation(session_factory, settings, reader):
            async with session_factory() as db:
                result = await LeaderboardService(settings, reader).resolve_winners(db, competition_id)
            _print_json(result.to_dict())
            return 0

        return await self._run(operation)
