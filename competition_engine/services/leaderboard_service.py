"""
Leaderboard Service

Ranks a round's submitted entries by in-window likes and resolves winners.

Design:
- Only entries with a post count; globally disqualified participants are
  excluded
- Order: likes descending, then entry id ascending (stable tie-break)
- Pagination is cursor based; the cursor is the last entry id of the
  previous page
- Ranks are only filled on the first page; pages fetched with a cursor
  carry rank = None instead of numbers that may have shifted
- Winners are the top WINNER_COUNT of the final round, available once the
  competition has a completion reason or every round has ended
"""
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from competition_engine.config.feature_flags import EngineSettings
from competition_engine.exceptions import (
    CompetitionNotEnded,
    InvalidCursor,
    ParticipantNotFound,
)
from competition_engine.orm.competition import (
    CompetitionRound,
    CompetitionParticipant,
    CompetitionRoundEntry,
)
from competition_engine.services.engagement_service import (
    EngagementReader,
    count_likes_for_posts,
)
from competition_engine.services.entry_store import EntryStore
from competition_engine.services.round_clock import (
    all_rounds_ended,
    has_started,
    round_state,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass
class LeaderboardEntry:
    rank: Optional[int]
    entry_id: int
    participant_id: int
    user_id: int
    post_id: str
    likes: int
    qualified_for_next_round: Optional[bool]
    has_qualified: Optional[bool]


@dataclass
class LeaderboardPage:
    round_id: int
    competition_id: int
    round_name: str
    likes_to_pass: Optional[int]
    total_participants: int
    page_size: int
    next_cursor: Optional[int] = None
    entries: List[LeaderboardEntry] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class Winner:
    position: int
    entry_id: int
    participant_id: int
    user_id: int
    post_id: str
    likes: int


@dataclass
class WinnersResult:
    competition_id: int
    round_id: Optional[int]
    completion_reason: Optional[str]
    no_winners: bool = False
    winners: List[Winner] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class LeaderboardService:

    def __init__(self, settings: EngineSettings, reader: EngagementReader):
        self.settings = settings
        self.reader = reader

    # =========================================================================
    # Leaderboard
    # =========================================================================

    async def build_leaderboard(
        self,
        db: AsyncSession,
        round_id: int,
        cursor: Optional[int] = None,
        page_size: Optional[int] = None
    ) -> LeaderboardPage:
        round_obj = await EntryStore.get_round(db, round_id)
        ranked = await self._rank_round(db, round_obj)
        size = self.settings.clamp_page_size(page_size)

        start = 0
        if cursor is not None:
            positions = {row.entry_id: index for index, row in enumerate(ranked)}
            if cursor not in positions:
                raise InvalidCursor(cursor)
            start = positions[cursor] + 1

        page_rows = ranked[start:start + size]
        if cursor is not None:
            for row in page_rows:
                row.rank = None

        has_more = start + size < len(ranked)
        return LeaderboardPage(
            round_id=round_obj.id,
            competition_id=round_obj.competition_id,
            round_name=round_obj.name,
            likes_to_pass=round_obj.likes_to_pass,
            total_participants=len(ranked),
            page_size=size,
            next_cursor=page_rows[-1].entry_id if has_more and page_rows else None,
            entries=page_rows,
        )

    async def _rank_round(self, db: AsyncSession, round_obj: CompetitionRound) -> List[LeaderboardEntry]:
        """Every eligible entry of the round, ordered and ranked 1..N."""
        result = await db.execute(
            select(CompetitionRoundEntry, CompetitionParticipant.user_id)
            .join(
                CompetitionParticipant,
                CompetitionParticipant.id == CompetitionRoundEntry.participant_id
            )
            .where(
                CompetitionRoundEntry.round_id == round_obj.id,
                CompetitionRoundEntry.post_id.is_not(None),
                CompetitionParticipant.is_disqualified == False
            )
            .order_by(CompetitionRoundEntry.id)
        )
        rows = result.all()

        likes_by_post = await count_likes_for_posts(
            self.reader,
            [entry.post_id for entry, _ in rows],
            round_obj.start_date,
            round_obj.end_date,
            timeout_seconds=self.settings.engagement_timeout_seconds,
            max_concurrency=self.settings.engagement_max_concurrency,
        )

        threshold = round_obj.likes_to_pass
        ranked = []
        for entry, user_id in rows:
            likes = likes_by_post.get(entry.post_id, 0)
            ranked.append(LeaderboardEntry(
                rank=None,
                entry_id=entry.id,
                participant_id=entry.participant_id,
                user_id=user_id,
                post_id=entry.post_id,
                likes=likes,
                qualified_for_next_round=entry.qualified_for_next_round,
                has_qualified=(likes >= threshold) if threshold else None,
            ))

        ranked.sort(key=lambda row: (-row.likes, row.entry_id))
        for index, row in enumerate(ranked, start=1):
            row.rank = index
        return ranked

    # =========================================================================
    # Winners
    # =========================================================================

    async def resolve_winners(self, db: AsyncSession, competition_id: int, now=None) -> WinnersResult:
        """
        Top finishers of the final round.

        Raises CompetitionNotEnded while the competition is still running.
        An empty final round yields no_winners=True rather than an error.
        """
        now = now or utcnow()
        competition = await EntryStore.get_competition(db, competition_id)
        rounds = await EntryStore.list_rounds(db, competition_id)

        ended = competition.completion_reason is not None or all_rounds_ended(rounds, now)
        if not ended:
            raise CompetitionNotEnded()

        result = WinnersResult(
            competition_id=competition_id,
            round_id=rounds[-1].id if rounds else None,
            completion_reason=competition.completion_reason,
        )
        if not rounds:
            result.no_winners = True
            return result

        ranked = await self._rank_round(db, rounds[-1])
        for position, row in enumerate(ranked[:self.settings.winner_count], start=1):
            result.winners.append(Winner(
                position=position,
                entry_id=row.entry_id,
                participant_id=row.participant_id,
                user_id=row.user_id,
                post_id=row.post_id,
                likes=row.likes,
            ))
        result.no_winners = not result.winners
        return result

    # =========================================================================
    # Participant progress
    # =========================================================================

    async def participant_progress(
        self,
        db: AsyncSession,
        competition_id: int,
        participant_id: int,
        now=None
    ) -> Dict:
        """Per-round status for one participant."""
        now = now or utcnow()
        competition = await EntryStore.get_competition(db, competition_id)
        participant = await EntryStore.get_participant(db, competition_id, participant_id=participant_id)
        if not participant:
            raise ParticipantNotFound(
                f"Participant with id '{participant_id}' not found in competition {competition_id}"
            )

        rounds = await EntryStore.list_rounds(db, competition_id)
        entries = {
            e.round_id: e for e in await EntryStore.list_participant_entries(db, participant.id)
        }

        progress = []
        for round_obj in rounds:
            entry = entries.get(round_obj.id)
            likes = None
            if entry and entry.post_id and has_started(round_obj, now):
                counts = await count_likes_for_posts(
                    self.reader,
                    [entry.post_id],
                    round_obj.start_date,
                    round_obj.end_date,
                    timeout_seconds=self.settings.engagement_timeout_seconds,
                )
                likes = counts.get(entry.post_id, 0)

            progress.append({
                "round_id": round_obj.id,
                "round_name": round_obj.name,
                "state": round_state(round_obj, now).value,
                "likes_to_pass": round_obj.likes_to_pass,
                "has_entry": entry is not None,
                "has_post": bool(entry and entry.post_id),
                "post_id": entry.post_id if entry else None,
                "likes": likes,
                "qualified_for_next_round": entry.qualified_for_next_round if entry else None,
                "visible_in_competition_feed": entry.visible_in_competition_feed if entry else None,
                "visible_in_normal_feed": entry.visible_in_normal_feed if entry else None,
            })

        winner_position = None
        if competition.completion_reason is not None or all_rounds_ended(rounds, now):
            winners = await self.resolve_winners(db, competition_id, now)
            for winner in winners.winners:
                if winner.participant_id == participant.id:
                    winner_position = winner.position

        return {
            "competition_id": competition.id,
            "participant": participant.to_dict(),
            "completion_reason": competition.completion_reason,
            "is_active": competition.is_active,
            "rounds": progress,
            "winner_position": winner_position,
        }
