"""
competition_engine/orm/competition.py
Competition, round, participant and round-entry models.

A competition is an ordered list of time-boxed rounds. Participants submit
one post per round; the entry table is the single source of truth for
qualification history and feed visibility.
"""
from sqlalchemy import (
    Column, Integer, String, Boolean, DateTime, Text, ForeignKey,
    UniqueConstraint, CheckConstraint, Index
)

from competition_engine.orm.base import BaseModel


def _iso(value):
    return value.isoformat() if value else None


class Competition(BaseModel):
    """
    Multi-round elimination competition.

    Once completion_reason is set the competition is inactive and no
    further qualification processing touches it.
    """
    __tablename__ = "competitions"

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    completion_reason = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(completion_reason IS NULL) OR (NOT is_active)",
            name="ck_competition_reason_inactive"
        ),
    )

    @property
    def is_terminated(self) -> bool:
        return self.completion_reason is not None

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "is_active": self.is_active,
            "completion_reason": self.completion_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class CompetitionRound(BaseModel):
    """
    Time-boxed phase of a competition.

    [start_date, end_date) is both the submission window and the
    engagement window. likes_to_pass of None or 0 means every entrant
    with a post qualifies.
    """
    __tablename__ = "competition_rounds"

    competition_id = Column(
        Integer,
        ForeignKey("competitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name = Column(String(255), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    likes_to_pass = Column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_round_window_valid"),
        CheckConstraint(
            "(likes_to_pass IS NULL) OR (likes_to_pass >= 0)",
            name="ck_round_likes_to_pass_non_negative"
        ),
        Index("idx_round_competition_start", "competition_id", "start_date"),
    )

    @property
    def threshold(self) -> int:
        return self.likes_to_pass or 0

    def to_dict(self):
        return {
            "id": self.id,
            "competition_id": self.competition_id,
            "name": self.name,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "likes_to_pass": self.likes_to_pass,
        }


class CompetitionParticipant(BaseModel):
    """
    One user's participation in one competition.

    is_disqualified is an administrative, competition-wide flag and is
    distinct from per-round qualification.
    """
    __tablename__ = "competition_participants"

    competition_id = Column(
        Integer,
        ForeignKey("competitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id = Column(Integer, nullable=False, index=True)
    is_disqualified = Column(Boolean, default=False, nullable=False)
    current_round_id = Column(
        Integer,
        ForeignKey("competition_rounds.id", ondelete="SET NULL"),
        nullable=True
    )

    __table_args__ = (
        UniqueConstraint("user_id", "competition_id", name="uq_participant_user_competition"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "competition_id": self.competition_id,
            "user_id": self.user_id,
            "is_disqualified": self.is_disqualified,
            "current_round_id": self.current_round_id,
            "joined_at": _iso(self.created_at),
        }


class CompetitionRoundEntry(BaseModel):
    """
    A participant's record for one round.

    post_id stays NULL until the participant submits. qualified_for_next_round
    stays NULL until the round is processed.
    """
    __tablename__ = "competition_round_entries"

    participant_id = Column(
        Integer,
        ForeignKey("competition_participants.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    round_id = Column(
        Integer,
        ForeignKey("competition_rounds.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    post_id = Column(String(64), nullable=True, index=True)
    qualified_for_next_round = Column(Boolean, nullable=True)
    visible_in_competition_feed = Column(Boolean, default=True, nullable=False)
    visible_in_normal_feed = Column(Boolean, default=True, nullable=False)

    __table_args__ = (
        # One entry per participant per round
        UniqueConstraint("participant_id", "round_id", name="uq_entry_participant_round"),
        Index("idx_entry_round_post", "round_id", "post_id"),
    )

    @property
    def has_post(self) -> bool:
        return self.post_id is not None

    def to_dict(self):
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "round_id": self.round_id,
            "post_id": self.post_id,
            "qualified_for_next_round": self.qualified_for_next_round,
            "visible_in_competition_feed": self.visible_in_competition_feed,
            "visible_in_normal_feed": self.visible_in_normal_feed,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
