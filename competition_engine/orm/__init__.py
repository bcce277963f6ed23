from .base import Base

# Competition state
from .competition import (
    Competition,
    CompetitionRound,
    CompetitionParticipant,
    CompetitionRoundEntry,
)

# Engagement
from .engagement import PostLike

__all__ = [
    "Base",
    "Competition",
    "CompetitionRound",
    "CompetitionParticipant",
    "CompetitionRoundEntry",
    "PostLike",
]
