"""
competition_engine/orm/engagement.py
Like events recorded against posts.

The wider application owns posts and likes; this table is the local copy
the engine counts from when no engagement service URL is configured.
"""
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint, Index

from competition_engine.core.time import utcnow
from competition_engine.orm.base import Base


class PostLike(Base):
    """A single like event. One like per user per post."""
    __tablename__ = "post_likes"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    post_id = Column(String(64), nullable=False)
    user_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("post_id", "user_id", name="uq_post_like_user"),
        Index("idx_post_like_post_created", "post_id", "created_at"),
    )
