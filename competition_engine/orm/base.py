"""
competition_engine/orm/base.py
Base model for all ORM models
"""
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import declarative_base

from competition_engine.core.time import utcnow

Base = declarative_base()


class BaseModel(Base):
    """
    Abstract base model with common fields.
    Competition tables inherit from this.
    """
    __abstract__ = True
    
    id = Column(
        Integer,
        primary_key=True,
        autoincrement=True,
        index=True
    )
    
    created_at = Column(
        DateTime,
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created"
    )
    
    updated_at = Column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated"
    )
