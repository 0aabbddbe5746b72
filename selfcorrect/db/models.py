"""
Database Models for Self-Correction Learning
============================================

SQLAlchemy models backing the learning stores. Each store (patterns, errors)
is one JSON document, loaded whole and rewritten whole on every mutation.
"""

from datetime import datetime
from typing import Any, Dict

from sqlalchemy import String, Integer, DateTime, JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


class LearningDocument(Base):
    """A named learning store persisted as a single JSON mapping."""
    __tablename__ = "learning_documents"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)  # "patterns", "errors"
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON)
    revision: Mapped[int] = mapped_column(Integer, default=0)  # bumped on every rewrite
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
