"""Exercise session model."""

import uuid
import json
from datetime import datetime
from typing import List, Optional
from sqlalchemy import String, Integer, Float, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rehabright.models.base import Base, TimestampMixin


class ExerciseSession(Base, TimestampMixin):
    """
    Summary of one finished recording session.

    Only numeric results are stored: rep count, scores, tempo and flags.
    No landmarks, images or video ever reach the database.
    """

    __tablename__ = "exercise_sessions"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    exercise: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True
    )

    rep_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    last_rep_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    average_tempo_ms: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    # Flags (stored as JSON string for SQLite compatibility)
    _flags: Mapped[Optional[str]] = mapped_column("flags", Text, nullable=True)

    @property
    def flags(self) -> List[str]:
        if self._flags:
            return json.loads(self._flags)
        return []

    @flags.setter
    def flags(self, value: Optional[List[str]]):
        if value is not None:
            self._flags = json.dumps(list(value))
        else:
            self._flags = None

    # Relationships
    feedback: Mapped[List["SessionFeedback"]] = relationship(
        "SessionFeedback",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="SessionFeedback.position"
    )

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.ended_at is None:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def __repr__(self) -> str:
        return (
            f"<ExerciseSession(id={self.id}, exercise={self.exercise}, "
            f"reps={self.rep_count}, avg={self.average_score:.1f})>"
        )
