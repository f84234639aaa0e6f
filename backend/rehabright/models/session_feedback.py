"""Session feedback model."""

import uuid
from sqlalchemy import String, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rehabright.models.base import Base, TimestampMixin


class SessionFeedback(Base, TimestampMixin):
    """
    One coaching line attached to a rep.

    A session stores each (message, rep_number) pair at most once.
    """

    __tablename__ = "session_feedback"
    __table_args__ = (
        UniqueConstraint("session_id", "message", "rep_number", name="uq_feedback_message_rep"),
    )

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid.uuid4())
    )
    session_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("exercise_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    rep_number: Mapped[int] = mapped_column(Integer, nullable=False)
    message: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)  # info / warning / error
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)  # Insertion order

    session: Mapped["ExerciseSession"] = relationship("ExerciseSession", back_populates="feedback")

    def __repr__(self) -> str:
        return f"<SessionFeedback(rep={self.rep_number}, type={self.type}, message={self.message!r})>"
