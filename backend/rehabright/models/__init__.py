"""Database models."""

from rehabright.models.base import Base
from rehabright.models.exercise_session import ExerciseSession
from rehabright.models.session_feedback import SessionFeedback

__all__ = [
    "Base",
    "ExerciseSession",
    "SessionFeedback",
]
