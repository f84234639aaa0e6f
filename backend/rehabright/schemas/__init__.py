"""Pydantic schemas for API request/response models."""

from rehabright.schemas.session import (
    SessionCreate,
    SessionCreated,
    LandmarkIn,
    FrameIn,
    FrameResponse,
    FeedbackOut,
    LiveSessionResponse,
    StoredSessionResponse,
)
from rehabright.schemas.assessment import (
    AnglesIn,
    AssessmentRequest,
    AssessmentResponse,
)

__all__ = [
    "SessionCreate",
    "SessionCreated",
    "LandmarkIn",
    "FrameIn",
    "FrameResponse",
    "FeedbackOut",
    "LiveSessionResponse",
    "StoredSessionResponse",
    "AnglesIn",
    "AssessmentRequest",
    "AssessmentResponse",
]
