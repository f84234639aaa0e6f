"""Exercise session schemas."""

from datetime import datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field, field_validator

from rehabright.cv.exercise_rules import ExerciseType


class SessionCreate(BaseModel):
    """Schema for starting a live session."""
    exercise: str = Field(..., description="Exercise: squat or pullup")
    voice_enabled: bool = False

    @field_validator("exercise")
    @classmethod
    def validate_exercise(cls, v: str) -> str:
        return ExerciseType.parse(v).value


class SessionCreated(BaseModel):
    session_id: str
    exercise: str
    started_at: datetime


class LandmarkIn(BaseModel):
    """One provider landmark, normalized image coordinates."""
    x: float
    y: float
    z: float = 0.0
    visibility: Optional[float] = Field(None, ge=0.0, le=1.0)


class FrameIn(BaseModel):
    """One provider frame. Numeric landmarks only, never image data."""
    landmarks: List[LandmarkIn] = Field(default_factory=list, max_length=33)
    timestamp_ms: Optional[float] = None
    face_landmark_count: int = Field(0, ge=0)


class FeedbackOut(BaseModel):
    rep_number: int
    message: str
    type: str
    priority: int

    class Config:
        from_attributes = True


class FrameResponse(BaseModel):
    accepted: bool
    angles: Dict[str, float]
    phase: Optional[str] = None
    rep_count: int = 0
    confidence: float = 0.0
    average_tempo_ms: float = 0.0
    calibrated: bool = False
    counting_supported: bool = True
    rep_completed: bool = False
    forced_completion: bool = False
    score: Optional[int] = None
    breakdown: Dict[str, float] = Field(default_factory=dict)
    flags: List[str] = Field(default_factory=list)
    feedback: List[FeedbackOut] = Field(default_factory=list)


class CalibrationStatus(BaseModel):
    is_calibrated: bool
    calibration_frames: int
    standing_angle: float
    standing_secondary_angle: float
    depth_angle: float
    depth_observed: bool
    standing_threshold: float
    depth_threshold: float
    mid_threshold: float
    counting_supported: bool


class LiveSessionResponse(BaseModel):
    session_id: str
    exercise: str
    started_at: datetime
    phase: str
    rep_count: int
    average_score: float
    last_rep_score: int
    average_tempo_ms: float
    flags: List[str]
    feedback: List[FeedbackOut]
    calibration: CalibrationStatus


class StoredSessionResponse(BaseModel):
    """Schema for a persisted session summary."""
    id: str
    exercise: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    rep_count: int
    average_score: float
    last_rep_score: int
    average_tempo_ms: float
    flags: List[str]
    feedback: List[FeedbackOut]

    class Config:
        from_attributes = True
