"""Assessment schemas: numeric features in, coaching tips out."""

from typing import List
from pydantic import BaseModel, Field, field_validator

from rehabright.cv.exercise_rules import ExerciseType


class AnglesIn(BaseModel):
    trunk_angle: float = Field(0.0, ge=0.0, le=180.0)
    hip_angle: float = Field(0.0, ge=0.0, le=180.0)
    knee_angle: float = Field(0.0, ge=0.0, le=180.0)
    shoulder_angle: float = Field(0.0, ge=0.0, le=180.0)
    elbow_angle: float = Field(0.0, ge=0.0, le=180.0)
    ankle_angle: float = Field(0.0, ge=0.0, le=180.0)


class AssessmentRequest(BaseModel):
    """Only numeric features are accepted."""
    exercise: str
    angles: AnglesIn
    flags: List[str] = Field(default_factory=list)
    score: int = Field(..., ge=0, le=100)
    rep_count: int = Field(..., ge=0)

    @field_validator("exercise")
    @classmethod
    def validate_exercise(cls, v: str) -> str:
        return ExerciseType.parse(v).value

    class Config:
        extra = "forbid"


class AssessmentResponse(BaseModel):
    summary: str
    tips: List[str]
