"""
Session coaching summary.

Builds three short coaching tips from NUMERIC features only: exercise,
six joint angles, flags, score and rep count. No landmark, image or video
data is accepted here.

When text generation is enabled, the features are sent to OpenAI or
Gemini. Privacy mode suppresses the network call entirely. Any provider
failure falls back to the deterministic template.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import logging
import requests

from rehabright.config import Settings, get_settings
from rehabright.cv.exercise_rules import ExerciseType, KneeValgusCheck, SwingingCheck

logger = logging.getLogger(__name__)


GENERIC_TIPS = [
    "Focus on maintaining proper form",
    "Keep movements controlled",
    "Practice regularly for improvement",
]


class ProviderError(Exception):
    """Text-generation provider could not produce a usable answer."""


@dataclass
class AssessmentFeatures:
    exercise: str
    angles: Dict[str, float]
    score: int
    rep_count: int
    flags: List[str] = field(default_factory=list)


@dataclass
class Assessment:
    summary: str
    tips: List[str]
    source: str = "template"  # "template", "openai" or "gemini"


def build_prompt(features: AssessmentFeatures) -> str:
    angles = features.angles
    lines = [
        "Physiotherapy assistant. Based on the following numeric features from a "
        f"{features.exercise} exercise session, provide 3 concise coaching tips "
        "(total <80 words). No diagnosis, only actionable advice.",
        "",
        f"Exercise: {features.exercise}",
        f"Form Score: {features.score}/100",
        f"Rep Count: {features.rep_count}",
        "Joint Angles:",
        f"- Trunk: {angles.get('trunk_angle', 0)}°",
        f"- Hip: {angles.get('hip_angle', 0)}°",
        f"- Knee: {angles.get('knee_angle', 0)}°",
        f"- Shoulder: {angles.get('shoulder_angle', 0)}°",
        f"- Elbow: {angles.get('elbow_angle', 0)}°",
        f"- Ankle: {angles.get('ankle_angle', 0)}°",
        "",
        f"Flags: {', '.join(features.flags) or 'None'}",
        "",
        "Provide 3 specific, actionable tips based on this data:",
    ]
    return "\n".join(lines)


def parse_tips(content: str) -> List[str]:
    tips = [line.strip() for line in content.split("\n") if line.strip()][:3]
    return tips or list(GENERIC_TIPS)


def template_assessment(features: AssessmentFeatures) -> Assessment:
    """Deterministic tips from score band, exercise rules and flags."""
    score = features.score
    angles = features.angles

    if score < 60:
        tips = [
            "Focus on basic form before increasing intensity",
            "Practice with slower, controlled movements",
            "Consider reducing range of motion initially",
        ]
    elif score < 80:
        tips = [
            "Good progress! Focus on consistency",
            "Pay attention to breathing patterns",
            "Gradually increase difficulty",
        ]
    else:
        tips = [
            "Excellent form! Maintain this quality",
            "Consider adding variations or resistance",
            "Great job on technique consistency",
        ]

    try:
        exercise = ExerciseType.parse(features.exercise)
    except ValueError:
        exercise = None

    if exercise is ExerciseType.SQUAT:
        if angles.get("hip_angle", 0) < 60:
            tips[0] = "Go deeper in your squat for better range of motion"
        if angles.get("trunk_angle", 0) > 20:
            tips[1] = "Keep your chest up and back straight"
    elif exercise is ExerciseType.PULLUP:
        if angles.get("shoulder_angle", 0) > 30:
            tips[0] = "Engage your shoulders and keep them stable"
        if angles.get("elbow_angle", 0) > 120:
            tips[1] = "Pull with your back muscles, not just arms"

    if KneeValgusCheck.flag in features.flags:
        tips[2] = "Push your knees out to align with your toes"
    if SwingingCheck.flag in features.flags:
        tips[2] = "Control the movement and avoid momentum"

    return Assessment(
        summary=(
            f"Template coaching tips for your {features.exercise} session "
            f"(Score: {score}/100, Reps: {features.rep_count})"
        ),
        tips=tips[:3],
    )


class AssessmentService:
    """Chooses between the template and a text-generation provider."""

    def __init__(self, settings: Optional[Settings] = None, http: Optional[requests.Session] = None):
        self.settings = settings or get_settings()
        self.http = http or requests.Session()

    def assess(self, features: AssessmentFeatures, privacy_mode: bool = False) -> Assessment:
        if privacy_mode:
            logger.info("Privacy mode on - skipping text-generation call")
            return template_assessment(features)

        if not self.settings.enable_ai:
            return template_assessment(features)

        provider = self.settings.ai_provider.lower()
        try:
            if provider == "openai":
                content = self._call_openai(build_prompt(features))
            elif provider == "gemini":
                content = self._call_gemini(build_prompt(features))
            else:
                return template_assessment(features)
        except (ProviderError, requests.RequestException) as e:
            logger.error(f"{provider} assessment failed, using template: {e}")
            return template_assessment(features)

        return Assessment(
            summary=f"AI-generated coaching tips for your {features.exercise} session.",
            tips=parse_tips(content),
            source=provider,
        )

    def _call_openai(self, prompt: str) -> str:
        settings = self.settings
        if not settings.openai_api_key:
            raise ProviderError("OpenAI API key not configured")

        response = self.http.post(
            settings.openai_url,
            headers={
                "Authorization": f"Bearer {settings.openai_api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": settings.openai_model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": settings.ai_max_tokens,
                "temperature": settings.ai_temperature,
            },
            timeout=settings.ai_timeout_seconds,
        )
        if not response.ok:
            raise ProviderError(f"OpenAI API error: {response.status_code}")

        try:
            data = response.json()
            return data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Malformed OpenAI response: {e}") from e

    def _call_gemini(self, prompt: str) -> str:
        settings = self.settings
        if not settings.gemini_api_key:
            raise ProviderError("Gemini API key not configured")

        response = self.http.post(
            f"{settings.gemini_url}/{settings.gemini_model}:generateContent",
            params={"key": settings.gemini_api_key},
            headers={"Content-Type": "application/json"},
            json={
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "maxOutputTokens": settings.ai_max_tokens,
                    "temperature": settings.ai_temperature,
                },
            },
            timeout=settings.ai_timeout_seconds,
        )
        if not response.ok:
            raise ProviderError(f"Gemini API error: {response.status_code}")

        try:
            data = response.json()
            return data["candidates"][0]["content"]["parts"][0]["text"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(f"Malformed Gemini response: {e}") from e
