"""Session summary endpoint."""

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool

from rehabright.schemas.assessment import AssessmentRequest, AssessmentResponse
from rehabright.services.assessment import AssessmentFeatures, AssessmentService

router = APIRouter()


def get_assessment_service() -> AssessmentService:
    return AssessmentService()


@router.post("", response_model=AssessmentResponse)
async def assess(
    payload: AssessmentRequest,
    privacy_mode: bool = Query(False, description="Never call a text-generation provider"),
    service: AssessmentService = Depends(get_assessment_service),
):
    """
    Coaching tips from numeric session features.

    Provider failures fall back to template tips; this endpoint never
    fails because a provider did.
    """
    features = AssessmentFeatures(
        exercise=payload.exercise,
        angles=payload.angles.model_dump(),
        score=payload.score,
        rep_count=payload.rep_count,
        flags=list(payload.flags),
    )
    assessment = await run_in_threadpool(service.assess, features, privacy_mode)
    return AssessmentResponse(summary=assessment.summary, tips=assessment.tips)
