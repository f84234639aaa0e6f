"""Live exercise session endpoints."""

from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from rehabright.cv.landmarks import landmarks_from_provider
from rehabright.cv.session_processor import FrameResult, SessionProcessor
from rehabright.database import get_db
from rehabright.models.exercise_session import ExerciseSession
from rehabright.models.session_feedback import SessionFeedback
from rehabright.schemas.session import (
    CalibrationStatus,
    FeedbackOut,
    FrameIn,
    FrameResponse,
    LiveSessionResponse,
    SessionCreate,
    SessionCreated,
    StoredSessionResponse,
)
from rehabright.services.session_manager import (
    LiveSession,
    SessionLimitError,
    SessionManager,
    SessionNotFoundError,
    get_session_manager,
)

router = APIRouter()


def _get_live_session(
    session_id: str, manager: SessionManager, touch: bool = False
) -> LiveSession:
    try:
        if touch:
            return manager.touch(session_id)
        return manager.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )


def _feedback_out(processor: SessionProcessor) -> List[FeedbackOut]:
    return [
        FeedbackOut(
            rep_number=f.rep_number,
            message=f.message,
            type=f.type.value,
            priority=f.priority,
        )
        for f in processor.feedback_log.entries
    ]


def _live_summary(session: LiveSession) -> LiveSessionResponse:
    processor = session.processor
    detector = processor.rep_detector
    board = processor.scoreboard
    return LiveSessionResponse(
        session_id=session.id,
        exercise=processor.exercise.value,
        started_at=session.started_at,
        phase=detector.phase.value,
        rep_count=detector.rep_count,
        average_score=board.average_score,
        last_rep_score=board.last_rep_score,
        average_tempo_ms=detector.average_tempo_ms,
        flags=list(board.flags),
        feedback=_feedback_out(processor),
        calibration=CalibrationStatus(**detector.get_calibration_status()),
    )


def _frame_response(result: FrameResult) -> FrameResponse:
    detection = result.detection
    response = FrameResponse(
        accepted=result.accepted,
        angles=result.angles.to_dict(),
        rep_completed=result.rep_completed,
        feedback=[
            FeedbackOut(
                rep_number=f.rep_number,
                message=f.message,
                type=f.type.value,
                priority=f.priority,
            )
            for f in result.feedback
        ],
    )
    if detection is not None:
        response.phase = detection.phase.value
        response.rep_count = detection.rep_count
        response.confidence = detection.confidence
        response.average_tempo_ms = detection.average_tempo_ms
        response.calibrated = detection.is_calibrated
        response.counting_supported = detection.counting_supported
        response.forced_completion = detection.forced_completion
    if result.evaluation is not None:
        response.score = result.evaluation.score.overall
        response.breakdown = dict(result.evaluation.score.breakdown)
        response.flags = list(result.evaluation.score.flags)
    return response


@router.post("", response_model=SessionCreated, status_code=status.HTTP_201_CREATED)
async def start_session(
    payload: SessionCreate,
    manager: SessionManager = Depends(get_session_manager),
):
    """Start a live session; all analysis state is created fresh."""
    try:
        session = manager.start(payload.exercise, voice_enabled=payload.voice_enabled)
    except SessionLimitError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    return SessionCreated(
        session_id=session.id,
        exercise=session.processor.exercise.value,
        started_at=session.started_at,
    )


@router.post("/{session_id}/frames", response_model=FrameResponse)
async def submit_frame(
    session_id: str,
    frame: FrameIn,
    manager: SessionManager = Depends(get_session_manager),
):
    """Process one pose frame."""
    session = _get_live_session(session_id, manager, touch=True)
    landmarks = landmarks_from_provider([lm.model_dump() for lm in frame.landmarks])

    result = session.processor.process_frame(
        landmarks,
        timestamp_ms=frame.timestamp_ms,
        face_landmark_count=frame.face_landmark_count,
    )
    return _frame_response(result)


@router.post("/{session_id}/reset", response_model=LiveSessionResponse)
async def reset_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
):
    """Start a new recording inside the session: counts, calibration and smoothing cleared."""
    session = _get_live_session(session_id, manager, touch=True)
    session.processor.reset()
    return _live_summary(session)


@router.post("/{session_id}/recalibrate", response_model=LiveSessionResponse)
async def recalibrate_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
):
    """Re-run calibration, keeping the rep count."""
    session = _get_live_session(session_id, manager, touch=True)
    session.processor.recalibrate()
    return _live_summary(session)


@router.get("/{session_id}", response_model=LiveSessionResponse)
async def get_live_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
):
    session = _get_live_session(session_id, manager)
    return _live_summary(session)


@router.post("/{session_id}/end", response_model=StoredSessionResponse)
async def end_session(
    session_id: str,
    manager: SessionManager = Depends(get_session_manager),
    db: AsyncSession = Depends(get_db),
):
    """
    End a live session and store its numeric summary.

    The live session is only removed once the summary is written, so a
    failed write can be retried.
    """
    try:
        session = manager.get(session_id)
    except SessionNotFoundError:
        stored = await db.get(ExerciseSession, session_id)
        if stored is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Session already ended"
            )
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )

    processor = session.processor
    board = processor.scoreboard
    record = ExerciseSession(
        id=session.id,
        exercise=processor.exercise.value,
        started_at=session.started_at,
        ended_at=datetime.now(timezone.utc),
        rep_count=processor.rep_detector.rep_count,
        average_score=board.average_score,
        last_rep_score=board.last_rep_score,
        average_tempo_ms=processor.rep_detector.average_tempo_ms,
    )
    record.flags = board.flags
    record.feedback = [
        SessionFeedback(
            rep_number=f.rep_number,
            message=f.message,
            type=f.type.value,
            priority=f.priority,
            position=i,
        )
        for i, f in enumerate(processor.feedback_log.entries)
    ]
    db.add(record)
    await db.flush()
    await db.commit()

    manager.end(session_id)
    return StoredSessionResponse.model_validate(record)


@router.get("/history/{session_id}", response_model=StoredSessionResponse)
async def get_stored_session(
    session_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Get a finished session summary with its feedback."""
    result = await db.execute(
        select(ExerciseSession)
        .options(selectinload(ExerciseSession.feedback))
        .where(ExerciseSession.id == session_id)
    )
    record = result.scalar_one_or_none()

    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found"
        )

    return StoredSessionResponse.model_validate(record)
