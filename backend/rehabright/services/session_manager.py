"""
In-memory registry of live recording sessions.

Each live session owns one SessionProcessor. Ending a session removes it
from the registry and closes it, so no per-session state outlives the
session. Sessions that receive no activity for longer than the idle
timeout are closed the next time a session is started.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import logging

from rehabright.config import get_settings
from rehabright.cv.session_processor import SessionProcessor
from rehabright.cv.voice import VoiceFeedback

logger = logging.getLogger(__name__)


class SessionNotFoundError(KeyError):
    """No live session with this id."""


class SessionLimitError(RuntimeError):
    """Too many live sessions."""


@dataclass
class LiveSession:
    id: str
    processor: SessionProcessor
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: float = 0.0  # manager clock, seconds


class SessionManager:
    """Creates, looks up, expires and ends live sessions."""

    def __init__(
        self,
        max_sessions: Optional[int] = None,
        voice_factory: Optional[Callable[[], object]] = None,
        idle_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.max_sessions = max_sessions or settings.max_active_sessions
        self.idle_timeout_seconds = (
            settings.session_idle_timeout_seconds
            if idle_timeout_seconds is None else idle_timeout_seconds
        )
        self.voice_factory = voice_factory
        self._clock = clock
        self._sessions: Dict[str, LiveSession] = {}

    def start(self, exercise, voice_enabled: bool = False) -> LiveSession:
        self.expire_idle()
        if len(self._sessions) >= self.max_sessions:
            raise SessionLimitError(f"At most {self.max_sessions} live sessions allowed")

        voice = None
        if voice_enabled and self.voice_factory is not None:
            voice = self.voice_factory()

        processor = SessionProcessor(exercise, voice=voice, voice_enabled=voice_enabled)
        session = LiveSession(
            id=str(uuid.uuid4()),
            processor=processor,
            last_activity=self._clock(),
        )
        self._sessions[session.id] = session

        logger.info(f"Session {session.id} started ({processor.exercise.value})")
        return session

    def get(self, session_id: str) -> LiveSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFoundError(session_id) from None

    def touch(self, session_id: str) -> LiveSession:
        """Look up a session and mark it active."""
        session = self.get(session_id)
        session.last_activity = self._clock()
        return session

    def end(self, session_id: str) -> LiveSession:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise SessionNotFoundError(session_id)
        session.processor.close()
        logger.info(f"Session {session_id} ended")
        return session

    def expire_idle(self) -> List[str]:
        """Close sessions idle for longer than the timeout; returns their ids."""
        if self.idle_timeout_seconds <= 0:
            return []

        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_activity > self.idle_timeout_seconds
        ]
        for session_id in expired:
            idle = now - self._sessions[session_id].last_activity
            logger.warning(f"Session {session_id} idle for {idle:.0f}s, closing")
            self.end(session_id)
        return expired

    def close_all(self):
        for session_id in list(self._sessions):
            self.end(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions


_manager: Optional[SessionManager] = None


def get_session_manager() -> SessionManager:
    """Process-wide registry used by the API layer."""
    global _manager
    if _manager is None:
        _manager = SessionManager(voice_factory=VoiceFeedback)
    return _manager
