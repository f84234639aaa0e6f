"""
Spoken coaching cues.

SPEECH PIPELINE:
1. VoiceFeedback (one per live session) decides what to say and when:
   low and medium priority messages are debounced (a newer message cancels
   a pending one), high priority messages go out immediately, and the same
   message is not repeated within the repeat interval.
2. SpeechWorker (one per process) owns the pyttsx3 engine. pyttsx3 hands
   out a single engine per driver, so every session shares it; only the
   worker thread calls ``say``/``runAndWait``, reading messages from a
   queue in arrival order.

``VoiceFeedback.stop`` must be called when the session ends so no debounce
timer outlives it. ``shutdown_speech_worker`` stops the worker thread on
application exit.
"""

import queue
import threading
import time
from typing import Callable, Optional

import logging
import pyttsx3

from rehabright.config import get_settings

logger = logging.getLogger(__name__)


PRIORITIES = ("low", "medium", "high")


class SpeechWorker:
    """Background thread that speaks queued messages with one engine."""

    def __init__(
        self,
        engine_factory: Optional[Callable[[], object]] = None,
        rate: Optional[int] = None,
    ):
        self._engine_factory = engine_factory or pyttsx3.init
        self.rate = get_settings().voice_rate if rate is None else rate
        self.is_available = True

        self._queue: "queue.Queue[Optional[str]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    def submit(self, message: str):
        """Queue a message; returns immediately."""
        self._ensure_started()
        self._queue.put(message)

    def join(self):
        """Block until every queued message has been handled."""
        self._queue.join()

    def shutdown(self, timeout: Optional[float] = 5.0):
        with self._start_lock:
            thread, self._thread = self._thread, None
        if thread is None:
            return
        self._queue.put(None)
        thread.join(timeout)
        logger.info("Speech worker stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None

    def _ensure_started(self):
        with self._start_lock:
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._run, name="speech-worker", daemon=True
                )
                self._thread.start()

    def _create_engine(self):
        try:
            engine = self._engine_factory()
            engine.setProperty("rate", self.rate)
            return engine
        except Exception as e:
            # No TTS driver available (e.g. headless server without espeak)
            logger.warning(f"Could not initialize speech engine, voice disabled: {e}")
            self.is_available = False
            return None

    def _run(self):
        # The engine is created and used only on this thread
        engine = self._create_engine()

        while True:
            message = self._queue.get()
            try:
                if message is None:
                    break
                if engine is None:
                    logger.debug(f"[voice disabled] {message}")
                    continue
                logger.debug(f"TTS: {message}")
                engine.say(message)
                engine.runAndWait()
            except Exception as e:
                logger.error(f"Speech error: {e}")
            finally:
                self._queue.task_done()


_worker: Optional[SpeechWorker] = None
_worker_lock = threading.Lock()


def get_speech_worker() -> SpeechWorker:
    """Process-wide speech worker shared by all sessions."""
    global _worker
    with _worker_lock:
        if _worker is None:
            _worker = SpeechWorker()
        return _worker


def shutdown_speech_worker():
    global _worker
    with _worker_lock:
        worker, _worker = _worker, None
    if worker is not None:
        worker.shutdown()


class VoiceFeedback:
    """Debounced text-to-speech sink for one session."""

    def __init__(
        self,
        worker: Optional[SpeechWorker] = None,
        debounce_ms: Optional[float] = None,
        repeat_interval_ms: Optional[float] = None,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self.debounce_ms = settings.voice_debounce_ms if debounce_ms is None else debounce_ms
        self.repeat_interval_ms = (
            settings.voice_repeat_interval_ms if repeat_interval_ms is None else repeat_interval_ms
        )

        self._worker = worker
        self._timer_factory = timer_factory
        self._clock = clock
        self._lock = threading.Lock()

        self._pending: Optional[threading.Timer] = None
        self.current_message = ""
        self._last_spoken_at: Optional[float] = None

    @property
    def worker(self) -> SpeechWorker:
        if self._worker is None:
            self._worker = get_speech_worker()
        return self._worker

    @property
    def is_available(self) -> bool:
        return self.worker.is_available

    # =========================================================
    # Speaking
    # =========================================================

    def speak(self, message: str, priority: str = "medium"):
        if not message or not message.strip():
            return
        if priority not in PRIORITIES:
            raise ValueError(f"priority must be one of: {PRIORITIES}")

        now_ms = self._clock() * 1000.0
        with self._lock:
            if (
                message == self.current_message
                and self._last_spoken_at is not None
                and now_ms - self._last_spoken_at < self.repeat_interval_ms
            ):
                return

            self._cancel_pending()

            if priority == "high":
                immediate = True
            else:
                immediate = False
                self._pending = self._timer_factory(
                    self.debounce_ms / 1000.0, self._execute_speech, args=(message,)
                )
                self._pending.daemon = True
                self._pending.start()

        if immediate:
            self._execute_speech(message)

    def _execute_speech(self, message: str):
        with self._lock:
            self.current_message = message
            self._last_spoken_at = self._clock() * 1000.0
            self._pending = None

        self.worker.submit(message)

    def _cancel_pending(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def stop(self):
        """Cancel pending speech for this session."""
        with self._lock:
            self._cancel_pending()

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    # =========================================================
    # Cues
    # =========================================================

    def speak_exercise_cue(self, exercise: str, cue: str):
        self.speak(f"{exercise}: {cue}", "medium")

    def speak_rep_count(self, count: int):
        self.speak(f"Rep {count}", "low")

    def speak_score(self, score: int):
        if score >= 80:
            message = "Excellent form!"
        elif score >= 60:
            message = "Good form, keep it up!"
        else:
            message = "Focus on your form"
        self.speak(message, "high")

    def speak_flag(self, flag: str):
        self.speak(f"Warning: {flag}", "high")
