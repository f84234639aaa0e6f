import threading
import time

import pytest

from rehabright.cv import voice as voice_module
from rehabright.cv.voice import SpeechWorker, VoiceFeedback


class FakeEngine:
    def __init__(self, fail_first=False):
        self.said = []
        self.properties = {}
        self.errors = 0
        self.fail_first = fail_first
        self._running = False

    def setProperty(self, name, value):
        self.properties[name] = value

    def say(self, message):
        self.said.append(message)

    def runAndWait(self):
        if self._running:
            self.errors += 1
            raise RuntimeError("run loop already started")
        if self.fail_first:
            self.fail_first = False
            raise RuntimeError("driver hiccup")
        self._running = True
        time.sleep(0.01)
        self._running = False

    def stop(self):
        pass


class FakeWorker:
    is_available = True

    def __init__(self):
        self.said = []

    def submit(self, message):
        self.said.append(message)


class FakeTimer:
    created = []

    def __init__(self, interval, function, args=()):
        self.interval = interval
        self.function = function
        self.args = args
        self.started = False
        self.cancelled = False
        self.daemon = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function(*self.args)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def worker():
    return FakeWorker()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def voice(worker, clock):
    FakeTimer.created = []
    return VoiceFeedback(
        worker=worker,
        debounce_ms=800,
        repeat_interval_ms=2000,
        timer_factory=FakeTimer,
        clock=clock,
    )


def test_high_priority_speaks_immediately(voice, worker):
    voice.speak_flag("Knee valgus detected")

    assert worker.said == ["Warning: Knee valgus detected"]
    assert FakeTimer.created == []


def test_low_priority_is_debounced(voice, worker):
    voice.speak_rep_count(3)

    assert worker.said == []
    timer = FakeTimer.created[0]
    assert timer.interval == pytest.approx(0.8)
    assert timer.started
    assert timer.daemon
    assert voice.has_pending

    timer.fire()

    assert worker.said == ["Rep 3"]
    assert not voice.has_pending


def test_newer_message_cancels_pending(voice, worker):
    voice.speak_exercise_cue("Squat", "Go deeper")
    voice.speak_exercise_cue("Squat", "Keep chest up")

    first, second = FakeTimer.created
    assert first.cancelled
    first.fire()
    second.fire()

    assert worker.said == ["Squat: Keep chest up"]


def test_same_message_not_repeated_within_interval(voice, worker, clock):
    voice.speak("Focus on your form", "high")
    clock.now = 1.0
    voice.speak("Focus on your form", "high")
    clock.now = 2.5
    voice.speak("Focus on your form", "high")

    assert worker.said == ["Focus on your form", "Focus on your form"]


def test_blank_message_ignored(voice, worker):
    voice.speak("   ", "high")
    assert worker.said == []


def test_unknown_priority_rejected(voice):
    with pytest.raises(ValueError):
        voice.speak("Rep 1", "urgent")


@pytest.mark.parametrize("score, message", [
    (92, "Excellent form!"),
    (80, "Excellent form!"),
    (65, "Good form, keep it up!"),
    (40, "Focus on your form"),
])
def test_speak_score(voice, worker, score, message):
    voice.speak_score(score)
    assert worker.said == [message]


def test_stop_cancels_pending(voice, worker):
    voice.speak_rep_count(1)
    timer = FakeTimer.created[0]

    voice.stop()

    assert timer.cancelled
    assert not voice.has_pending
    timer.fire()
    assert worker.said == []


def test_default_worker_is_shared(monkeypatch):
    monkeypatch.setattr(voice_module, "_worker", None)

    first = VoiceFeedback(timer_factory=FakeTimer)
    second = VoiceFeedback(timer_factory=FakeTimer)

    assert first.worker is second.worker
    voice_module.shutdown_speech_worker()
    assert voice_module._worker is None


def test_worker_speaks_in_order_on_its_own_thread():
    engine = FakeEngine()
    threads = []

    def factory():
        threads.append(threading.current_thread())
        return engine

    worker = SpeechWorker(engine_factory=factory, rate=150)
    worker.submit("Rep 1")
    worker.submit("Squat: Go deeper")
    worker.join()

    assert engine.said == ["Rep 1", "Squat: Go deeper"]
    assert engine.properties["rate"] == 150
    assert threads[0] is not threading.current_thread()

    worker.shutdown()
    assert not worker.is_running


def test_two_sessions_share_worker_without_overlapping_runs():
    engine = FakeEngine()
    worker = SpeechWorker(engine_factory=lambda: engine)
    timers = []

    def timer_factory(*args, **kwargs):
        timers.append(threading.Timer(*args, **kwargs))
        return timers[-1]

    first = VoiceFeedback(worker=worker, debounce_ms=5, timer_factory=timer_factory)
    second = VoiceFeedback(worker=worker, debounce_ms=5, timer_factory=timer_factory)

    first.speak_exercise_cue("Squat", "Go deeper")
    second.speak_exercise_cue("Pull-up", "Pull chin over bar")
    for timer in timers:
        timer.join()
    worker.join()

    assert sorted(engine.said) == ["Pull-up: Pull chin over bar", "Squat: Go deeper"]
    assert engine.errors == 0
    worker.shutdown()


def test_speech_error_does_not_stop_worker():
    engine = FakeEngine(fail_first=True)
    worker = SpeechWorker(engine_factory=lambda: engine)

    worker.submit("Rep 1")
    worker.submit("Rep 2")
    worker.join()

    assert engine.said == ["Rep 1", "Rep 2"]
    assert worker.is_running
    worker.shutdown()


def test_engine_failure_disables_voice(monkeypatch, clock):
    def broken_init():
        raise RuntimeError("no speech driver")

    monkeypatch.setattr(voice_module.pyttsx3, "init", broken_init)
    worker = SpeechWorker()
    voice = VoiceFeedback(worker=worker, timer_factory=FakeTimer, clock=clock)

    voice.speak("Warning: Swinging detected", "high")
    worker.join()

    assert not voice.is_available
    worker.shutdown()
