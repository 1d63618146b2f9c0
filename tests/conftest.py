"""
Shared test fixtures for VoxEdit.
"""

import pytest


class FakeTimer:
    """threading.Timer stand-in that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


class TimerRecorder:
    """Timer factory that remembers every timer it made."""

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]


@pytest.fixture
def timers():
    return TimerRecorder()


def build_snapshot(**overrides):
    from voxedit.types import ConfigSnapshot

    values = dict(
        trailing_silence_ms=1000,
        sample_rate=16000,
        input_device="",
        stt_model="nova-3",
        dwell_ms=3500,
        prompt="",
        commands_only=False,
        reasoning_effort="low",
        max_context_chars=100000,
        groq_api_key="",
        openrouter_api_key="",
        deepgram_api_key="dg-key",
    )
    values.update(overrides)
    return ConfigSnapshot(**values)


@pytest.fixture
def make_snapshot():
    """Factory for ConfigSnapshot with test defaults."""
    return build_snapshot


@pytest.fixture
def snapshot():
    return build_snapshot()


@pytest.fixture(autouse=True)
def reset_router_health():
    """Provider failure counts are module-level; start every test clean."""
    from voxedit.router import reset_provider_health

    reset_provider_health()
    yield
    reset_provider_health()
