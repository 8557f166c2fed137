import pytest

from app.captcha.engine import CaptchaEngine
from app.core.settings import Settings
from app.storage import FailoverBackend, MemoryBackend


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory(clock) -> MemoryBackend:
    return MemoryBackend(clock=clock)


@pytest.fixture
def engine(memory, clock) -> CaptchaEngine:
    storage = FailoverBackend(None, memory, clock=clock)
    return CaptchaEngine(storage, settings=Settings(), clock=clock)
