from typing import Generator, List

import pytest
import requests_mock


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


class RecordingSleeper:
    def __init__(self, clock: FakeClock = None) -> None:
        self.calls: List[float] = []
        self.clock = clock

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.now += seconds


@pytest.fixture
def adapter() -> Generator[requests_mock.Adapter, None, None]:
    adapter = requests_mock.Adapter()
    with requests_mock.Mocker(adapter=adapter):
        yield adapter


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(clock: FakeClock) -> RecordingSleeper:
    return RecordingSleeper(clock)
