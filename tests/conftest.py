from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pytest

from simrelay.models import TelemetrySample
from simrelay.storage import EventStore


class ManualDebouncer:
    """Debouncer stand-in: jobs only run when the test fires them."""

    def __init__(self) -> None:
        self.jobs: dict[str, tuple[Callable[..., Any], tuple[Any, ...]]] = {}
        self.scheduled = 0

    def schedule(self, key: str, delay_s: float, func: Callable[..., Any], *args: Any) -> None:
        self.jobs[key] = (func, args)
        self.scheduled += 1

    def cancel(self, key: str) -> bool:
        return self.jobs.pop(key, None) is not None

    def cancel_all(self) -> int:
        n = len(self.jobs)
        self.jobs.clear()
        return n

    def pending(self) -> list[str]:
        return list(self.jobs)

    async def fire(self, key: str) -> Any:
        func, args = self.jobs.pop(key)
        return await func(*args)

    async def fire_all(self) -> None:
        for key in list(self.jobs):
            await self.fire(key)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_sample(**overrides: Any) -> TelemetrySample:
    data = {
        "simNum": 1,
        "pilot-name": "Ana",
        "car": "GT3",
        "track": "Interlagos",
        "lapData": {"lapTime": 91000, "sectorTimes": [30000, 31000, 30000], "isValid": True},
        "currentLap": 3,
        "laps": 10,
        "speedNow": 212.5,
        "rpm": 7800,
        "maxRpm": 9000,
        "gear": 5,
        "gas": 0.9,
        "brake": 0.0,
        "fuel": 40.2,
        "maxFuel": 100,
        "position": 2,
        "sessionTimeLeft": 600000,
    }
    data.update(overrides)
    return TelemetrySample.model_validate(data)


@pytest.fixture
def debouncer() -> ManualDebouncer:
    return ManualDebouncer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path: Path, debouncer: ManualDebouncer) -> EventStore:
    return EventStore(debouncer, data_dir=tmp_path / "data", write_debounce_ms=5000)


@pytest.fixture
def sample_factory() -> Callable[..., TelemetrySample]:
    return make_sample
