import os

import pytest


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def isolated_flags(tmp_path, monkeypatch) -> None:
    # Feature flags are read from ./config/feature_flags.json and HI_FLAG_* variables.
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("HI_FLAG_"):
            monkeypatch.delenv(key, raising=False)
