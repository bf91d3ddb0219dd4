from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ragvault.core.config import get_settings
from ragvault.services.telemetry import reset_metrics


class FrozenClock:
    """Mutable UTC clock injected as ``time_provider`` in service tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def reset_state_between_tests() -> None:
    # Counters and cached settings are module-level; start every test clean.
    reset_metrics()
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()
