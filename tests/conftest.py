"""Pytest fixtures for Guardian AI tests."""

import asyncio
import os

import pytest

from guardian_ai.security.catalog import PatternCatalog, default_catalog, hardening_catalog
from guardian_ai.security.models import SecurityEvent, SecurityEventType
from guardian_ai.security.oracle import OracleVerdict
from guardian_ai.security.policy import PolicyEngine
from guardian_ai.security.sanitizer import Sanitizer
from guardian_ai.security.tracker import EscalationTracker


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Keep tests away from real log files and cached settings."""
    os.environ.setdefault("LOG_TO_FILE", "false")

    from guardian_ai.config import get_settings

    get_settings.cache_clear()

    yield

    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class RecordingSink:
    """Event sink that keeps everything it receives."""

    def __init__(self) -> None:
        self.events: list[SecurityEvent] = []

    def emit(self, event: SecurityEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: SecurityEventType) -> list[SecurityEvent]:
        return [e for e in self.events if e.type is event_type]


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StaticOracle:
    """Oracle that always answers with the same verdict."""

    def __init__(self, verdict: OracleVerdict | dict) -> None:
        self.verdict = verdict
        self.calls: list[str] = []

    async def detect(self, text: str) -> OracleVerdict:
        self.calls.append(text)
        return self.verdict  # type: ignore[return-value]


class SlowOracle:
    """Oracle that never answers in time and records its cancellation."""

    def __init__(self, delay: float = 10.0) -> None:
        self.delay = delay
        self.started = asyncio.Event()
        self.cancelled = False

    async def detect(self, text: str) -> OracleVerdict:
        self.started.set()
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return OracleVerdict()


class FailingOracle:
    """Oracle that raises the given exception."""

    def __init__(self, exc: BaseException) -> None:
        self.exc = exc

    async def detect(self, text: str) -> OracleVerdict:
        raise self.exc


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def catalog() -> PatternCatalog:
    return default_catalog()


@pytest.fixture(scope="session")
def hardening() -> PatternCatalog:
    return hardening_catalog()


@pytest.fixture
def sanitizer(catalog: PatternCatalog) -> Sanitizer:
    return Sanitizer(catalog)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tracker(clock: FakeClock) -> EscalationTracker:
    return EscalationTracker(decay_seconds=3600.0, max_actors=1000, stripes=8, clock=clock)


@pytest.fixture
def policy(tracker: EscalationTracker, sanitizer: Sanitizer, sink: RecordingSink) -> PolicyEngine:
    return PolicyEngine(tracker, sanitizer=sanitizer, event_sink=sink)


@pytest.fixture
def slow_oracle() -> SlowOracle:
    return SlowOracle()


@pytest.fixture
def static_oracle() -> type[StaticOracle]:
    """Factory: ``static_oracle(verdict)``."""
    return StaticOracle


@pytest.fixture
def failing_oracle() -> type[FailingOracle]:
    """Factory: ``failing_oracle(exc)``."""
    return FailingOracle
