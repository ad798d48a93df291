"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterable, List, Sequence

import pytest

# Ensure the repo root is on the import path (for local runs without installing)
ROOT_PATH = Path(__file__).resolve().parent.parent
if str(ROOT_PATH) not in sys.path:
    sys.path.insert(0, str(ROOT_PATH))

from memory_palace.domain.errors import GenerationError  # noqa: E402
from memory_palace.domain.models.conversation import ContextMessage  # noqa: E402
from memory_palace.infrastructure.observability.logging import metrics  # noqa: E402


class ScriptedRandom:
    """Random source that replays fixed draws, then repeats the last one."""

    def __init__(self, draws: Iterable[float]):
        self.draws: List[float] = list(draws) or [0.99]
        self.calls = 0

    def random(self) -> float:
        value = self.draws[min(self.calls, len(self.draws) - 1)]
        self.calls += 1
        return value


class FakeGenerator:
    """Records every call and replies from a script (exceptions are raised)."""

    def __init__(self, replies: Sequence[object] = ("I remember you.",)):
        self.replies = list(replies)
        self.calls: List[dict] = []

    async def generate(self, system_framing: str, history: Sequence[ContextMessage], max_tokens: int) -> str:
        self.calls.append({
            "system_framing": system_framing,
            "history": list(history),
            "max_tokens": max_tokens,
        })
        reply = self.replies[min(len(self.calls) - 1, len(self.replies) - 1)]
        if isinstance(reply, BaseException):
            raise reply
        return str(reply)


class EventRecorder:
    """Async event sink that keeps everything the engine emits."""

    def __init__(self):
        self.events: list = []

    async def __call__(self, event) -> bool:
        self.events.append(event)
        return True

    @property
    def types(self) -> List[str]:
        return [e.type.value for e in self.events]

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.type.value == event_type]


@pytest.fixture
def never_corrupt() -> ScriptedRandom:
    """Draws high enough that no probabilistic branch fires."""
    return ScriptedRandom([0.99])


@pytest.fixture
def always_corrupt() -> ScriptedRandom:
    """Draws low enough that every probabilistic branch fires."""
    return ScriptedRandom([0.0])


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def failing_generator() -> FakeGenerator:
    return FakeGenerator([GenerationError("quota exceeded")])


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    import os

    for var in list(os.environ):
        if var.startswith("MEMORY_PALACE"):
            monkeypatch.delenv(var, raising=False)
    yield
