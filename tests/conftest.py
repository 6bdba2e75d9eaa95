"""
Shared fixtures for the Spirit test suite.

Provides in-memory stand-ins for the loop's collaborators (database, model,
approval channel) so individual test modules can focus on behavior rather
than setup.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from spirit.channels.base import ApprovalChannel
from spirit.config import ConsciousnessConfig
from spirit.security.approval import ApprovalGate, ConfirmationRequest
from spirit.types import KnowledgeEntry, LearningLog, Task, ThinkingResult


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeDatabase:
    """In-memory ``Database`` that records every write."""

    def __init__(self) -> None:
        self.tasks: list[Task] = []
        self.knowledge: list[KnowledgeEntry] = []
        self.learning_logs: list[LearningLog] = []
        self.state: dict[str, Any] = {}
        self.topics: list[str] = []
        self.fail_on: Optional[str] = None

    def _maybe_fail(self, name: str) -> None:
        if self.fail_on == name:
            raise ConnectionError(f"{name} unavailable")

    async def get_pending_tasks(self, limit: int = 10) -> list[Task]:
        self._maybe_fail("get_pending_tasks")
        pending = [t for t in self.tasks if t.status in ("pending", "approved")]
        return sorted(pending, key=lambda t: -t.priority)[:limit]

    async def create_task(self, task: Task) -> Optional[str]:
        self._maybe_fail("create_task")
        task.id = task.id or f"task-{len(self.tasks) + 1}"
        self.tasks.append(task)
        return task.id

    async def update_task_status(self, task_id: str, status: str, result: Any = None) -> None:
        for task in self.tasks:
            if task.id == task_id:
                task.status = status

    async def save_learning_log(self, log: LearningLog) -> None:
        self._maybe_fail("save_learning_log")
        self.learning_logs.append(log)

    async def save_knowledge(self, entry: KnowledgeEntry) -> Optional[str]:
        self._maybe_fail("save_knowledge")
        self.knowledge.append(entry)
        return f"k-{len(self.knowledge)}"

    async def get_state(self, key: str) -> Any:
        self._maybe_fail("get_state")
        return self.state.get(key)

    async def set_state(self, key: str, value: Any, description: str = "") -> None:
        self._maybe_fail("set_state")
        self.state[key] = value

    async def count_knowledge(self) -> int:
        return len(self.knowledge)

    async def get_recent_topics(self, limit: int = 10) -> list[str]:
        return list(reversed(self.topics))[:limit]

    async def record_topic(self, title: str) -> None:
        self.topics.append(title)


class FakeModel:
    """``ThinkingModel`` returning canned results and recording prompts."""

    def __init__(
        self,
        result: Optional[ThinkingResult] = None,
        questions: Optional[list[str]] = None,
    ) -> None:
        self.result = result or ThinkingResult(thoughts="all quiet")
        self.questions = questions or []
        self.contexts: list[str] = []
        self.topics: list[str] = []
        self.think_delay = 0.0
        self.think_error: Optional[Exception] = None

    async def think(self, context: str) -> ThinkingResult:
        self.contexts.append(context)
        if self.think_delay:
            await asyncio.sleep(self.think_delay)
        if self.think_error is not None:
            raise self.think_error
        return self.result

    async def generate_questions(self, topic: str) -> list[str]:
        self.topics.append(topic)
        return list(self.questions)


class RecordingChannel(ApprovalChannel):
    """Approval channel that records requests and optionally refuses them."""

    def __init__(self, accept: bool = True, error: Optional[Exception] = None) -> None:
        self.accept = accept
        self.error = error
        self.requests: list[ConfirmationRequest] = []
        self.delivered = asyncio.Event()

    @property
    def channel_name(self) -> str:
        return "recording"

    async def send_confirmation_request(self, request: ConfirmationRequest) -> bool:
        self.requests.append(request)
        self.delivered.set()
        if self.error is not None:
            raise self.error
        return self.accept


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_for_request(channel: RecordingChannel, count: int = 1) -> ConfirmationRequest:
    """Yield to the loop until ``channel`` has seen ``count`` requests."""
    for _ in range(200):
        if len(channel.requests) >= count:
            return channel.requests[count - 1]
        await asyncio.sleep(0)
    raise AssertionError(f"expected {count} confirmation request(s), got {len(channel.requests)}")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def fake_db() -> FakeDatabase:
    return FakeDatabase()


@pytest.fixture()
def fake_model() -> FakeModel:
    return FakeModel()


@pytest.fixture()
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def gate(channel: RecordingChannel, clock: FakeClock) -> ApprovalGate:
    return ApprovalGate(channel, clock=clock)


@pytest.fixture()
def loop_config() -> ConsciousnessConfig:
    """Consciousness config by alias name; no .env needed."""
    return ConsciousnessConfig(
        SPIRIT_CONSCIOUSNESS_INTERVAL=30,
        SPIRIT_ENABLE_LEARNING=True,
        SPIRIT_ENABLE_CURIOSITY=True,
        SPIRIT_EVOLVE_EVERY=5,
        SPIRIT_CURIOSITY_TOPIC="travel B2B industry",
        SPIRIT_SHUTDOWN_GRACE_SECONDS=1,
    )
