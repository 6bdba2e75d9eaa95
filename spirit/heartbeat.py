"""
Heartbeat — the consciousness loop.

This is what separates Spirit from a chatbot that waits to be spoken to. The
loop runs in the background on a fixed interval, and each cycle is one
complete autonomous act:

    perceive → think → decide → act → reflect → memorize → evolve

1. PERCEIVE: read pending tasks, recent topics and the stored status.
2. THINK:    ask the model what it makes of all that.
3. DECIDE:   high-impact decisions become tasks that need human approval;
             questions become learning tasks; the rest become actions.
4. ACT:      run each action (tool calls go through the secure executor).
5. REFLECT:  write a learning log and, when enabled, knowledge entries.
6. MEMORIZE: stamp the last-thought time and refresh stats.
7. EVOLVE:   every few cycles, generate curiosity questions as tasks.

Cycles never overlap. A tick that lands while a cycle is still running is
dropped, not queued. A failed cycle is recorded in the loop's recent errors
and the loop carries on.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

import structlog

from spirit.cognition.parsing import parse_tool_calls
from spirit.cognition.reasoner import ThinkingModel
from spirit.config import ConsciousnessConfig
from spirit.memory.store import Database
from spirit.tools.registry import ToolRegistry
from spirit.types import KnowledgeEntry, LearningLog, Task, ThinkingResult

logger = structlog.get_logger(__name__)

DEFAULT_STATS: dict[str, int] = {
    "total_conversations": 0,
    "total_messages": 0,
    "total_tokens": 0,
    "knowledge_count": 0,
}

LEARNING_TOPIC = "autonomous thinking"
KNOWLEDGE_CATEGORY = "autonomous learning"
KNOWLEDGE_SOURCE = "consciousness loop"
CURIOSITY_DESCRIPTION = "From the curiosity engine"

ACTION_PRIORITY = 5
LEARNING_PRIORITY = 3
CURIOSITY_PRIORITY = 2


class CyclePhase(str, Enum):
    PERCEIVE = "perceive"
    THINK = "think"
    DECIDE = "decide"
    ACT = "act"
    REFLECT = "reflect"
    MEMORIZE = "memorize"
    EVOLVE = "evolve"


@dataclass
class LoopState:
    """Run state of the consciousness loop. Only the loop mutates it."""

    running: bool = False
    last_cycle_at: Optional[datetime] = None
    cycle_count: int = 0
    recent_errors: deque[str] = field(default_factory=lambda: deque(maxlen=10))

    def snapshot(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "last_cycle_at": self.last_cycle_at.isoformat() if self.last_cycle_at else None,
            "cycle_count": self.cycle_count,
            "recent_errors": list(self.recent_errors),
        }


@dataclass
class Perception:
    pending_tasks: list[Task]
    recent_topics: list[str]
    status: Any = None


@dataclass
class Decisions:
    actions: list[str] = field(default_factory=list)
    needs_approval: bool = False


class DecisionPolicy(Protocol):
    """Decides whether a decision is high-impact (needs a human)."""

    def __call__(self, decision: str) -> bool: ...


class KeywordDecisionPolicy:
    """
    High-impact when the decision mentions modifying, deleting, sending or
    executing something.

    Chinese keywords match as substrings; English keywords match as word
    stems, so "deleting" counts and "resend" does not.
    """

    DEFAULT_SUBSTRINGS: tuple[str, ...] = ("修改", "删除", "发送", "执行")
    DEFAULT_STEMS: tuple[str, ...] = ("modif", "delet", "remov", "send", "execut")

    def __init__(
        self,
        substrings: Iterable[str] = DEFAULT_SUBSTRINGS,
        stems: Iterable[str] = DEFAULT_STEMS,
    ):
        self._substrings = tuple(substrings)
        stems = tuple(stems)
        self._stem_re = (
            re.compile(r"\b(?:" + "|".join(re.escape(s) for s in stems) + r")\w*", re.IGNORECASE)
            if stems else None
        )

    def __call__(self, decision: str) -> bool:
        if any(keyword in decision for keyword in self._substrings):
            return True
        return bool(self._stem_re and self._stem_re.search(decision))


ActionRunner = Callable[[str], Awaitable[str]]


class ConsciousnessLoop:
    """
    Drives autonomous cycles on a timer.

    Collaborators are injected: ``db`` (a ``Database``), ``model`` (a
    ``ThinkingModel``), and optionally a tool registry for the default action
    runner, a custom ``action_runner``, and a custom ``decision_policy``.
    """

    def __init__(
        self,
        db: Database,
        model: ThinkingModel,
        config: Optional[ConsciousnessConfig] = None,
        *,
        tools: Optional[ToolRegistry] = None,
        action_runner: Optional[ActionRunner] = None,
        decision_policy: Optional[DecisionPolicy] = None,
    ):
        self._db = db
        self._model = model
        self._config = config or ConsciousnessConfig()
        self._tools = tools
        self._action_runner = action_runner or self._run_action
        self._is_high_impact = decision_policy or KeywordDecisionPolicy()

        self._state = LoopState(recent_errors=deque(maxlen=self._config.max_recent_errors))
        self._phase: Optional[CyclePhase] = None
        self._timer_task: Optional[asyncio.Task[None]] = None
        self._cycle_task: Optional[asyncio.Task[bool]] = None
        self._last_cycle_duration: Optional[float] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Run a cycle now, then one every ``interval_minutes``."""
        if self._timer_task is not None and not self._timer_task.done():
            logger.warning("consciousness.already_started")
            return
        self._timer_task = asyncio.create_task(self._timer())
        logger.info(
            "consciousness.started",
            interval_minutes=self._config.interval_minutes,
            learning=self._config.enable_learning,
            curiosity=self._config.enable_curiosity,
        )

    async def stop(self) -> None:
        """Stop the timer, then give an in-flight cycle a grace period to finish."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        cycle = self._cycle_task
        if cycle is not None and not cycle.done():
            done, _ = await asyncio.wait({cycle}, timeout=self._config.shutdown_grace_seconds)
            if not done:
                logger.warning(
                    "consciousness.cycle_cancelled_on_stop",
                    grace_seconds=self._config.shutdown_grace_seconds,
                )
                cycle.cancel()
                try:
                    await cycle
                except asyncio.CancelledError:
                    pass
        self._cycle_task = None
        logger.info("consciousness.stopped", total_cycles=self._state.cycle_count)

    async def _timer(self) -> None:
        """Spawn a cycle on every fixed tick; never waits on the cycle itself."""
        loop = asyncio.get_running_loop()
        interval = self._config.interval_seconds
        next_tick = loop.time()
        while True:
            self._spawn_cycle()
            next_tick += interval
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    def _spawn_cycle(self) -> None:
        if self._state.running:
            logger.info("consciousness.cycle_skipped", reason="previous cycle still running")
            return
        self._cycle_task = asyncio.create_task(self.run_cycle())

    async def trigger_cycle(self) -> bool:
        """Manual entry point; returns False if a cycle was already running."""
        return await self.run_cycle()

    # -------------------------------------------------------------------------
    # One cycle
    # -------------------------------------------------------------------------

    async def run_cycle(self) -> bool:
        """
        Run one full cycle.

        Returns True when the cycle completed, False when it was skipped
        because another was running or when it failed.
        """
        if self._state.running:
            logger.info("consciousness.cycle_skipped", reason="previous cycle still running")
            return False

        self._state.running = True
        started = time.monotonic()
        number = self._state.cycle_count + 1
        logger.info("consciousness.cycle_start", cycle=number)
        try:
            self._phase = CyclePhase.PERCEIVE
            perception = await self._perceive()

            self._phase = CyclePhase.THINK
            thinking = await self._think(perception)

            self._phase = CyclePhase.DECIDE
            decisions = await self._decide(thinking)
            if decisions.needs_approval:
                logger.info("consciousness.approval_tasks_created", cycle=number)

            self._phase = CyclePhase.ACT
            outcomes = await self._act(decisions.actions)

            self._phase = CyclePhase.REFLECT
            await self._reflect(thinking, outcomes)

            self._phase = CyclePhase.MEMORIZE
            await self._memorize()

            self._phase = CyclePhase.EVOLVE
            await self._evolve()

            self._state.cycle_count += 1
            self._state.last_cycle_at = datetime.now(timezone.utc)
            self._last_cycle_duration = time.monotonic() - started
            logger.info(
                "consciousness.cycle_complete",
                cycle=number,
                elapsed_seconds=round(self._last_cycle_duration, 2),
                decisions=len(thinking.decisions),
                actions=len(outcomes),
            )
            return True
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            self._state.recent_errors.append(
                f"{datetime.now(timezone.utc).isoformat()}: {message}"
            )
            logger.error(
                "consciousness.cycle_failed",
                cycle=number,
                phase=self._phase.value if self._phase else None,
                error=message,
                exc_info=True,
            )
            return False
        finally:
            self._state.running = False
            self._phase = None

    async def _perceive(self) -> Perception:
        pending = await self._db.get_pending_tasks()
        topics = await self._db.get_recent_topics(self._config.recent_topic_limit)
        status = await self._db.get_state("status")
        return Perception(pending_tasks=list(pending), recent_topics=list(topics), status=status)

    def build_context(self, perception: Perception) -> str:
        now = datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")
        return "\n".join([
            f"Current time: {now}",
            f"Pending tasks: {len(perception.pending_tasks)}",
            f"Recently discussed topics: {', '.join(perception.recent_topics) or 'none'}",
            f"System status: {perception.status or 'normal'}",
            "",
            f"This is my autonomous thought #{self._state.cycle_count + 1}.",
            "Analyse the current state and think about what I should do.",
        ])

    async def _think(self, perception: Perception) -> ThinkingResult:
        return await self._model.think(self.build_context(perception))

    async def _decide(self, thinking: ThinkingResult) -> Decisions:
        result = Decisions()
        for decision in thinking.decisions:
            if self._is_high_impact(decision):
                result.needs_approval = True
                await self._db.create_task(Task(
                    type="action",
                    title=decision,
                    description=f"From autonomous thinking: {thinking.thoughts}",
                    requires_approval=True,
                    priority=ACTION_PRIORITY,
                ))
                logger.info("consciousness.approval_task_created", title=decision)
            else:
                result.actions.append(decision)

        for question in thinking.questions:
            await self._db.create_task(Task(
                type="learning",
                title=f"Explore: {question}",
                description=CURIOSITY_DESCRIPTION,
                priority=LEARNING_PRIORITY,
            ))
        return result

    async def _act(self, actions: list[str]) -> list[str]:
        outcomes = []
        for action in actions:
            try:
                outcomes.append(await self._action_runner(action))
            except Exception as exc:
                logger.warning("consciousness.action_failed", action=action, error=str(exc))
                outcomes.append(f"failed: {action}")
        return outcomes

    async def _run_action(self, action: str) -> str:
        """Default runner: dispatch any tool calls embedded in the action text."""
        calls = parse_tool_calls(action)
        if not calls or self._tools is None:
            logger.info("consciousness.action_recorded", action=action)
            return f"completed: {action}"
        results = [await self._tools.dispatch(call) for call in calls]
        if all(r.success for r in results):
            return f"completed: {action}"
        return f"failed: {action} ({'; '.join(r.summary() for r in results if not r.success)})"

    async def _reflect(self, thinking: ThinkingResult, outcomes: list[str]) -> None:
        await self._db.save_learning_log(LearningLog(
            topic=LEARNING_TOPIC,
            summary=thinking.thoughts,
            source=KNOWLEDGE_SOURCE,
            insights=[{"content": learning} for learning in thinking.learnings],
            questions_generated=list(thinking.questions),
            outcomes=list(outcomes),
        ))
        if not self._config.enable_learning:
            return
        for learning in thinking.learnings:
            await self._db.save_knowledge(KnowledgeEntry(
                category=KNOWLEDGE_CATEGORY,
                title=learning[:50],
                content=learning,
                source=KNOWLEDGE_SOURCE,
                confidence=0.7,
            ))

    async def _memorize(self) -> None:
        await self._db.set_state("last_thought_at", datetime.now(timezone.utc).isoformat())
        stats = await self._db.get_state("stats")
        if not isinstance(stats, dict):
            stats = dict(DEFAULT_STATS)
        stats["knowledge_count"] = await self._db.count_knowledge()
        await self._db.set_state("stats", stats)

    async def _evolve(self) -> None:
        if not self._config.enable_curiosity:
            return
        if self._state.cycle_count % self._config.evolve_every != 0:
            return
        topic = self._config.curiosity_topic
        questions = await self._model.generate_questions(topic)
        if questions:
            await self._db.record_topic(topic)
        for question in questions:
            await self._db.create_task(Task(
                type="curiosity",
                title=question,
                description=CURIOSITY_DESCRIPTION,
                priority=CURIOSITY_PRIORITY,
            ))
        logger.info("consciousness.curiosity", questions=len(questions))

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def status(self) -> dict[str, Any]:
        """Current loop status for monitoring."""
        result = self._state.snapshot()
        result.update({
            "started": self._timer_task is not None and not self._timer_task.done(),
            "phase": self._phase.value if self._phase else None,
            "interval_minutes": self._config.interval_minutes,
            "last_cycle_seconds": (
                round(self._last_cycle_duration, 2) if self._last_cycle_duration is not None else None
            ),
        })
        return result
