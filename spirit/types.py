"""
Core data types shared across Spirit subsystems.

This module defines lightweight data containers that cross subsystem boundaries
(loop ↔ store ↔ model). They live here rather than in a specific subsystem to
avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Task:
    """A unit of work the brain wants done, persisted for later pickup."""

    type: str
    title: str
    description: str = ""
    priority: int = 0
    status: str = "pending"
    requires_approval: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class KnowledgeEntry:
    """A standalone piece of knowledge the brain has picked up."""

    category: str
    title: str
    content: str
    source: str = ""
    confidence: float = 0.5
    tags: list[str] = field(default_factory=list)
    id: Optional[str] = None


@dataclass
class LearningLog:
    """Summary of what one stretch of autonomous thinking produced."""

    topic: str
    summary: str = ""
    source: str = ""
    insights: list[dict[str, Any]] = field(default_factory=list)
    questions_generated: list[str] = field(default_factory=list)
    outcomes: list[str] = field(default_factory=list)


@dataclass
class ThinkingResult:
    """Structured output of one round of autonomous thinking.

    Every field may be empty. When the model's reply cannot be parsed, the
    result degrades to ``ThinkingResult(thoughts=<raw reply>)``.
    """

    thoughts: str = ""
    decisions: list[str] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    learnings: list[str] = field(default_factory=list)

    @classmethod
    def degraded(cls, raw: str) -> "ThinkingResult":
        return cls(thoughts=raw)


@dataclass
class ToolCall:
    """A structured tool invocation extracted from model text."""

    tool: str
    args: dict[str, Any] = field(default_factory=dict)
