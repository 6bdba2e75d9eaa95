"""
Reasoner — the model collaborator of the consciousness loop.

Turns the loop's plain-text context into a ``ThinkingResult``, asks the model
for curiosity questions, and runs tool-using chat turns. All model I/O goes
through a ``CognitiveEngine``-shaped object exposing
``complete(system_prompt, messages)``; all parsing goes through
``spirit.cognition.parsing``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

import structlog

from spirit.cognition.parsing import (
    parse_question_lines,
    parse_thinking_result,
    parse_tool_calls,
    split_thinking_and_answer,
    strip_tool_call_blocks,
)
from spirit.tools.registry import ToolRegistry, ToolResult
from spirit.types import ThinkingResult, ToolCall

logger = structlog.get_logger(__name__)

PERSONA = (
    "You are Spirit, an always-on assistant that thinks on its own between "
    "conversations. You are curious, honest about uncertainty, and careful: "
    "anything that modifies, deletes, sends or executes is reviewed by a human "
    "before it happens."
)

THINK_SYSTEM_PROMPT = (
    PERSONA
    + "\n\nYou are in autonomous thinking mode. Analyse the situation honestly "
    "and offer your own view. Your output must be valid JSON."
)

THINK_TEMPLATE = """Think autonomously about the following context:

{context}

Respond with a JSON object:
{{
  "thoughts": "your reasoning",
  "decisions": ["things you decide to do"],
  "questions": ["questions this raises"],
  "learnings": ["new things you learned"]
}}"""

QUESTIONS_TEMPLATE = """Generate {count} questions you would like to explore about "{topic}".

- Go beyond surface-level questions.
- Cover different angles: technology, market, risk, opportunity.
- Each question should have practical value.

Output only the questions, one per line."""

TOOLS_PROMPT = """
You can use these tools:
{catalog}

To use a tool, output a block like:
```tool_call
{{"tool": "<name>", "args": {{...}}}}
```
Emit the tool_call first and wait for its result before answering.
Format every reply as:
[Thinking]
(your reasoning)
[Reply]
(what you say to the user)"""

FOLLOW_UP_TEMPLATE = (
    "Tool results:\n{results}\n\n"
    "Give the user a clear reply based on these results. Do not emit tool_call blocks."
)


@runtime_checkable
class ThinkingModel(Protocol):
    """What the consciousness loop needs from a model."""

    async def think(self, context: str) -> ThinkingResult: ...

    async def generate_questions(self, topic: str) -> list[str]: ...


@dataclass
class ChatReply:
    thinking: Optional[str]
    answer: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)


class Reasoner:
    """Default ``ThinkingModel`` backed by a language model."""

    def __init__(
        self,
        engine: Any,
        tools: Optional[ToolRegistry] = None,
        question_count: int = 5,
    ):
        self._engine = engine
        self._tools = tools
        self._question_count = question_count

    async def think(self, context: str) -> ThinkingResult:
        """
        One round of autonomous thinking.

        An unparseable reply degrades to ``ThinkingResult(thoughts=reply)``.
        Model failures propagate so the loop can record them.
        """
        raw = await self._engine.complete(
            THINK_SYSTEM_PROMPT,
            [{"role": "user", "content": THINK_TEMPLATE.format(context=context)}],
        )
        result = parse_thinking_result(raw)
        logger.debug(
            "reasoner.thought",
            decisions=len(result.decisions),
            questions=len(result.questions),
            learnings=len(result.learnings),
        )
        return result

    async def generate_questions(self, topic: str) -> list[str]:
        prompt = QUESTIONS_TEMPLATE.format(count=self._question_count, topic=topic)
        try:
            raw = await self._engine.complete(PERSONA, [{"role": "user", "content": prompt}])
        except Exception as exc:
            logger.warning("reasoner.questions_failed", topic=topic, error=str(exc))
            return []
        return parse_question_lines(raw, self._question_count)

    async def chat_with_tools(
        self,
        messages: list[dict[str, Any]],
        system_prompt: Optional[str] = None,
    ) -> ChatReply:
        """
        One user-facing turn with tool use.

        Tool calls found in the first reply are dispatched through the
        registry, then a follow-up turn turns their results into prose.
        """
        system = system_prompt or PERSONA
        if self._tools is not None and len(self._tools):
            system += "\n" + TOOLS_PROMPT.format(catalog=self._tools.describe())

        content = await self._engine.complete(system, messages)
        calls = parse_tool_calls(content) if self._tools is not None else []
        results: list[ToolResult] = []

        if calls:
            logger.info("reasoner.tool_calls", tools=[c.tool for c in calls])
            for call in calls:
                results.append(await self._tools.dispatch(call))
            rendered = "\n\n".join(
                f"Tool {r.tool} result:\n{json.dumps(r.to_dict(), ensure_ascii=False, indent=2, default=str)}"
                for r in results
            )
            follow_up = await self._engine.complete(
                system,
                list(messages) + [
                    {"role": "assistant", "content": content},
                    {"role": "user", "content": FOLLOW_UP_TEMPLATE.format(results=rendered)},
                ],
            )
            content = follow_up or content

        split = split_thinking_and_answer(strip_tool_call_blocks(content))
        return ChatReply(
            thinking=split.thinking,
            answer=split.answer,
            tool_calls=calls,
            tool_results=results,
        )
