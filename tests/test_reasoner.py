"""
Tests for spirit.cognition.reasoner — thinking, curiosity and tool-using chat.
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from spirit.cognition.reasoner import (
    PERSONA,
    THINK_SYSTEM_PROMPT,
    Reasoner,
    ThinkingModel,
)
from spirit.tools.registry import ToolDefinition, ToolRegistry
from spirit.types import ThinkingResult, ToolCall


class _Engine:
    def __init__(self, *replies):
        self.complete = AsyncMock(side_effect=list(replies))


def _registry_with_echo() -> ToolRegistry:
    registry = ToolRegistry()

    async def echo(text: str) -> str:
        return text.upper()

    registry.register(ToolDefinition(
        name="echo",
        description="Echo text back in upper case.",
        handler=echo,
        parameters={"text": "text to echo"},
    ))
    return registry


# ---------------------------------------------------------------------------
# Autonomous thinking
# ---------------------------------------------------------------------------

class TestThink:

    def test_reasoner_satisfies_protocol(self):
        assert isinstance(Reasoner(_Engine()), ThinkingModel)

    @pytest.mark.asyncio
    async def test_think_parses_json_reply(self):
        engine = _Engine('{"thoughts": "ok", "decisions": ["review logs"], "questions": ["why?"]}')
        result = await Reasoner(engine).think("Pending tasks: 2")

        assert result == ThinkingResult(thoughts="ok", decisions=["review logs"], questions=["why?"])
        system, messages = engine.complete.await_args.args
        assert system == THINK_SYSTEM_PROMPT
        assert "Pending tasks: 2" in messages[0]["content"]

    @pytest.mark.asyncio
    async def test_think_degrades_on_prose(self):
        result = await Reasoner(_Engine("Nothing to report.")).think("ctx")
        assert result == ThinkingResult(thoughts="Nothing to report.")

    @pytest.mark.asyncio
    async def test_think_propagates_model_failure(self):
        with pytest.raises(ConnectionError):
            await Reasoner(_Engine(ConnectionError("offline"))).think("ctx")


# ---------------------------------------------------------------------------
# Curiosity
# ---------------------------------------------------------------------------

class TestGenerateQuestions:

    @pytest.mark.asyncio
    async def test_questions_are_cleaned_and_limited(self):
        engine = _Engine("1. First?\n2. Second?\n3. Third?")
        questions = await Reasoner(engine, question_count=2).generate_questions("travel")

        assert questions == ["First?", "Second?"]
        system, messages = engine.complete.await_args.args
        assert system == PERSONA
        assert '"travel"' in messages[0]["content"]
        assert "Generate 2 questions" in messages[0]["content"]

    @pytest.mark.asyncio
    async def test_model_failure_yields_no_questions(self):
        assert await Reasoner(_Engine(RuntimeError("boom"))).generate_questions("x") == []


# ---------------------------------------------------------------------------
# Chat with tools
# ---------------------------------------------------------------------------

class TestChatWithTools:

    @pytest.mark.asyncio
    async def test_plain_reply_without_tools(self):
        engine = _Engine("[Thinking] easy [Reply] Hello!")
        reply = await Reasoner(engine).chat_with_tools([{"role": "user", "content": "hi"}])

        assert reply.thinking == "easy"
        assert reply.answer == "Hello!"
        assert reply.tool_calls == []
        assert engine.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_tool_call_is_dispatched_and_followed_up(self):
        engine = _Engine(
            'Let me check.\n```tool_call\n{"tool": "echo", "args": {"text": "hi"}}\n```',
            "[Thinking] echoed [Reply] It says HI.",
        )
        reasoner = Reasoner(engine, tools=_registry_with_echo())

        reply = await reasoner.chat_with_tools([{"role": "user", "content": "shout hi"}])

        assert reply.tool_calls == [ToolCall("echo", {"text": "hi"})]
        assert reply.tool_results[0].output == "HI"
        assert reply.answer == "It says HI."

        first_system = engine.complete.await_args_list[0].args[0]
        assert "- echo: Echo text back in upper case." in first_system

        follow_up_messages = engine.complete.await_args_list[1].args[1]
        assert follow_up_messages[1]["role"] == "assistant"
        assert "Tool echo result" in follow_up_messages[2]["content"]
        assert '"HI"' in follow_up_messages[2]["content"]

    @pytest.mark.asyncio
    async def test_unknown_tool_result_is_reported_back(self):
        engine = _Engine('{"tool": "teleport", "args": {}}', "Sorry, I cannot do that.")
        reply = await Reasoner(engine, tools=_registry_with_echo()).chat_with_tools(
            [{"role": "user", "content": "go"}]
        )
        assert reply.tool_results[0].success is False
        assert reply.tool_results[0].error == "Unknown tool: teleport"
        assert reply.answer == "Sorry, I cannot do that."

    @pytest.mark.asyncio
    async def test_tool_calls_ignored_without_registry(self):
        engine = _Engine('{"tool": "echo", "args": {"text": "hi"}}')
        reply = await Reasoner(engine).chat_with_tools([{"role": "user", "content": "go"}])
        assert reply.tool_calls == []
        assert engine.complete.await_count == 1
