"""
Cognition layer — turning model text into structure.

Modules:
  - parsing: tool-call extraction, thinking/answer split, JSON thinking results
  - reasoner: the model collaborator used by the consciousness loop
"""
from spirit.cognition.parsing import (
    ThinkingSplit,
    parse_question_lines,
    parse_thinking_result,
    parse_tool_calls,
    split_thinking_and_answer,
    strip_tool_call_blocks,
)
from spirit.cognition.reasoner import ChatReply, Reasoner, ThinkingModel

__all__ = [
    "ChatReply",
    "Reasoner",
    "ThinkingModel",
    "ThinkingSplit",
    "parse_question_lines",
    "parse_thinking_result",
    "parse_tool_calls",
    "split_thinking_and_answer",
    "strip_tool_call_blocks",
]
