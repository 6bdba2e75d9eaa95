"""
Model response parsing.

Models are asked for structured output but answer in free text. This module
pulls the structure back out, and never raises: malformed fragments are
skipped, and unparseable replies degrade to something usable.

Tool calls may arrive in any of three encodings, tried in order (the first
encoding that yields at least one call wins):

1. Fenced blocks:   ```tool_call {"tool": "shell", "args": {...}} ```
2. Inline objects:  ... then {"tool": "shell", "args": {...}} somewhere in prose
3. Whole reply:     the entire trimmed reply is one JSON object

Visible reasoning may be marked with labelled sections ([Thinking] / [Reply],
or [思考] / [回复]) or with <thinking>/<response> tags.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

from spirit.types import ThinkingResult, ToolCall

_FENCED_RE = re.compile(r"```tool_call\s*\n?([\s\S]*?)\n?```")
_INLINE_START_RE = re.compile(r'\{\s*"tool"\s*:')
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

_THINK_LABEL = r"\[(?:思考|thinking)\]"
_REPLY_LABEL = r"\[(?:回复|reply)\]"
_LABELLED_RE = re.compile(
    _THINK_LABEL + r"\s*([\s\S]*?)" + _REPLY_LABEL + r"\s*([\s\S]*?)$",
    re.IGNORECASE,
)
_THINKING_TAG_RE = re.compile(r"<thinking>([\s\S]*?)</thinking>", re.IGNORECASE)
_RESPONSE_TAG_RE = re.compile(r"<response>([\s\S]*?)</response>", re.IGNORECASE)
_MARKER_RE = re.compile(
    _THINK_LABEL + "|" + _REPLY_LABEL + r"|</?thinking>|</?response>",
    re.IGNORECASE,
)

_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]+|\d+[.)、]|[（(]?\d+[）)])\s*")

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class ThinkingSplit:
    thinking: Optional[str]
    answer: str


def _to_tool_call(obj: Any) -> Optional[ToolCall]:
    if not isinstance(obj, dict):
        return None
    tool = obj.get("tool")
    if not isinstance(tool, str) or not tool.strip():
        return None
    args = obj.get("args")
    return ToolCall(tool=tool.strip(), args=args if isinstance(args, dict) else {})


def _loads(fragment: str) -> Any:
    try:
        return json.loads(fragment)
    except (ValueError, RecursionError):
        return None


def _fenced_calls(text: str) -> list[ToolCall]:
    calls = []
    for match in _FENCED_RE.finditer(text):
        call = _to_tool_call(_loads(match.group(1).strip()))
        if call is not None:
            calls.append(call)
    return calls


def _inline_calls(text: str) -> list[ToolCall]:
    calls = []
    pos = 0
    while True:
        match = _INLINE_START_RE.search(text, pos)
        if match is None:
            break
        try:
            obj, end = _decoder.raw_decode(text, match.start())
        except (ValueError, RecursionError):
            pos = match.end()
            continue
        call = _to_tool_call(obj)
        if call is not None:
            calls.append(call)
        pos = end
    return calls


def _whole_text_call(text: str) -> list[ToolCall]:
    stripped = text.strip()
    if not stripped.startswith("{"):
        return []
    call = _to_tool_call(_loads(stripped))
    return [call] if call is not None else []


def parse_tool_calls(text: str) -> list[ToolCall]:
    """Extract tool invocations from a model reply; empty list if none."""
    if not text:
        return []
    for stage in (_fenced_calls, _inline_calls, _whole_text_call):
        calls = stage(text)
        if calls:
            return calls
    return []


def strip_tool_call_blocks(text: str) -> str:
    """Remove fenced tool_call blocks from a reply."""
    return re.sub(r"```tool_call[\s\S]*?```", "", text or "").strip()


def split_thinking_and_answer(text: str) -> ThinkingSplit:
    """
    Separate visible reasoning from the user-facing answer.

    Labelled sections win over tags. When neither is present the whole text
    is the answer. Leftover labels and tags are stripped from the answer.
    """
    text = text or ""
    thinking: Optional[str] = None
    answer = text

    labelled = _LABELLED_RE.search(text)
    if labelled:
        thinking = labelled.group(1).strip()
        answer = labelled.group(2)
    else:
        tagged_thinking = _THINKING_TAG_RE.search(text)
        tagged_response = _RESPONSE_TAG_RE.search(text)
        if tagged_thinking:
            thinking = tagged_thinking.group(1).strip()
            if not tagged_response:
                answer = text[:tagged_thinking.start()] + text[tagged_thinking.end():]
        if tagged_response:
            answer = tagged_response.group(1)

    answer = _MARKER_RE.sub("", answer).strip()
    return ThinkingSplit(thinking=thinking, answer=answer)


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def parse_thinking_result(raw: str) -> ThinkingResult:
    """
    Parse a JSON-shaped thinking reply.

    Takes the outermost ``{...}`` span so prose or code fences around the
    object are tolerated. Any failure degrades to ``thoughts=raw``.
    """
    raw = raw or ""
    match = _JSON_OBJECT_RE.search(raw)
    if not match:
        return ThinkingResult.degraded(raw)
    data = _loads(match.group(0))
    if not isinstance(data, dict):
        return ThinkingResult.degraded(raw)
    thoughts = data.get("thoughts", "")
    return ThinkingResult(
        thoughts=thoughts if isinstance(thoughts, str) else json.dumps(thoughts, ensure_ascii=False),
        decisions=_str_list(data.get("decisions")),
        questions=_str_list(data.get("questions")),
        learnings=_str_list(data.get("learnings")),
    )


def parse_question_lines(raw: str, limit: int = 5) -> list[str]:
    """One question per non-blank line, list markers removed, at most ``limit``."""
    questions = []
    for line in (raw or "").splitlines():
        cleaned = _LIST_MARKER_RE.sub("", line).strip()
        if cleaned:
            questions.append(cleaned)
        if len(questions) >= limit:
            break
    return questions
