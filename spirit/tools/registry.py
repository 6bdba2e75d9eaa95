"""
Tool Registry — the agent's catalog of capabilities.

Every tool the agent can use is registered here with a description, an
argument sketch, and an async handler. The registry serves two purposes:

1. DISCOVERY: ``describe()`` renders the catalog for the system prompt, so
   the model knows which ``{"tool": ..., "args": ...}`` calls it may emit.

2. DISPATCH: when a tool call is parsed out of a reply, ``dispatch()`` maps
   the name to its handler and captures the outcome as a ``ToolResult``.

Handlers that wrap a ``SecureExecutor`` method are already gated. Tools
registered with ``secure=True`` are wrapped in ``SecureExecutor.execute`` at
dispatch time, so third-party handlers get the same approval path.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

import structlog

from spirit.security.executor import ExecuteResult
from spirit.types import ToolCall

if TYPE_CHECKING:
    from spirit.security.executor import SecureExecutor

logger = structlog.get_logger(__name__)


@dataclass
class ToolDefinition:
    """A registered tool with its description, argument sketch and handler."""

    name: str
    description: str
    handler: Callable[..., Awaitable[Any]]
    parameters: dict[str, str] = field(default_factory=dict)   # arg name -> short description
    category: str = "general"
    secure: bool = False          # wrap in SecureExecutor.execute on dispatch
    enabled: bool = True


@dataclass
class ToolResult:
    """Outcome of one dispatched tool call."""

    tool: str
    success: bool
    output: Any = None
    error: Optional[str] = None
    skipped: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "skipped": self.skipped,
        }

    def summary(self) -> str:
        if self.success:
            return f"{self.tool}: ok"
        if self.skipped:
            return f"{self.tool}: skipped ({self.error or 'not approved'})"
        return f"{self.tool}: {self.error or 'failed'}"


class ToolRegistry:
    """Central registry for all tools available to the agent."""

    def __init__(self, executor: Optional[SecureExecutor] = None):
        self._tools: dict[str, ToolDefinition] = {}
        self._executor = executor
        logger.info("tool_registry.initialized")

    def register(self, tool: ToolDefinition, *, allow_override: bool = False) -> None:
        """Register a tool, blocking accidental name collisions by default."""
        if tool.name in self._tools and not allow_override:
            raise ValueError(
                f"Tool '{tool.name}' is already registered. "
                "Use allow_override=True for an explicit replacement."
            )
        self._tools[tool.name] = tool
        logger.debug("tool_registry.registered", name=tool.name, category=tool.category)

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(name for name, tool in self._tools.items() if tool.enabled)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def describe(self) -> str:
        """Render enabled tools as prompt text."""
        lines = []
        for name in self.names():
            tool = self._tools[name]
            line = f"- {name}: {tool.description}"
            if tool.parameters:
                params = ", ".join(f"{arg} ({desc})" for arg, desc in tool.parameters.items())
                line += f" Args: {params}."
            lines.append(line)
        return "\n".join(lines)

    async def dispatch(self, call: ToolCall) -> ToolResult:
        """Run one tool call. Never raises; failures land in the result."""
        tool = self._tools.get(call.tool)
        if tool is None or not tool.enabled:
            logger.warning("tool_registry.unknown_tool", tool=call.tool)
            return ToolResult(tool=call.tool, success=False, error=f"Unknown tool: {call.tool}")

        if tool.secure and self._executor is not None:
            label = f"{tool.name} {json.dumps(call.args, ensure_ascii=False, sort_keys=True)}"
            outcome: Any = await self._executor.execute(
                label,
                lambda: tool.handler(**call.args),
                description=tool.description,
            )
        else:
            try:
                outcome = await tool.handler(**call.args)
            except Exception as exc:
                logger.error(
                    "tool_registry.handler_failed",
                    tool=tool.name,
                    error=str(exc),
                    exc_info=True,
                )
                return ToolResult(tool=tool.name, success=False, error=str(exc) or type(exc).__name__)

        if isinstance(outcome, ExecuteResult):
            return ToolResult(
                tool=tool.name,
                success=outcome.success,
                output=outcome.data,
                error=outcome.error or outcome.reason,
                skipped=outcome.skipped,
            )
        return ToolResult(tool=tool.name, success=True, output=outcome)
