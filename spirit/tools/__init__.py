"""Tool system — the agent's hands in the world."""
from spirit.tools.builtin import register_builtin_tools
from spirit.tools.registry import ToolDefinition, ToolRegistry, ToolResult

__all__ = ["ToolRegistry", "ToolDefinition", "ToolResult", "register_builtin_tools"]
