"""
Built-in tools.

Each one is a thin adapter over a ``SecureExecutor`` wrapper, so every
side effect the model asks for is classified and, when sensitive, held for
approval before it runs.
"""

from __future__ import annotations

from typing import Any, Optional

from spirit.security.executor import ExecuteResult, SecureExecutor
from spirit.tools.registry import ToolDefinition, ToolRegistry


def register_builtin_tools(registry: ToolRegistry, executor: SecureExecutor) -> None:

    async def shell(command: str, cwd: Optional[str] = None, timeout: float = 30.0) -> ExecuteResult:
        result = await executor.execute_shell(command, cwd=cwd, timeout=float(timeout))
        if result.success and result.data is not None:
            output = result.data
            result.data = {
                "returncode": output.returncode,
                "stdout": output.stdout,
                "stderr": output.stderr,
            }
        return result

    async def delete_file(path: str) -> ExecuteResult:
        return await executor.delete_file(path)

    async def write_file(path: str, content: str) -> ExecuteResult:
        return await executor.write_file(path, content)

    async def call_api(
        url: str,
        method: str = "GET",
        sensitive: bool = False,
        body: Any = None,
    ) -> ExecuteResult:
        kwargs: dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body
        return await executor.call_api(url, method=method.upper(), sensitive=bool(sensitive), **kwargs)

    registry.register(ToolDefinition(
        name="shell",
        description="Run a shell command and return its output.",
        handler=shell,
        parameters={"command": "command line", "cwd": "optional working directory"},
        category="system",
    ))
    registry.register(ToolDefinition(
        name="delete_file",
        description="Delete a file.",
        handler=delete_file,
        parameters={"path": "file path"},
        category="filesystem",
    ))
    registry.register(ToolDefinition(
        name="write_file",
        description="Write text to a file, creating parent directories.",
        handler=write_file,
        parameters={"path": "file path", "content": "text to write"},
        category="filesystem",
    ))
    registry.register(ToolDefinition(
        name="call_api",
        description="Make an HTTP request and return the status and body.",
        handler=call_api,
        parameters={
            "url": "absolute URL",
            "method": "HTTP method, default GET",
            "sensitive": "true to require approval",
            "body": "optional JSON body",
        },
        category="network",
    ))
