"""
Secure Executor — the single door every side effect walks through.

``SecureExecutor.execute`` decides, for one labelled unit of work, whether it
may run right away, must wait for a human, or must be skipped. The decision
order is fixed:

    disabled → kill switch → whitelist → classifier → skip_confirm
             → policy → approval gate

The convenience wrappers (shell, delete, write, API call) only build a label
and a coroutine; they never bypass ``execute``.

Work that raises is captured into ``ExecuteResult.error``. Nothing a tool does
can crash the caller.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

import httpx
import structlog

from spirit.security.approval import ApprovalGate
from spirit.security.sensitivity import (
    OperationCategory,
    SensitivityVerdict,
    classify,
)

logger = structlog.get_logger(__name__)

# Write targets that always need a human, even when the label looks harmless.
IMPORTANT_PATHS: tuple[str, ...] = (
    "/etc",
    "/usr",
    "/bin",
    "package.json",
    "pyproject.toml",
    ".env",
    "config",
)


@dataclass
class ExecuteResult:
    """Outcome of one ``SecureExecutor.execute`` call."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None


@dataclass
class ShellOutput:
    returncode: int
    stdout: str
    stderr: str


class SecureExecutor:
    """
    Runs work under the approval gate's rules.

    Holds no operation state of its own. Whitelist and enable flag are
    configuration; everything stateful lives in the gate.
    """

    def __init__(
        self,
        gate: ApprovalGate,
        *,
        enabled: bool = True,
        whitelist: Iterable[str] = (),
        http_client: Optional[httpx.AsyncClient] = None,
        api_timeout: float = 30.0,
    ):
        self._gate = gate
        self._enabled = enabled
        self._whitelist = frozenset(whitelist)
        self._http_client = http_client
        self._api_timeout = api_timeout

        self._total_runs = 0
        self._total_skipped = 0
        self._total_failed = 0

    @property
    def gate(self) -> ApprovalGate:
        return self._gate

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def execute(
        self,
        operation: str,
        work: Callable[[], Awaitable[Any]],
        *,
        description: Optional[str] = None,
        force_confirm: bool = False,
        skip_confirm: bool = False,
        context: Optional[Mapping[str, Any]] = None,
        channel: Optional[str] = None,
        category: Optional[OperationCategory] = None,
    ) -> ExecuteResult:
        """
        Run ``work`` if the rules allow it, asking a human first when needed.

        ``category`` lets a caller that already knows what kind of operation
        this is skip the lexical classifier.
        """
        if not self._enabled:
            return await self._run(operation, work)

        if self._gate.kill_switch_active:
            logger.warning("secure_executor.skipped", operation=operation, reason="kill_switch")
            self._total_skipped += 1
            return ExecuteResult(
                success=False,
                skipped=True,
                reason="Kill switch is active; all operations are stopped",
            )

        if operation in self._whitelist:
            return await self._run(operation, work)

        if category is not None:
            verdict = SensitivityVerdict(True, category, f"Declared {category.value}")
        else:
            verdict = classify(operation, context)

        if not verdict.is_sensitive and not force_confirm:
            return await self._run(operation, work)

        if skip_confirm:
            logger.info("secure_executor.confirm_skipped", operation=operation)
            return await self._run(operation, work)

        policy = self._gate.policy_for(verdict.category)
        if not policy.require_confirm and not force_confirm:
            return await self._run(operation, work)

        logger.info(
            "secure_executor.awaiting_approval",
            operation=operation,
            category=verdict.category.value,
            reason=verdict.reason,
        )
        approved = await self._gate.request_approval(
            verdict.category,
            operation,
            description or verdict.reason or operation,
            context=context,
            channel=channel,
            force=force_confirm,
        )
        if not approved:
            logger.info("secure_executor.skipped", operation=operation, reason="not_approved")
            self._total_skipped += 1
            return ExecuteResult(
                success=False,
                skipped=True,
                reason="Operation was not approved",
            )
        return await self._run(operation, work)

    async def _run(self, operation: str, work: Callable[[], Awaitable[Any]]) -> ExecuteResult:
        self._total_runs += 1
        try:
            data = await work()
        except Exception as exc:
            self._total_failed += 1
            logger.error("secure_executor.work_failed", operation=operation, error=str(exc))
            return ExecuteResult(success=False, error=str(exc) or type(exc).__name__)
        return ExecuteResult(success=True, data=data)

    # -------------------------------------------------------------------------
    # Convenience wrappers
    # -------------------------------------------------------------------------

    async def execute_shell(
        self,
        command: str,
        cwd: Optional[str] = None,
        timeout: float = 30.0,
        **options: Any,
    ) -> ExecuteResult:
        async def _work() -> ShellOutput:
            proc = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise TimeoutError(f"Command timed out after {timeout}s")
            return ShellOutput(
                returncode=proc.returncode if proc.returncode is not None else -1,
                stdout=stdout.decode("utf-8", errors="replace"),
                stderr=stderr.decode("utf-8", errors="replace"),
            )

        return await self.execute(command, _work, **options)

    async def delete_file(self, path: str, **options: Any) -> ExecuteResult:
        async def _work() -> dict[str, Any]:
            Path(path).unlink()
            return {"deleted": path}

        return await self.execute(f"delete {path}", _work, **options)

    async def write_file(self, path: str, content: str, **options: Any) -> ExecuteResult:
        async def _work() -> dict[str, Any]:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            return {"written": path, "bytes": len(content.encode("utf-8"))}

        if any(marker in path for marker in IMPORTANT_PATHS):
            options.setdefault("force_confirm", True)
            return await self.execute(f"modify important file {path}", _work, **options)
        return await self.execute(f"write {path}", _work, **options)

    async def call_api(
        self,
        url: str,
        method: str = "GET",
        sensitive: bool = False,
        **request_kwargs: Any,
    ) -> ExecuteResult:
        async def _work() -> dict[str, Any]:
            if self._http_client is not None:
                response = await self._http_client.request(method, url, **request_kwargs)
            else:
                async with httpx.AsyncClient(timeout=self._api_timeout) as client:
                    response = await client.request(method, url, **request_kwargs)
            response.raise_for_status()
            try:
                body: Any = response.json()
            except ValueError:
                body = response.text
            return {"status_code": response.status_code, "body": body}

        return await self.execute(
            f"API call: {url}",
            _work,
            category=OperationCategory.API_CALL,
            force_confirm=sensitive,
        )

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "whitelist_size": len(self._whitelist),
            "total_runs": self._total_runs,
            "total_skipped": self._total_skipped,
            "total_failed": self._total_failed,
        }
