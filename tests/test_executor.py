"""
Tests for spirit.security.executor — the secure executor and its wrappers.
"""

from __future__ import annotations

import asyncio
import sys

import httpx
import pytest

from conftest import RecordingChannel, wait_for_request
from spirit.security.approval import ApprovalAction, ApprovalGate
from spirit.security.executor import SecureExecutor
from spirit.security.sensitivity import OperationCategory


def _executor(gate: ApprovalGate, **kwargs) -> SecureExecutor:
    return SecureExecutor(gate, **kwargs)


async def _work_result() -> str:
    return "done"


# ---------------------------------------------------------------------------
# Decision order
# ---------------------------------------------------------------------------

class TestExecuteOrder:

    @pytest.mark.asyncio
    async def test_non_sensitive_runs_immediately(self, gate, channel):
        result = await _executor(gate).execute("summarize notes", _work_result)
        assert result.success is True
        assert result.data == "done"
        assert channel.requests == []

    @pytest.mark.asyncio
    async def test_disabled_executor_runs_even_when_killed(self, gate):
        gate.kill_all()
        result = await _executor(gate, enabled=False).execute("sudo reboot", _work_result)
        assert result.success is True

    @pytest.mark.asyncio
    async def test_kill_switch_skips_everything(self, gate):
        gate.kill_all()
        ran = False

        async def _work():
            nonlocal ran
            ran = True

        result = await _executor(gate).execute("summarize notes", _work)
        assert result.skipped is True
        assert result.success is False
        assert "Kill switch" in result.reason
        assert ran is False

    @pytest.mark.asyncio
    async def test_whitelist_bypasses_confirmation(self, gate, channel):
        executor = _executor(gate, whitelist=["sudo systemctl status app"])
        result = await executor.execute("sudo systemctl status app", _work_result)
        assert result.success is True
        assert channel.requests == []

    @pytest.mark.asyncio
    async def test_skip_confirm_runs_sensitive_work(self, gate, channel):
        result = await _executor(gate).execute("sudo ls", _work_result, skip_confirm=True)
        assert result.success is True
        assert channel.requests == []

    @pytest.mark.asyncio
    async def test_sensitive_work_waits_for_approval(self, gate, channel):
        executor = _executor(gate)
        task = asyncio.create_task(executor.execute("sudo ls", _work_result, description="list"))
        request = await wait_for_request(channel)
        assert request.category is OperationCategory.SHELL_COMMAND
        assert request.description == "list"

        gate.resolve(request.operation_id, ApprovalAction.APPROVE)

        result = await task
        assert result.success is True
        assert result.data == "done"

    @pytest.mark.asyncio
    async def test_rejected_work_is_skipped(self, gate, channel):
        executor = _executor(gate)
        ran = False

        async def _work():
            nonlocal ran
            ran = True

        task = asyncio.create_task(executor.execute("pay the bill", _work))
        request = await wait_for_request(channel)
        gate.resolve(request.operation_id, ApprovalAction.REJECT)

        result = await task
        assert result.skipped is True
        assert result.reason == "Operation was not approved"
        assert ran is False

    @pytest.mark.asyncio
    async def test_force_confirm_uses_unknown_policy_for_harmless_labels(self, gate, channel):
        task = asyncio.create_task(
            _executor(gate).execute("tidy notes", _work_result, force_confirm=True)
        )
        request = await wait_for_request(channel)
        assert request.category is OperationCategory.UNKNOWN
        gate.resolve(request.operation_id, ApprovalAction.APPROVE)
        assert (await task).success is True

    @pytest.mark.asyncio
    async def test_declared_category_without_confirmation_runs(self, gate, channel):
        result = await _executor(gate).execute(
            "API call: https://example.com/a",
            _work_result,
            category=OperationCategory.API_CALL,
        )
        assert result.success is True
        assert channel.requests == []

    @pytest.mark.asyncio
    async def test_work_exceptions_are_captured(self, gate):
        async def _boom():
            raise ValueError("disk full")

        result = await _executor(gate).execute("summarize notes", _boom)
        assert result.success is False
        assert result.error == "disk full"

    @pytest.mark.asyncio
    async def test_undeliverable_request_is_skipped(self):
        gate = ApprovalGate(RecordingChannel(accept=False))
        result = await _executor(gate).execute("sudo ls", _work_result)
        assert result.skipped is True


# ---------------------------------------------------------------------------
# Wrappers
# ---------------------------------------------------------------------------

class TestWrappers:

    @pytest.mark.asyncio
    async def test_execute_shell_captures_output(self, gate):
        executor = _executor(gate, whitelist=[f'{sys.executable} -c "print(42)"'])
        result = await executor.execute_shell(f'{sys.executable} -c "print(42)"')
        assert result.success is True
        assert result.data.returncode == 0
        assert result.data.stdout.strip() == "42"

    @pytest.mark.asyncio
    async def test_execute_shell_timeout_is_an_error(self, gate):
        command = f'{sys.executable} -c "import time; time.sleep(5)"'
        executor = _executor(gate, whitelist=[command])
        result = await executor.execute_shell(command, timeout=0.2)
        assert result.success is False
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_forced_rm_waits_for_approval(self, gate, channel, tmp_path):
        target = tmp_path / "keep.txt"
        target.write_text("stay")
        task = asyncio.create_task(_executor(gate).execute_shell("rm -f keep.txt", cwd=str(tmp_path)))
        request = await wait_for_request(channel)
        assert request.category is OperationCategory.FILE_DELETE
        gate.resolve(request.operation_id, "reject")
        assert (await task).skipped is True
        assert target.exists()

    @pytest.mark.asyncio
    async def test_delete_file_requires_approval(self, gate, channel, tmp_path):
        target = tmp_path / "old.txt"
        target.write_text("bye")
        task = asyncio.create_task(_executor(gate).delete_file(str(target)))
        request = await wait_for_request(channel)
        assert request.category is OperationCategory.FILE_DELETE
        assert request.command_preview == f"delete {target}"
        gate.resolve(request.operation_id, "approve")
        assert (await task).success is True
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_write_file_to_important_path_is_force_confirmed(self, gate, channel, tmp_path):
        target = tmp_path / "pyproject.toml"
        task = asyncio.create_task(_executor(gate).write_file(str(target), "[project]"))
        request = await wait_for_request(channel)
        assert request.command_preview.startswith("modify important file ")
        gate.resolve(request.operation_id, "reject")
        assert (await task).skipped is True
        assert not target.exists()

    @pytest.mark.asyncio
    async def test_write_file_label(self, gate, channel, tmp_path):
        target = tmp_path / "notes.txt"
        task = asyncio.create_task(_executor(gate).write_file(str(target), "hello"))
        request = await wait_for_request(channel)
        assert request.command_preview == f"write {target}"
        gate.resolve(request.operation_id, "approve")
        result = await task
        assert result.success is True
        assert target.read_text() == "hello"

    @pytest.mark.asyncio
    async def test_call_api_runs_without_confirmation(self, gate, channel):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"ok": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            executor = _executor(gate, http_client=client)
            result = await executor.call_api("https://example.com/status")

        assert result.success is True
        assert result.data == {"status_code": 200, "body": {"ok": True}}
        assert channel.requests == []

    @pytest.mark.asyncio
    async def test_sensitive_call_api_requires_approval(self, gate, channel):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, text="created")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            executor = _executor(gate, http_client=client)
            task = asyncio.create_task(
                executor.call_api("https://example.com/orders", method="POST", sensitive=True)
            )
            request = await wait_for_request(channel)
            assert request.category is OperationCategory.API_CALL
            assert request.command_preview == "API call: https://example.com/orders"
            gate.resolve(request.operation_id, "approve")
            result = await task

        assert result.success is True
        assert result.data["status_code"] == 201

    @pytest.mark.asyncio
    async def test_call_api_http_error_is_captured(self, gate):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await _executor(gate, http_client=client).call_api("https://example.com")

        assert result.success is False
        assert "500" in result.error
