"""
Spirit — runtime wiring and entry point.

``build_runtime()`` assembles every subsystem from a ``SpiritConfig``:

    BrainStore ─┐
    CognitiveEngine → Reasoner ─┐
    ApprovalChannel → ApprovalGate → SecureExecutor → ToolRegistry
                                └──────────────┬──────────────┘
                                        ConsciousnessLoop

``SpiritRuntime.run_forever()`` starts the gate's sweep and the loop, then
sleeps until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from spirit.api.claude import CognitiveEngine
from spirit.channels.base import ApprovalChannel
from spirit.channels.console import ConsoleApprovalChannel
from spirit.channels.webhook import WebhookApprovalChannel
from spirit.cognition.reasoner import Reasoner
from spirit.config import SpiritConfig
from spirit.heartbeat import ConsciousnessLoop
from spirit.memory.store import BrainStore
from spirit.security.approval import ApprovalGate
from spirit.security.executor import SecureExecutor
from spirit.security.sensitivity import resolve_policies
from spirit.tools.builtin import register_builtin_tools
from spirit.tools.registry import ToolRegistry

_SENSITIVE_KEYS = ("api_key", "token", "authorization", "password", "secret")
_MAX_COMMAND_LEN = 200


def _redact_sensitive_fields(logger, method_name, event_dict):
    """
    Structlog processor that keeps credentials and huge commands out of logs.

    Any key containing a sensitive word is masked; long ``command`` and
    ``operation`` values are truncated.
    """
    for key in list(event_dict):
        lowered = key.lower()
        if any(word in lowered for word in _SENSITIVE_KEYS):
            event_dict[key] = "[REDACTED]"
    for key in ("command", "operation"):
        val = event_dict.get(key)
        if isinstance(val, str) and len(val) > _MAX_COMMAND_LEN:
            event_dict[key] = val[:_MAX_COMMAND_LEN] + "... [truncated]"
    return event_dict


_logging_configured = False


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog and standard-library logging.

    Only the first call takes effect.
    """
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_sensitive_fields,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


logger = structlog.get_logger(__name__)


@dataclass
class SpiritRuntime:
    """Every long-lived subsystem of a running agent."""

    config: SpiritConfig
    store: BrainStore
    gate: ApprovalGate
    executor: SecureExecutor
    tools: ToolRegistry
    reasoner: Reasoner
    loop: ConsciousnessLoop
    engine: Any = None
    _shutdown: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    async def start(self) -> None:
        self.store.initialize()
        await self.gate.start()
        await self.loop.start()
        logger.info("spirit.started", config=repr(self.config))

    async def stop(self) -> None:
        await self.loop.stop()
        await self.gate.stop()
        summary = self.stats()
        self.store.close()
        logger.info("spirit.stopped", **summary)

    def stats(self) -> dict[str, Any]:
        """Counters from the gate, the executor and the store. Needs an open store."""
        return {
            "gate": self.gate.stats,
            "executor": self.executor.stats,
            "store": self.store.stats(),
        }

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def run_forever(self) -> None:
        """Run until SIGINT or SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                logger.warning("spirit.signal_handlers_unsupported", signal=sig.name)
        await self.start()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()


def build_channel(config: SpiritConfig) -> ApprovalChannel:
    if config.security.webhook_url:
        return WebhookApprovalChannel(
            config.security.webhook_url,
            timeout=config.security.webhook_timeout_seconds,
        )
    return ConsoleApprovalChannel()


def build_runtime(
    config: Optional[SpiritConfig] = None,
    *,
    engine: Any = None,
    channel: Optional[ApprovalChannel] = None,
    store: Optional[BrainStore] = None,
) -> SpiritRuntime:
    """
    Wire every subsystem together.

    ``engine`` defaults to a ``CognitiveEngine`` built from the model config;
    pass any object with ``complete(system_prompt, messages)`` to replace it.
    """
    config = config or SpiritConfig()
    security = config.security

    store = store or BrainStore(config.memory.db_path)
    gate = ApprovalGate(
        channel if channel is not None else build_channel(config),
        policies=resolve_policies(security.sensitivity_overrides),
        kill_switch_cooldown=security.kill_switch_cooldown_seconds,
        sweep_interval=security.sweep_interval_seconds,
        preview_chars=security.preview_chars,
        default_channel=security.default_channel,
    )
    executor = SecureExecutor(gate, enabled=security.enabled, whitelist=security.whitelist)
    tools = ToolRegistry(executor)
    register_builtin_tools(tools, executor)

    engine = engine if engine is not None else CognitiveEngine(config.model)
    reasoner = Reasoner(
        engine,
        tools=tools,
        question_count=config.consciousness.curiosity_questions,
    )
    loop = ConsciousnessLoop(store, reasoner, config.consciousness, tools=tools)
    return SpiritRuntime(
        config=config,
        store=store,
        gate=gate,
        executor=executor,
        tools=tools,
        reasoner=reasoner,
        loop=loop,
        engine=engine,
    )


def main() -> None:
    from spirit.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
