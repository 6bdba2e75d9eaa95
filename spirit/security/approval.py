"""
Approval Gate — the human in the loop.

When the agent wants to do something sensitive, this module holds the action
until a human decides. Each request becomes a PendingOperation with its own
deadline and its own future; the caller awaits that future and resumes with
True (approved) or False (rejected, expired, cancelled, undeliverable).

State machine per operation:

    pending --approve-->  approved
    pending --reject-->   rejected
    pending --timeout-->  expired
    pending --kill_all--> cancelled

All four are terminal. An operation leaves the registry the moment it settles,
so the registry only ever holds pending operations.

The kill switch dominates everything: while it is active every request is
rejected on sight, and flipping it settles every outstanding operation as
cancelled. It clears itself after a cool-down unless resumed by hand first.

The gate is a single-owner asyncio object. All mutation happens on the event
loop thread, so no lock is needed; the per-operation future is the
resolve-exactly-once primitive.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Mapping, Optional

import structlog

from spirit.security.sensitivity import (
    OPERATION_POLICIES,
    OperationCategory,
    OperationPolicy,
    RiskLevel,
)

if TYPE_CHECKING:
    from spirit.channels.base import ApprovalChannel

logger = structlog.get_logger(__name__)

DEFAULT_KILL_SWITCH_COOLDOWN = 300.0
DEFAULT_SWEEP_INTERVAL = 10.0
DEFAULT_PREVIEW_CHARS = 500
_SETTLED_MEMORY = 256


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class ApprovalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    KILL_ALL = "kill_all"


@dataclass
class PendingOperation:
    """One outstanding approval request."""

    id: str
    category: OperationCategory
    description: str
    command: str
    context: dict[str, Any]
    created_at: datetime
    expires_at: datetime
    deadline: float                     # clock() value at which the operation expires
    status: ApprovalStatus = ApprovalStatus.PENDING
    future: Optional[asyncio.Future[bool]] = field(default=None, repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "description": self.description,
            "command": self.command,
            "context": dict(self.context),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ConfirmationRequest:
    """What the delivery channel needs to ask a human."""

    operation_id: str
    category: OperationCategory
    risk_level: RiskLevel
    category_description: str
    command_preview: str
    description: str
    timeout_seconds: float
    channel: str = ""


@dataclass(frozen=True)
class ResolveResult:
    """Outcome of an inbound resolve call."""

    success: bool
    message: str
    status: Optional[ApprovalStatus] = None


def generate_operation_id() -> str:
    return f"op_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def preview_command(command: str, limit: int = DEFAULT_PREVIEW_CHARS) -> str:
    if len(command) <= limit:
        return command
    return command[:limit] + "..."


class ApprovalGate:
    """
    Registry of pending approvals plus the global kill switch.

    ``request_approval`` suspends its caller; ``resolve`` and ``kill_all``
    resume callers. A background sweep (``start``/``stop``) expires anything
    whose own timer somehow missed its deadline.
    """

    def __init__(
        self,
        channel: Optional[ApprovalChannel] = None,
        *,
        policies: Optional[Mapping[OperationCategory, OperationPolicy]] = None,
        kill_switch_cooldown: float = DEFAULT_KILL_SWITCH_COOLDOWN,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        preview_chars: int = DEFAULT_PREVIEW_CHARS,
        default_channel: str = "",
        clock: Callable[[], float] = time.monotonic,
    ):
        self._channel = channel
        self._policies = policies if policies is not None else OPERATION_POLICIES
        self._kill_switch_cooldown = float(kill_switch_cooldown)
        self._sweep_interval = float(sweep_interval)
        self._preview_chars = int(preview_chars)
        self._default_channel = default_channel
        self._clock = clock

        self._pending: dict[str, PendingOperation] = {}
        self._settled: OrderedDict[str, ApprovalStatus] = OrderedDict()
        self._kill_switch_until: Optional[float] = None
        self._sweep_task: Optional[asyncio.Task[None]] = None

        self._total_requests = 0
        self._total_approved = 0
        self._total_denied = 0

        logger.info(
            "approval_gate.initialized",
            kill_switch_cooldown=self._kill_switch_cooldown,
            sweep_interval=self._sweep_interval,
            has_channel=channel is not None,
        )

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    @property
    def policies(self) -> Mapping[OperationCategory, OperationPolicy]:
        return self._policies

    def policy_for(self, category: OperationCategory) -> OperationPolicy:
        return self._policies.get(category, self._policies[OperationCategory.UNKNOWN])

    # -------------------------------------------------------------------------
    # Kill switch
    # -------------------------------------------------------------------------

    @property
    def kill_switch_active(self) -> bool:
        if self._kill_switch_until is None:
            return False
        if self._clock() >= self._kill_switch_until:
            self._kill_switch_until = None
            logger.info("approval_gate.kill_switch_auto_cleared")
            return False
        return True

    def kill_all(self) -> int:
        """
        Engage the kill switch and cancel every pending operation.

        Returns the number of operations cancelled.
        """
        self._kill_switch_until = self._clock() + self._kill_switch_cooldown
        cancelled = 0
        for op in list(self._pending.values()):
            if self._settle(op, ApprovalStatus.CANCELLED, approved=False):
                cancelled += 1
        self._pending.clear()
        logger.critical(
            "approval_gate.KILL_SWITCH",
            cancelled=cancelled,
            cooldown_seconds=self._kill_switch_cooldown,
        )
        return cancelled

    def resume(self) -> None:
        """Clear the kill switch before its cool-down elapses."""
        was_active = self._kill_switch_until is not None
        self._kill_switch_until = None
        if was_active:
            logger.info("approval_gate.kill_switch_cleared")

    # -------------------------------------------------------------------------
    # Requesting approval
    # -------------------------------------------------------------------------

    async def request_approval(
        self,
        category: OperationCategory,
        command: str,
        description: str,
        context: Optional[Mapping[str, Any]] = None,
        channel: Optional[str] = None,
        force: bool = False,
    ) -> bool:
        """
        Ask a human to approve an operation and wait for the answer.

        Categories whose policy does not require confirmation pass straight
        through unless ``force`` is set. Otherwise returns True only on
        explicit approval; rejection, timeout, kill switch and delivery
        failure all return False.
        """
        self._total_requests += 1
        if self.kill_switch_active:
            logger.warning("approval_gate.kill_switch_rejected", category=category.value)
            self._total_denied += 1
            return False

        policy = self.policy_for(category)
        if not policy.require_confirm and not force:
            self._total_approved += 1
            return True

        loop = asyncio.get_running_loop()
        now = datetime.now(timezone.utc)
        op = PendingOperation(
            id=generate_operation_id(),
            category=category,
            description=description,
            command=command,
            context=dict(context or {}),
            created_at=now,
            expires_at=now + timedelta(seconds=policy.timeout_seconds),
            deadline=self._clock() + policy.timeout_seconds,
            future=loop.create_future(),
        )
        self._pending[op.id] = op
        logger.info(
            "approval_gate.requested",
            operation_id=op.id,
            category=category.value,
            level=policy.level.value,
            timeout=policy.timeout_seconds,
        )

        request = ConfirmationRequest(
            operation_id=op.id,
            category=category,
            risk_level=policy.level,
            category_description=policy.description,
            command_preview=preview_command(command, self._preview_chars),
            description=description,
            timeout_seconds=policy.timeout_seconds,
            channel=channel or self._default_channel,
        )
        try:
            if not await self._deliver(request):
                if self._pending.pop(op.id, None) is not None and not op.future.done():
                    op.future.cancel()
                logger.error("approval_gate.delivery_failed", operation_id=op.id)
                self._total_denied += 1
                return False

            # shield() keeps the future alive on timeout so _settle records the outcome.
            approved = await asyncio.wait_for(
                asyncio.shield(op.future),
                timeout=policy.timeout_seconds,
            )
        except asyncio.TimeoutError:
            if self._settle(op, ApprovalStatus.EXPIRED, approved=False):
                logger.info("approval_gate.expired", operation_id=op.id)
            approved = op.future.result()
        except asyncio.CancelledError:
            self._settle(op, ApprovalStatus.CANCELLED, approved=False)
            raise

        if approved:
            self._total_approved += 1
        else:
            self._total_denied += 1
        return approved

    async def _deliver(self, request: ConfirmationRequest) -> bool:
        if self._channel is None:
            logger.warning("approval_gate.no_channel", operation_id=request.operation_id)
            return False
        try:
            return bool(await self._channel.send_confirmation_request(request))
        except Exception:
            logger.error(
                "approval_gate.channel_error",
                operation_id=request.operation_id,
                exc_info=True,
            )
            return False

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(self, operation_id: str, action: ApprovalAction | str) -> ResolveResult:
        """
        Settle a pending operation from an inbound human response.

        Idempotent: resolving an id that already settled is a no-op that
        reports the terminal status.
        """
        try:
            action = ApprovalAction(action)
        except ValueError:
            return ResolveResult(False, f"Unknown action: {action}")

        if action is ApprovalAction.KILL_ALL:
            cancelled = self.kill_all()
            minutes = self._kill_switch_cooldown / 60.0
            return ResolveResult(
                True,
                f"All operations stopped ({cancelled} cancelled); "
                f"resuming in {minutes:g} minutes",
                ApprovalStatus.CANCELLED,
            )

        op = self._pending.get(operation_id)
        if op is None or op.status is not ApprovalStatus.PENDING:
            previous = self._settled.get(operation_id)
            if previous is not None:
                return ResolveResult(
                    False, f"Operation already {previous.value}", previous,
                )
            return ResolveResult(False, "Operation not found or expired")

        if action is ApprovalAction.APPROVE:
            self._settle(op, ApprovalStatus.APPROVED, approved=True)
            logger.info("approval_gate.approved", operation_id=operation_id)
            return ResolveResult(True, "Operation approved", ApprovalStatus.APPROVED)

        self._settle(op, ApprovalStatus.REJECTED, approved=False)
        logger.info("approval_gate.rejected", operation_id=operation_id)
        return ResolveResult(True, "Operation rejected", ApprovalStatus.REJECTED)

    def on_approval_response(self, operation_id: str, action: ApprovalAction | str) -> ResolveResult:
        """Inbound callback for delivery channels."""
        return self.resolve(operation_id, action)

    def _settle(self, op: PendingOperation, status: ApprovalStatus, approved: bool) -> bool:
        """Move ``op`` to a terminal status and wake its caller, exactly once."""
        if op.status is not ApprovalStatus.PENDING:
            return False
        op.status = status
        self._pending.pop(op.id, None)
        self._settled[op.id] = status
        while len(self._settled) > _SETTLED_MEMORY:
            self._settled.popitem(last=False)
        if op.future is not None and not op.future.done():
            op.future.set_result(approved)
        return True

    # -------------------------------------------------------------------------
    # Background sweep
    # -------------------------------------------------------------------------

    def sweep_expired(self) -> int:
        """Force-expire operations past their deadline. Returns how many."""
        now = self._clock()
        expired = 0
        for op in list(self._pending.values()):
            if op.deadline <= now and self._settle(op, ApprovalStatus.EXPIRED, approved=False):
                expired += 1
        if expired:
            logger.info("approval_gate.swept", expired=expired)
        return expired

    async def start(self) -> None:
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("approval_gate.sweep_started", interval=self._sweep_interval)

    async def stop(self) -> None:
        if self._sweep_task is None:
            return
        self._sweep_task.cancel()
        try:
            await self._sweep_task
        except asyncio.CancelledError:
            pass
        self._sweep_task = None
        logger.info("approval_gate.sweep_stopped")

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                self.sweep_expired()
            except Exception:
                logger.error("approval_gate.sweep_failed", exc_info=True)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def pending_operations(self) -> list[PendingOperation]:
        return [op for op in self._pending.values() if op.status is ApprovalStatus.PENDING]

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "pending": len(self._pending),
            "total_requests": self._total_requests,
            "total_approved": self._total_approved,
            "total_denied": self._total_denied,
            "kill_switch_active": self.kill_switch_active,
        }
