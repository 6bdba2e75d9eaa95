"""
Approval channel abstract class.

A channel carries a ``ConfirmationRequest`` from the approval gate to a
human. It only delivers; the human's answer comes back through
``ApprovalGate.on_approval_response``, which the channel's own inbound side
(a bot callback, a webhook receiver, an operator console) is expected to call.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from spirit.security.approval import ConfirmationRequest
from spirit.security.sensitivity import level_indicator, level_text


class ApprovalChannel(ABC):
    """Abstract base for approval delivery channels."""

    @abstractmethod
    async def send_confirmation_request(self, request: ConfirmationRequest) -> bool:
        """
        Deliver ``request`` to a human.

        Return True when the request was accepted for delivery. False, or an
        exception, makes the gate treat the operation as rejected.
        """

    @property
    @abstractmethod
    def channel_name(self) -> str:
        """Short identifier: 'console', 'webhook', …"""


def render_request_text(request: ConfirmationRequest) -> str:
    """Plain-text body shared by channels that show a message to a human."""
    return "\n".join([
        f"{level_indicator(request.risk_level)} {level_text(request.risk_level)}"
        f" · {request.category_description}",
        "",
        f"Operation ID: {request.operation_id}",
        f"Description: {request.description}",
        "",
        "Command:",
        request.command_preview,
        "",
        f"Confirm within {request.timeout_seconds:g} seconds; "
        "no answer means the operation is rejected.",
    ])
