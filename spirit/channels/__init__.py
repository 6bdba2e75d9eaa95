"""
Approval channels — how confirmation requests reach a human.

Channels only deliver. Answers come back through
``ApprovalGate.on_approval_response``.
"""

from spirit.channels.base import ApprovalChannel, render_request_text
from spirit.channels.console import ConsoleApprovalChannel
from spirit.channels.webhook import WebhookApprovalChannel

__all__ = [
    "ApprovalChannel",
    "ConsoleApprovalChannel",
    "WebhookApprovalChannel",
    "render_request_text",
]
