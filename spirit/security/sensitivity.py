"""
Sensitivity Classifier — deciding which actions need a human.

Every action the agent wants to take passes through ``classify()`` before it
runs. The classifier is a pure, total function: it never raises, never does
I/O, and always returns a verdict. Detection is an ordered first-match over
lexical rules, checked against a lower-cased copy of the command:

1. Deletion verbs                        → file_delete
2. Dangerous command substrings          → shell_command
3. Filesystem-root-like path substrings  → file_modify
4. SQL mutation verbs                    → database_write
5. Payment verbs                         → payment
6. Config noun + mutation verb           → system_config

The order matters. Specific, high-confidence rules run before broad
heuristics, so "delete app.config" is a file deletion rather than a config
change.

The category → policy table is static and immutable at runtime. Per-deployment
tweaks go through ``resolve_policies()``, which builds a new table rather than
mutating this one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

import structlog

logger = structlog.get_logger(__name__)


class OperationCategory(str, Enum):
    """Closed set of operation categories the approval gate knows about."""

    FILE_DELETE = "file_delete"
    FILE_MODIFY = "file_modify"
    SHELL_COMMAND = "shell_command"
    API_CALL = "api_call"
    SEND_MESSAGE = "send_message"
    DATABASE_WRITE = "database_write"
    SYSTEM_CONFIG = "system_config"
    PAYMENT = "payment"
    UNKNOWN = "unknown"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class OperationPolicy:
    """How the gate treats one operation category."""

    category: OperationCategory
    level: RiskLevel
    require_confirm: bool
    timeout_seconds: float
    description: str


@dataclass(frozen=True)
class SensitivityVerdict:
    """Result of classifying a command."""

    is_sensitive: bool
    category: OperationCategory
    reason: str = ""


def _policy(
    category: OperationCategory,
    level: RiskLevel,
    require_confirm: bool,
    timeout_seconds: float,
    description: str,
) -> OperationPolicy:
    return OperationPolicy(category, level, require_confirm, timeout_seconds, description)


OPERATION_POLICIES: Mapping[OperationCategory, OperationPolicy] = MappingProxyType({
    OperationCategory.FILE_DELETE: _policy(
        OperationCategory.FILE_DELETE, RiskLevel.CRITICAL, True, 120, "Delete file",
    ),
    OperationCategory.FILE_MODIFY: _policy(
        OperationCategory.FILE_MODIFY, RiskLevel.HIGH, True, 60, "Modify file",
    ),
    OperationCategory.SHELL_COMMAND: _policy(
        OperationCategory.SHELL_COMMAND, RiskLevel.HIGH, True, 60, "Execute command",
    ),
    # Plain API calls are routine; callers can still force confirmation.
    OperationCategory.API_CALL: _policy(
        OperationCategory.API_CALL, RiskLevel.MEDIUM, False, 30, "Call API",
    ),
    OperationCategory.SEND_MESSAGE: _policy(
        OperationCategory.SEND_MESSAGE, RiskLevel.MEDIUM, True, 60, "Send message",
    ),
    OperationCategory.DATABASE_WRITE: _policy(
        OperationCategory.DATABASE_WRITE, RiskLevel.HIGH, True, 60, "Write to database",
    ),
    OperationCategory.SYSTEM_CONFIG: _policy(
        OperationCategory.SYSTEM_CONFIG, RiskLevel.CRITICAL, True, 120,
        "Modify system configuration",
    ),
    OperationCategory.PAYMENT: _policy(
        OperationCategory.PAYMENT, RiskLevel.CRITICAL, True, 180, "Payment operation",
    ),
    OperationCategory.UNKNOWN: _policy(
        OperationCategory.UNKNOWN, RiskLevel.HIGH, True, 60, "Unknown operation",
    ),
})


DANGEROUS_COMMANDS: tuple[str, ...] = (
    "rm -rf",
    "rm -r",
    "rmdir",
    "del /f",
    "format",
    "sudo",
    "chmod 777",
    "drop table",
    "delete from",
    "truncate",
    "shutdown",
    "reboot",
    "kill -9",
    "pkill",
)

DANGEROUS_PATHS: tuple[str, ...] = (
    "/",
    "/etc",
    "/usr",
    "/bin",
    "/sbin",
    "/var",
    "/root",
    "/home",
    "c:\\",
    "c:\\windows",
    "c:\\program files",
)

# Flagged forms ("rm -rf", "del /f") fall through to the dangerous-command list.
_DELETE_RE = re.compile(r"delete|remove|\brm (?!-r)|\bdel (?!/f)")
_SQL_WRITE_RE = re.compile(r"insert|update|delete|drop|alter|truncate")
_PAYMENT_RE = re.compile(r"pay|payment|transfer|withdraw|charge")
_CONFIG_NOUN_RE = re.compile(r"config|setting|env|environment")
_CONFIG_VERB_RE = re.compile(r"modify|change|set|update")


def classify(command: str, context: Optional[Mapping[str, Any]] = None) -> SensitivityVerdict:
    """
    Classify a proposed action by its textual command.

    ``context`` is accepted for callers that carry extra metadata; the current
    rules are purely lexical and do not consult it.
    """
    text = (command if isinstance(command, str) else str(command)).lower()

    if _DELETE_RE.search(text):
        return SensitivityVerdict(True, OperationCategory.FILE_DELETE, "Deletion detected")

    for cmd in DANGEROUS_COMMANDS:
        if cmd in text:
            return SensitivityVerdict(
                True, OperationCategory.SHELL_COMMAND, f"Dangerous command detected: {cmd}",
            )

    for path in DANGEROUS_PATHS:
        if path in text:
            return SensitivityVerdict(
                True, OperationCategory.FILE_MODIFY, f"Dangerous path detected: {path}",
            )

    if _SQL_WRITE_RE.search(text):
        return SensitivityVerdict(
            True, OperationCategory.DATABASE_WRITE, "Database write detected",
        )

    if _PAYMENT_RE.search(text):
        return SensitivityVerdict(True, OperationCategory.PAYMENT, "Payment operation detected")

    if _CONFIG_NOUN_RE.search(text) and _CONFIG_VERB_RE.search(text):
        return SensitivityVerdict(
            True, OperationCategory.SYSTEM_CONFIG, "System configuration change detected",
        )

    return SensitivityVerdict(False, OperationCategory.UNKNOWN, "")


def resolve_policies(
    overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> Mapping[OperationCategory, OperationPolicy]:
    """
    Build a policy table with per-category overrides applied.

    Only ``require_confirm`` and ``timeout_seconds`` may be overridden.
    Unknown categories and malformed values are logged and ignored.
    """
    if not overrides:
        return OPERATION_POLICIES

    table = dict(OPERATION_POLICIES)
    for raw_category, fields in overrides.items():
        try:
            category = OperationCategory(str(raw_category))
        except ValueError:
            logger.warning("sensitivity.unknown_override_category", category=raw_category)
            continue
        if not isinstance(fields, Mapping):
            logger.warning("sensitivity.invalid_override", category=raw_category)
            continue
        changes: dict[str, Any] = {}
        if "require_confirm" in fields:
            changes["require_confirm"] = bool(fields["require_confirm"])
        if "timeout_seconds" in fields:
            try:
                changes["timeout_seconds"] = max(0.0, float(fields["timeout_seconds"]))
            except (TypeError, ValueError):
                logger.warning(
                    "sensitivity.invalid_override_timeout",
                    category=raw_category,
                    value=fields["timeout_seconds"],
                )
        if changes:
            table[category] = replace(table[category], **changes)
    return MappingProxyType(table)


_LEVEL_INDICATORS = {
    RiskLevel.LOW: "🟢",
    RiskLevel.MEDIUM: "🟡",
    RiskLevel.HIGH: "🟠",
    RiskLevel.CRITICAL: "🔴",
}

_LEVEL_TEXT = {
    RiskLevel.LOW: "Low risk",
    RiskLevel.MEDIUM: "Medium risk",
    RiskLevel.HIGH: "High risk",
    RiskLevel.CRITICAL: "Critical risk",
}


def _as_level(level: RiskLevel | str) -> Optional[RiskLevel]:
    try:
        return RiskLevel(level)
    except ValueError:
        return None


def level_indicator(level: RiskLevel | str) -> str:
    """Colored dot for a risk level, for human-facing renderings."""
    return _LEVEL_INDICATORS.get(_as_level(level), "⚪")


def level_text(level: RiskLevel | str) -> str:
    return _LEVEL_TEXT.get(_as_level(level), "Unknown risk")
