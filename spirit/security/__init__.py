"""Security layer — classifier, approval gate and secure executor."""
from spirit.security.approval import (
    ApprovalAction,
    ApprovalGate,
    ApprovalStatus,
    ConfirmationRequest,
    PendingOperation,
    ResolveResult,
)
from spirit.security.executor import ExecuteResult, SecureExecutor
from spirit.security.sensitivity import (
    OPERATION_POLICIES,
    OperationCategory,
    OperationPolicy,
    RiskLevel,
    SensitivityVerdict,
    classify,
    resolve_policies,
)

__all__ = [
    "ApprovalAction",
    "ApprovalGate",
    "ApprovalStatus",
    "ConfirmationRequest",
    "ExecuteResult",
    "OPERATION_POLICIES",
    "OperationCategory",
    "OperationPolicy",
    "PendingOperation",
    "ResolveResult",
    "RiskLevel",
    "SecureExecutor",
    "SensitivityVerdict",
    "classify",
    "resolve_policies",
]
