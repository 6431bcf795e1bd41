"""Capability gate: scope map, operating modes and execute-if-approved.

Public API: CapabilityGate, OperationRequest, check_approval, GatedOperation,
    SafeOperation, OperatingMode, DenialReason, OPERATION_SCOPE_MAP,
    MODE_CAPABILITIES
Internal: capabilities, capability_gate, verifier
"""

from approvalgate.gate.capabilities import (
    MODE_CAPABILITIES,
    OPERATION_ACTION_MAP,
    OPERATION_SCOPE_MAP,
    ApprovalCheckResult,
    DenialReason,
    GateCheckResult,
    GatedOperation,
    GatedOperationResult,
    ModeCapabilities,
    OperatingMode,
    OperationRequest,
    RejectedApproval,
    SafeOperation,
    required_scopes_for,
)
from approvalgate.gate.capability_gate import CapabilityGate
from approvalgate.gate.verifier import (
    can_perform_operation,
    check_approval,
    create_approval_from_patch,
    has_scope,
)

__all__ = [
    "MODE_CAPABILITIES",
    "OPERATION_ACTION_MAP",
    "OPERATION_SCOPE_MAP",
    "ApprovalCheckResult",
    "CapabilityGate",
    "DenialReason",
    "GateCheckResult",
    "GatedOperation",
    "GatedOperationResult",
    "ModeCapabilities",
    "OperatingMode",
    "OperationRequest",
    "RejectedApproval",
    "SafeOperation",
    "can_perform_operation",
    "check_approval",
    "create_approval_from_patch",
    "has_scope",
    "required_scopes_for",
]
