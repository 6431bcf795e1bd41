"""Operation kinds, scope requirements, operating modes and denial taxonomy.

Dependencies: approval.types, infra.audit_log, policy.types
Wired in: gate/verifier.py, gate/capability_gate.py
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from approvalgate.approval.types import ApprovalScope, SignedApproval
from approvalgate.infra.audit_log import AuditRecord
from approvalgate.policy.types import ActionId, PolicyResult


class GatedOperation(StrEnum):
    """Operations that never proceed without a satisfying approval."""

    GIT_COMMIT = "git_commit"
    GIT_PUSH = "git_push"
    PR_CREATE = "pr_create"
    PR_UPDATE = "pr_update"
    PR_MERGE = "pr_merge"
    BRANCH_DELETE = "branch_delete"
    FILE_WRITE = "file_write"
    DEPLOY = "deploy"


class SafeOperation(StrEnum):
    """Operations a mode may run without touching approvals."""

    READ = "read"
    COMMENT = "comment"
    PATCH_GENERATE = "patch_generate"
    LABEL = "label"


class OperatingMode(StrEnum):
    COMMENT_ONLY = "comment-only"
    PATCH_ONLY = "patch-only"
    COMMIT_AFTER_APPROVAL = "commit-after-approval"


OPERATION_SCOPE_MAP: Mapping[GatedOperation, frozenset[ApprovalScope]] = MappingProxyType(
    {
        GatedOperation.GIT_COMMIT: frozenset({ApprovalScope.COMMIT}),
        GatedOperation.GIT_PUSH: frozenset({ApprovalScope.PUSH}),
        GatedOperation.PR_CREATE: frozenset({ApprovalScope.OPEN_PR}),
        GatedOperation.PR_UPDATE: frozenset({ApprovalScope.PUSH}),
        GatedOperation.PR_MERGE: frozenset({ApprovalScope.MERGE}),
        GatedOperation.BRANCH_DELETE: frozenset({ApprovalScope.PUSH}),
        GatedOperation.FILE_WRITE: frozenset({ApprovalScope.COMMIT}),
        GatedOperation.DEPLOY: frozenset({ApprovalScope.DEPLOY}),
    }
)

def required_scopes_for(*operations: GatedOperation) -> frozenset[ApprovalScope]:
    """Union of the scopes every operation in *operations* needs."""
    return frozenset().union(*(OPERATION_SCOPE_MAP[op] for op in operations))


OPERATION_ACTION_MAP: Mapping[GatedOperation, ActionId] = MappingProxyType(
    {
        GatedOperation.GIT_COMMIT: ActionId.GIT_COMMIT,
        GatedOperation.GIT_PUSH: ActionId.GIT_PUSH,
        GatedOperation.PR_CREATE: ActionId.PR_CREATE,
        GatedOperation.PR_UPDATE: ActionId.GIT_PUSH,
        GatedOperation.PR_MERGE: ActionId.PR_MERGE,
        GatedOperation.BRANCH_DELETE: ActionId.GIT_PUSH,
        GatedOperation.FILE_WRITE: ActionId.GIT_COMMIT,
        GatedOperation.DEPLOY: ActionId.DEPLOY_PRODUCTION,
    }
)


@dataclass(frozen=True)
class ModeCapabilities:
    safe_operations: frozenset[SafeOperation]
    gated_operations: frozenset[GatedOperation]

    def allows_safe(self, operation: SafeOperation | str) -> bool:
        return operation in self.safe_operations

    def allows_gated(self, operation: GatedOperation | str) -> bool:
        return operation in self.gated_operations


MODE_CAPABILITIES: Mapping[OperatingMode, ModeCapabilities] = MappingProxyType(
    {
        OperatingMode.COMMENT_ONLY: ModeCapabilities(
            safe_operations=frozenset({SafeOperation.READ, SafeOperation.COMMENT}),
            gated_operations=frozenset(),
        ),
        OperatingMode.PATCH_ONLY: ModeCapabilities(
            safe_operations=frozenset(
                {SafeOperation.READ, SafeOperation.COMMENT, SafeOperation.PATCH_GENERATE}
            ),
            gated_operations=frozenset(),
        ),
        OperatingMode.COMMIT_AFTER_APPROVAL: ModeCapabilities(
            safe_operations=frozenset(SafeOperation),
            gated_operations=frozenset(
                {
                    GatedOperation.GIT_COMMIT,
                    GatedOperation.GIT_PUSH,
                    GatedOperation.PR_CREATE,
                    GatedOperation.PR_UPDATE,
                }
            ),
        ),
    }
)


class DenialReason(StrEnum):
    NO_APPROVAL = "NO_APPROVAL"
    TARGET_MISMATCH = "TARGET_MISMATCH"
    PATCH_HASH_MISMATCH = "PATCH_HASH_MISMATCH"
    SCOPE_MISMATCH = "SCOPE_MISMATCH"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    POLICY_DENIED = "POLICY_DENIED"
    INSUFFICIENT_QUORUM = "INSUFFICIENT_QUORUM"

    @property
    def denial_text(self) -> str:
        return _DENIAL_TEXTS[self][0]

    @property
    def resolution_text(self) -> str:
        return _DENIAL_TEXTS[self][1]


_DENIAL_TEXTS: Mapping[DenialReason, tuple[str, str]] = MappingProxyType(
    {
        DenialReason.NO_APPROVAL: (
            "No approval grants this operation.",
            "Request an approval for this target before retrying.",
        ),
        DenialReason.TARGET_MISMATCH: (
            "The approval was issued for a different target.",
            "Use an approval issued for this tenant, run, candidate or pull request.",
        ),
        DenialReason.PATCH_HASH_MISMATCH: (
            "The content differs from what was approved.",
            "Request a new approval for the current patch; approvals bind to exact content.",
        ),
        DenialReason.SCOPE_MISMATCH: (
            "The approval does not grant every scope this operation needs.",
            "Request an approval that includes the missing scopes.",
        ),
        DenialReason.EXPIRED: (
            "The approval has expired.",
            "Request a fresh approval.",
        ),
        DenialReason.REVOKED: (
            "The approval was revoked by its approver.",
            "Request a new approval; revocation cannot be undone.",
        ),
        DenialReason.POLICY_DENIED: (
            "A policy forbids this operation.",
            "Change the request context (role, mode or timing) before retrying.",
        ),
        DenialReason.INSUFFICIENT_QUORUM: (
            "More approvals are required.",
            "Collect approvals from additional distinct approvers.",
        ),
    }
)


@dataclass(frozen=True)
class OperationRequest:
    """A caller asking to run one gated operation against one target.

    ``extra_scopes`` widens the scope requirement for steps that do more than
    the operation alone, such as a push that also creates the commit.
    """

    operation: GatedOperation
    tenant_id: str
    actor_id: str
    run_id: str | None = None
    candidate_id: str | None = None
    pr_number: int | None = None
    repo: str | None = None
    patch_hash: str | None = None
    mode: OperatingMode | None = None
    description: str = ""
    extra_scopes: frozenset[ApprovalScope] = frozenset()

    @property
    def required_scopes(self) -> frozenset[ApprovalScope]:
        return OPERATION_SCOPE_MAP[self.operation] | self.extra_scopes

    @property
    def action(self) -> ActionId:
        return OPERATION_ACTION_MAP[self.operation]


@dataclass(frozen=True)
class ApprovalCheckResult:
    approved: bool
    message: str
    reason: DenialReason | None = None
    resolution: str | None = None
    missing_scopes: frozenset[ApprovalScope] = frozenset()

    @classmethod
    def ok(cls) -> ApprovalCheckResult:
        return cls(approved=True, message="Approval satisfies the request.")

    @classmethod
    def denied(
        cls,
        reason: DenialReason,
        message: str | None = None,
        *,
        missing_scopes: frozenset[ApprovalScope] = frozenset(),
    ) -> ApprovalCheckResult:
        return cls(
            approved=False,
            message=message or reason.denial_text,
            reason=reason,
            resolution=reason.resolution_text,
            missing_scopes=missing_scopes,
        )

    def to_audit_record(
        self, request: OperationRequest, approval: SignedApproval | None
    ) -> AuditRecord:
        return AuditRecord(
            type="approval.check",
            reason_code=self.reason.value if self.reason else "APPROVED",
            approval_ref=approval.approval_id if approval else None,
            actor_id=request.actor_id,
            action=request.operation.value,
            details={
                "tenantId": request.tenant_id,
                "message": self.message,
                "missingScopes": sorted(str(scope) for scope in self.missing_scopes),
            },
        )


@dataclass(frozen=True)
class GatedOperationResult:
    """Outcome of one gate call. ``executed`` is True only if the callback ran."""

    success: bool
    executed: bool
    operation: GatedOperation | SafeOperation
    message: str
    denial_reason: DenialReason | None = None
    resolution: str | None = None
    approval_check: ApprovalCheckResult | None = None
    policy_result: PolicyResult | None = None
    result: Any = None
    error: str | None = None

    def to_audit_record(self, actor_id: str, approval: SignedApproval | None = None) -> AuditRecord:
        if self.denial_reason is not None:
            reason_code = self.denial_reason.value
        else:
            reason_code = "EXECUTED" if self.success else "EXECUTION_FAILED"
        return AuditRecord(
            type="gate.result",
            reason_code=reason_code,
            approval_ref=approval.approval_id if approval else None,
            actor_id=actor_id,
            action=self.operation.value,
            details={"executed": self.executed, "message": self.message, "error": self.error},
        )


@dataclass(frozen=True)
class RejectedApproval:
    approval_id: str
    code: str
    error: str


@dataclass(frozen=True)
class GateCheckResult:
    allowed: bool
    policy_result: PolicyResult
    rejected_approvals: tuple[RejectedApproval, ...] = ()
