"""Approval checks against a concrete operation request.

``check_approval`` runs presence, target binding, expiry, content binding
and scope checks in that order and stops at the first failure.

Dependencies: approval.crypto, approval.types, gate.capabilities, policy.helpers, roles
Wired in: gate/capability_gate.py
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from approvalgate.approval.crypto import compute_patch_hash, verify_patch_hash
from approvalgate.approval.types import (
    ApprovalDecision,
    ApprovalScope,
    ApprovalSource,
    ApprovalTarget,
    Approver,
    CreateSignedApproval,
    SignedApproval,
    TargetType,
)
from approvalgate.gate.capabilities import (
    OPERATION_SCOPE_MAP,
    ApprovalCheckResult,
    DenialReason,
    GatedOperation,
    OperationRequest,
)
from approvalgate.policy.helpers import format_scopes
from approvalgate.roles import Role

_log = logging.getLogger(__name__)


def check_approval(
    request: OperationRequest,
    approval: SignedApproval | None,
    patch_content: str | bytes | None = None,
    *,
    now: datetime | None = None,
) -> ApprovalCheckResult:
    if approval is None or approval.decision is ApprovalDecision.DENIED:
        return ApprovalCheckResult.denied(DenialReason.NO_APPROVAL)
    if approval.decision is ApprovalDecision.REVOKED:
        return ApprovalCheckResult.denied(DenialReason.REVOKED)

    mismatch = _target_mismatch(request, approval)
    if mismatch is not None:
        return ApprovalCheckResult.denied(DenialReason.TARGET_MISMATCH, mismatch)

    if approval.is_expired(now or datetime.now(UTC)):
        return ApprovalCheckResult.denied(DenialReason.EXPIRED)

    if patch_content is not None or request.patch_hash is not None:
        if not _content_matches(request, approval, patch_content):
            _log.warning(
                "Content binding failed for approval %s (%s on tenant %s)",
                approval.approval_id,
                request.operation,
                request.tenant_id,
            )
            return ApprovalCheckResult.denied(DenialReason.PATCH_HASH_MISMATCH)

    missing = request.required_scopes - frozenset(approval.scopes_approved)
    if missing:
        return ApprovalCheckResult.denied(
            DenialReason.SCOPE_MISMATCH,
            f"Approval is missing required scopes: {format_scopes(missing)}.",
            missing_scopes=missing,
        )
    return ApprovalCheckResult.ok()


def _target_mismatch(request: OperationRequest, approval: SignedApproval) -> str | None:
    if request.tenant_id != approval.tenant_id:
        return f"Approval belongs to tenant {approval.tenant_id}, not {request.tenant_id}."
    target = approval.target
    pairs = (
        ("run", request.run_id, target.run_id),
        ("candidate", request.candidate_id, target.candidate_id),
        ("pull request", request.pr_number, target.pr_number),
        ("repository", request.repo, target.repo),
    )
    for label, wanted, approved in pairs:
        if wanted is not None and wanted != approved:
            return f"Approval targets {label} {approved!s}, request is for {wanted!s}."
    return None


def _content_matches(
    request: OperationRequest,
    approval: SignedApproval,
    patch_content: str | bytes | None,
) -> bool:
    if approval.patch_hash is None:
        return False
    if patch_content is not None and not verify_patch_hash(patch_content, approval.patch_hash):
        return False
    if request.patch_hash is not None:
        declared = request.patch_hash.lower()
        return declared.isascii() and hmac.compare_digest(declared, approval.patch_hash.lower())
    return True


def has_scope(approval: SignedApproval, scope: ApprovalScope | str) -> bool:
    return (
        approval.decision is ApprovalDecision.APPROVED
        and ApprovalScope(scope) in approval.scopes_approved
    )


def can_perform_operation(
    approval: SignedApproval,
    operation: GatedOperation,
    *,
    now: datetime | None = None,
) -> bool:
    """True when *approval* is in force and grants every scope *operation* needs."""
    if approval.decision is not ApprovalDecision.APPROVED or approval.is_expired(now):
        return False
    return OPERATION_SCOPE_MAP[operation] <= frozenset(approval.scopes_approved)


def create_approval_from_patch(  # noqa: PLR0913
    patch_content: str | bytes,
    *,
    tenant_id: str,
    approver: Approver,
    approver_role: Role,
    scopes: Iterable[ApprovalScope],
    target_type: TargetType,
    target: ApprovalTarget,
    intent_hash: str,
    source: ApprovalSource = ApprovalSource.CLI,
    expires_at: datetime | None = None,
    comment: str | None = None,
) -> CreateSignedApproval:
    """Build an unsigned approval bound to the SHA-256 of *patch_content*."""
    return CreateSignedApproval.from_input(
        dict(
            tenant_id=tenant_id,
            approver=approver,
            approver_role=approver_role,
            decision=ApprovalDecision.APPROVED,
            scopes_approved=tuple(scopes),
            target_type=target_type,
            target=target,
            intent_hash=intent_hash,
            patch_hash=compute_patch_hash(patch_content),
            source=source,
            expires_at=expires_at,
            comment=comment,
        )
    )
