"""Quorum, scope and role predicates shared by policies.

All helpers look only at effective approvals: the history folded per approver
and filtered against ``ctx.environment.timestamp``.

Dependencies: approval.status, policy.types, roles
Wired in: policy/defaults.py, gate/capability_gate.py
"""

from __future__ import annotations

from approvalgate.approval.status import (
    approved_scopes,
    effective_approvals,
    unique_approver_ids,
)
from approvalgate.approval.types import ApprovalScope, SignedApproval
from approvalgate.policy.types import PolicyContext
from approvalgate.roles import Role, role_at_least


def context_approvals(ctx: PolicyContext) -> list[SignedApproval]:
    return effective_approvals(ctx.approvals, now=ctx.environment.timestamp)


def count_unique_approvers(ctx: PolicyContext) -> int:
    """Number of distinct approver ids; repeat approvals from one id count once."""
    return len(unique_approver_ids(context_approvals(ctx)))


def missing_scopes(ctx: PolicyContext) -> frozenset[ApprovalScope]:
    return frozenset(ctx.required_scopes) - approved_scopes(context_approvals(ctx))


def has_all_scopes(ctx: PolicyContext) -> bool:
    return not missing_scopes(ctx)


def has_role(ctx: PolicyContext, required: Role) -> bool:
    return role_at_least(ctx.actor.role, required)


def only_self_approved(ctx: PolicyContext) -> bool:
    """True when approvals exist and every one was authored by the requesting actor."""
    approvers = unique_approver_ids(context_approvals(ctx))
    return bool(approvers) and approvers == {ctx.actor.id}


def format_scopes(scopes: frozenset[ApprovalScope]) -> str:
    return ", ".join(sorted(str(scope) for scope in scopes)) or "none"
