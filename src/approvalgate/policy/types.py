"""Policy records, evaluation context and results.

A policy is an immutable record of plain callables; the engine never mutates
one after registration.

Dependencies: approval.types, infra.audit_log, policy.environment, roles
Wired in: policy/engine.py, policy/defaults.py, policy/helpers.py, gate/*
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Any

from approvalgate.approval.types import ApprovalScope, ApproverType, SignedApproval
from approvalgate.infra.audit_log import AuditRecord
from approvalgate.policy.environment import EnvironmentContext, create_environment_context
from approvalgate.roles import Role


class Decision(StrEnum):
    ALLOW = "ALLOW"
    DENY = "DENY"
    REQUIRE_MORE_APPROVALS = "REQUIRE_MORE_APPROVALS"


class Priority(StrEnum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"


PRIORITY_ORDER = {Priority.CRITICAL: 0, Priority.HIGH: 1, Priority.NORMAL: 2}


class ActionId(StrEnum):
    """Actions the policy engine knows how to gate."""

    CANDIDATE_EXECUTE = "candidate.execute"
    GIT_COMMIT = "git.commit"
    GIT_PUSH = "git.push"
    PR_CREATE = "pr.create"
    PR_MERGE = "pr.merge"
    DEPLOY_PRODUCTION = "deploy.production"
    TENANT_DELETE = "tenant.delete"
    TENANT_UPDATE = "tenant.update"
    BILLING_UPDATE = "billing.update"
    MEMBER_REMOVE = "member.remove"


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role
    type: ApproverType = ApproverType.USER


@dataclass(frozen=True)
class PatchStats:
    lines_added: int
    lines_removed: int

    @property
    def total(self) -> int:
        return self.lines_added + self.lines_removed


@dataclass(frozen=True)
class PolicyContext:
    """Everything a policy may look at for one requested action.

    ``resource`` is an opaque attribute bag filled by the caller, e.g.
    ``{"isProtectedBranch": True}`` or ``{"isProduction": True}``.
    """

    tenant_id: str
    actor: Actor
    action: str
    approvals: tuple[SignedApproval, ...] = ()
    required_scopes: frozenset[ApprovalScope] = frozenset()
    resource: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    patch: PatchStats | None = None
    environment: EnvironmentContext = field(default_factory=create_environment_context)

    def resource_flag(self, name: str) -> bool:
        return bool(self.resource.get(name, False))


def _always(_ctx: PolicyContext) -> bool:
    return True


@dataclass(frozen=True)
class Policy:
    id: str
    name: str
    description: str
    priority: Priority
    actions: frozenset[str]
    evaluate: Callable[[PolicyContext], Decision]
    deny_message: Callable[[PolicyContext], str]
    resolution_message: Callable[[PolicyContext], str]
    when: Callable[[PolicyContext], bool] = _always

    def applies_to(self, ctx: PolicyContext) -> bool:
        return ctx.action in self.actions and self.when(ctx)


@dataclass(frozen=True)
class PolicyResult:
    """Aggregate engine decision for one context."""

    decision: Decision
    reasons: tuple[str, ...] = ()
    resolutions: tuple[str, ...] = ()
    matched_policies: tuple[str, ...] = ()
    evaluated_policies: tuple[str, ...] = ()
    denied_by: str | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW

    def to_audit_record(self, ctx: PolicyContext) -> AuditRecord:
        return AuditRecord(
            type="policy.decision",
            reason_code=self.decision.value,
            actor_id=ctx.actor.id,
            action=str(ctx.action),
            details={
                "tenantId": ctx.tenant_id,
                "matchedPolicies": list(self.matched_policies),
                "deniedBy": self.denied_by,
                "reasons": list(self.reasons),
            },
        )
