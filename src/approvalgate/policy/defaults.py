"""Built-in policy set.

| id                                     | priority | actions                       |
|----------------------------------------|----------|-------------------------------|
| require-approval                       | high     | every gated action            |
| destructive-requires-owner             | critical | tenant/billing mutation       |
| protected-branch-two-approvals         | high     | git.push, pr.merge            |
| production-deploy-admin-business-hours | critical | deploy.production             |
| member-removal-admin                   | critical | member.remove                 |
| large-patch-review                     | normal   | git.commit, git.push          |
| no-self-approval                       | high     | candidate.execute             |

Dependencies: config, policy.helpers, policy.types, roles
Wired in: policy/engine.py -> PolicyEngine.with_defaults()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from approvalgate.config import GateSettings
from approvalgate.policy.helpers import (
    count_unique_approvers,
    format_scopes,
    has_all_scopes,
    has_role,
    missing_scopes,
    only_self_approved,
)
from approvalgate.policy.types import ActionId, Decision, Policy, PolicyContext, Priority
from approvalgate.roles import Role

if TYPE_CHECKING:
    from approvalgate.policy.engine import PolicyEngine

PROTECTED_BRANCH_QUORUM = 2

_DESTRUCTIVE_ACTIONS = frozenset(
    {ActionId.TENANT_DELETE, ActionId.TENANT_UPDATE, ActionId.BILLING_UPDATE}
)


def _require_approval() -> Policy:
    def evaluate(ctx: PolicyContext) -> Decision:
        if count_unique_approvers(ctx) == 0 or not has_all_scopes(ctx):
            return Decision.REQUIRE_MORE_APPROVALS
        return Decision.ALLOW

    def deny_message(ctx: PolicyContext) -> str:
        count = count_unique_approvers(ctx)
        if count == 0:
            return f"Action {ctx.action} has no approval yet."
        return (
            f"Approvals for {ctx.action} do not cover the required scopes "
            f"(missing: {format_scopes(missing_scopes(ctx))})."
        )

    def resolution_message(ctx: PolicyContext) -> str:
        return (
            "Ask an approver to sign an approval granting "
            f"{format_scopes(missing_scopes(ctx) or frozenset(ctx.required_scopes))}."
        )

    return Policy(
        id="require-approval",
        name="Require approval",
        description="Every gated action needs an approval covering its scopes.",
        priority=Priority.HIGH,
        actions=frozenset(ActionId),
        evaluate=evaluate,
        deny_message=deny_message,
        resolution_message=resolution_message,
    )


def _destructive_requires_owner() -> Policy:
    return Policy(
        id="destructive-requires-owner",
        name="Destructive actions require OWNER",
        description="Tenant deletion or update and billing changes are owner-only.",
        priority=Priority.CRITICAL,
        actions=_DESTRUCTIVE_ACTIONS,
        evaluate=lambda ctx: Decision.ALLOW if has_role(ctx, Role.OWNER) else Decision.DENY,
        deny_message=lambda ctx: (
            f"{ctx.action} is restricted to tenant owners; actor {ctx.actor.id} "
            f"has role {ctx.actor.role}."
        ),
        resolution_message=lambda ctx: "Ask a tenant OWNER to perform this action.",
    )


def _protected_branch_two_approvals() -> Policy:
    def evaluate(ctx: PolicyContext) -> Decision:
        if count_unique_approvers(ctx) >= PROTECTED_BRANCH_QUORUM:
            return Decision.ALLOW
        return Decision.REQUIRE_MORE_APPROVALS

    return Policy(
        id="protected-branch-two-approvals",
        name="Protected branches need two approvers",
        description="Pushes and merges to a protected branch need two distinct approvers.",
        priority=Priority.HIGH,
        actions=frozenset({ActionId.GIT_PUSH, ActionId.PR_MERGE}),
        when=lambda ctx: ctx.resource_flag("isProtectedBranch"),
        evaluate=evaluate,
        deny_message=lambda ctx: (
            f"Protected branch requires {PROTECTED_BRANCH_QUORUM} unique approvers; "
            f"currently {count_unique_approvers(ctx)}."
        ),
        resolution_message=lambda ctx: (
            f"Collect {PROTECTED_BRANCH_QUORUM - count_unique_approvers(ctx)} more approval(s) "
            "from different approvers."
        ),
    )


def _production_deploy_admin_business_hours() -> Policy:
    def evaluate(ctx: PolicyContext) -> Decision:
        if not has_role(ctx, Role.ADMIN) or not ctx.environment.is_business_hours:
            return Decision.DENY
        if count_unique_approvers(ctx) == 0:
            return Decision.REQUIRE_MORE_APPROVALS
        return Decision.ALLOW

    def deny_message(ctx: PolicyContext) -> str:
        if not has_role(ctx, Role.ADMIN):
            return (
                "Production deploys require ADMIN or higher; "
                f"actor {ctx.actor.id} has role {ctx.actor.role}."
            )
        if not ctx.environment.is_business_hours:
            moment = ctx.environment.timestamp
            return (
                "Production deploys are only allowed during business hours "
                f"(requested {moment:%A} {moment:%H:%M})."
            )
        return "Production deploy has no approval yet."

    def resolution_message(ctx: PolicyContext) -> str:
        if not has_role(ctx, Role.ADMIN):
            return "Ask an ADMIN or OWNER to run the deploy."
        if not ctx.environment.is_business_hours:
            return "Retry the deploy during business hours."
        return "Get the deploy approved before retrying."

    return Policy(
        id="production-deploy-admin-business-hours",
        name="Production deploys: ADMIN during business hours",
        description="Production deploys need ADMIN, business hours and one approval.",
        priority=Priority.CRITICAL,
        actions=frozenset({ActionId.DEPLOY_PRODUCTION}),
        when=lambda ctx: ctx.resource_flag("isProduction"),
        evaluate=evaluate,
        deny_message=deny_message,
        resolution_message=resolution_message,
    )


def _member_removal_admin() -> Policy:
    return Policy(
        id="member-removal-admin",
        name="Member removal requires ADMIN",
        description="Only admins and owners may remove tenant members.",
        priority=Priority.CRITICAL,
        actions=frozenset({ActionId.MEMBER_REMOVE}),
        evaluate=lambda ctx: Decision.ALLOW if has_role(ctx, Role.ADMIN) else Decision.DENY,
        deny_message=lambda ctx: (
            f"Removing members requires ADMIN or higher; actor {ctx.actor.id} "
            f"has role {ctx.actor.role}."
        ),
        resolution_message=lambda ctx: "Ask a tenant ADMIN or OWNER to remove the member.",
    )


def _large_patch_review(threshold: int) -> Policy:
    def changed_lines(ctx: PolicyContext) -> int:
        return ctx.patch.total if ctx.patch is not None else 0

    return Policy(
        id="large-patch-review",
        name="Large patches need review",
        description=f"Commits and pushes over {threshold} changed lines need an approval.",
        priority=Priority.NORMAL,
        actions=frozenset({ActionId.GIT_COMMIT, ActionId.GIT_PUSH}),
        when=lambda ctx: changed_lines(ctx) > threshold,
        evaluate=lambda ctx: (
            Decision.REQUIRE_MORE_APPROVALS
            if count_unique_approvers(ctx) == 0
            else Decision.ALLOW
        ),
        deny_message=lambda ctx: (
            f"Patch changes {changed_lines(ctx)} lines, above the review threshold of "
            f"{threshold}; a reviewer approval is required."
        ),
        resolution_message=lambda ctx: "Have a reviewer approve the patch, or split it up.",
    )


def _no_self_approval() -> Policy:
    return Policy(
        id="no-self-approval",
        name="No self-approval",
        description="A candidate cannot be executed on its requester's approval alone.",
        priority=Priority.HIGH,
        actions=frozenset({ActionId.CANDIDATE_EXECUTE}),
        evaluate=lambda ctx: (
            Decision.REQUIRE_MORE_APPROVALS if only_self_approved(ctx) else Decision.ALLOW
        ),
        deny_message=lambda ctx: (
            f"The only approvals come from {ctx.actor.id}, who is requesting the action."
        ),
        resolution_message=lambda ctx: "Ask someone other than the requester to approve.",
    )


def default_policies(settings: GateSettings | None = None) -> tuple[Policy, ...]:
    resolved = settings or GateSettings()
    return (
        _require_approval(),
        _destructive_requires_owner(),
        _protected_branch_two_approvals(),
        _production_deploy_admin_business_hours(),
        _member_removal_admin(),
        _large_patch_review(resolved.large_patch_threshold),
        _no_self_approval(),
    )


def register_default_policies(engine: PolicyEngine, settings: GateSettings | None = None) -> None:
    """Add the built-in set to *engine*; raises if any id is already taken."""
    for policy in default_policies(settings):
        engine.register_policy(policy)
