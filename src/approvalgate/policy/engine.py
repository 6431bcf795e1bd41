"""Policy registry and evaluator.

Dependencies: config, errors, policy.defaults, policy.types
Wired in: gate/capability_gate.py
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from approvalgate.config import GateSettings
from approvalgate.errors import PolicyRegistrationError
from approvalgate.policy.defaults import default_policies
from approvalgate.policy.types import (
    PRIORITY_ORDER,
    Decision,
    Policy,
    PolicyContext,
    PolicyResult,
)

_log = logging.getLogger(__name__)


class PolicyEngine:
    """Explicit, caller-owned set of policies.

    Matched policies run critical first, then high, then normal, keeping
    registration order within a priority. The first DENY ends evaluation;
    otherwise any REQUIRE_MORE_APPROVALS wins over ALLOW. No matching policy
    means ALLOW.
    """

    def __init__(self, policies: Iterable[Policy] = ()) -> None:
        self._policies: dict[str, Policy] = {}
        for policy in policies:
            self.register_policy(policy)

    @classmethod
    def with_defaults(cls, settings: GateSettings | None = None) -> PolicyEngine:
        return cls(default_policies(settings))

    def register_policy(self, policy: Policy) -> None:
        if not policy.id.strip():
            raise PolicyRegistrationError("invalid_policy", "Policy id must not be empty.")
        if not policy.actions:
            raise PolicyRegistrationError(
                "invalid_policy", f"Policy '{policy.id}' must apply to at least one action."
            )
        if policy.id in self._policies:
            raise PolicyRegistrationError(
                "duplicate_policy", f"Policy '{policy.id}' is already registered."
            )
        self._policies[policy.id] = policy

    def unregister_policy(self, policy_id: str) -> bool:
        return self._policies.pop(policy_id, None) is not None

    def get_policy(self, policy_id: str) -> Policy | None:
        return self._policies.get(policy_id)

    def get_policies(self) -> list[Policy]:
        return list(self._policies.values())

    def evaluate(self, ctx: PolicyContext) -> PolicyResult:
        matched = sorted(
            (policy for policy in self._policies.values() if policy.applies_to(ctx)),
            key=lambda policy: PRIORITY_ORDER[policy.priority],
        )
        matched_ids = tuple(policy.id for policy in matched)
        evaluated: list[str] = []
        reasons: list[str] = []
        resolutions: list[str] = []

        for policy in matched:
            decision = policy.evaluate(ctx)
            evaluated.append(policy.id)
            if decision is Decision.DENY:
                _log.info("Policy %s denied %s for %s", policy.id, ctx.action, ctx.actor.id)
                return PolicyResult(
                    decision=Decision.DENY,
                    reasons=(policy.deny_message(ctx),),
                    resolutions=(policy.resolution_message(ctx),),
                    matched_policies=matched_ids,
                    evaluated_policies=tuple(evaluated),
                    denied_by=policy.id,
                )
            if decision is Decision.REQUIRE_MORE_APPROVALS:
                reasons.append(policy.deny_message(ctx))
                resolutions.append(policy.resolution_message(ctx))

        if reasons:
            _log.info(
                "Action %s for %s needs more approvals (%d policies)",
                ctx.action,
                ctx.actor.id,
                len(reasons),
            )
            return PolicyResult(
                decision=Decision.REQUIRE_MORE_APPROVALS,
                reasons=tuple(reasons),
                resolutions=tuple(resolutions),
                matched_policies=matched_ids,
                evaluated_policies=tuple(evaluated),
            )
        return PolicyResult(
            decision=Decision.ALLOW,
            matched_policies=matched_ids,
            evaluated_policies=tuple(evaluated),
        )
