"""Policy-as-code evaluation.

Public API: PolicyEngine, Policy, PolicyContext, PolicyResult, Decision,
    register_default_policies, create_environment_context
Internal: defaults, environment, helpers, types
"""

from approvalgate.policy.defaults import default_policies, register_default_policies
from approvalgate.policy.engine import PolicyEngine
from approvalgate.policy.environment import EnvironmentContext, create_environment_context
from approvalgate.policy.helpers import (
    count_unique_approvers,
    has_all_scopes,
    has_role,
    missing_scopes,
)
from approvalgate.policy.types import (
    ActionId,
    Actor,
    Decision,
    PatchStats,
    Policy,
    PolicyContext,
    PolicyResult,
    Priority,
)

__all__ = [
    "ActionId",
    "Actor",
    "Decision",
    "EnvironmentContext",
    "PatchStats",
    "Policy",
    "PolicyContext",
    "PolicyEngine",
    "PolicyResult",
    "Priority",
    "count_unique_approvers",
    "create_environment_context",
    "default_policies",
    "has_all_scopes",
    "has_role",
    "missing_scopes",
    "register_default_policies",
]
