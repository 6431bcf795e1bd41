"""Shared test fixtures for approvalgate."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from approvalgate.approval.crypto import (
    SigningKeyPair,
    compute_intent_hash,
    compute_patch_hash,
    generate_signing_key_pair,
)
from approvalgate.approval.keys import InMemoryKeyRegistry, PublicKeyRecord
from approvalgate.approval.signing import create_signed_approval
from approvalgate.approval.types import ApprovalScope, SignedApproval
from approvalgate.infra.audit_log import InMemoryAuditSink
from approvalgate.policy.engine import PolicyEngine
from approvalgate.policy.environment import create_environment_context
from approvalgate.policy.types import ActionId, Actor, PolicyContext
from approvalgate.roles import Role

# Wednesday, inside the default 09:00-17:00 window.
NOW = datetime(2026, 3, 4, 10, 30, tzinfo=UTC)
# Saturday.
WEEKEND = datetime(2026, 3, 7, 11, 0, tzinfo=UTC)

PATCH = "diff --git a/app.py b/app.py\n+print('hello')\n"


def approval_fields(**overrides: Any) -> dict[str, Any]:
    """Unsigned approval input for run-123 on tenant-1, approved by user-456."""
    fields: dict[str, Any] = {
        "tenant_id": "tenant-1",
        "approver": {"type": "user", "id": "user-456"},
        "approver_role": "ADMIN",
        "decision": "approved",
        "scopes_approved": ["commit", "push"],
        "target_type": "run",
        "target": {"run_id": "run-123"},
        "intent_hash": compute_intent_hash("plan: say hello"),
        "patch_hash": compute_patch_hash(PATCH),
        "source": "cli",
        "created_at": NOW,
    }
    fields.update(overrides)
    return fields


@pytest.fixture()
def key_pair() -> SigningKeyPair:
    """Fresh Ed25519 signing key pair."""
    return generate_signing_key_pair()


@pytest.fixture()
def key_registry(key_pair: SigningKeyPair) -> InMemoryKeyRegistry:
    """In-memory registry holding the public half of ``key_pair``."""
    return InMemoryKeyRegistry([PublicKeyRecord.from_key_pair(key_pair, owner="user-456")])


@pytest.fixture()
def engine() -> PolicyEngine:
    """Policy engine loaded with the built-in policy set."""
    return PolicyEngine.with_defaults()


@pytest.fixture()
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture()
def make_approval(key_pair: SigningKeyPair) -> Callable[..., SignedApproval]:
    """Factory signing ``approval_fields(**overrides)`` with ``key_pair``."""

    def _make(**overrides: Any) -> SignedApproval:
        return create_signed_approval(approval_fields(**overrides), key_pair)

    return _make


@pytest.fixture()
def make_context() -> Callable[..., PolicyContext]:
    """Factory for policy contexts evaluated at ``NOW`` by a DEVELOPER actor."""

    def _make(**overrides: Any) -> PolicyContext:
        fields: dict[str, Any] = {
            "tenant_id": "tenant-1",
            "actor": Actor(id="user-123", role=Role.DEVELOPER),
            "action": ActionId.GIT_COMMIT,
            "approvals": (),
            "required_scopes": frozenset({ApprovalScope.COMMIT}),
            "environment": create_environment_context(NOW),
        }
        fields.update(overrides)
        return PolicyContext(**fields)

    return _make


@pytest.fixture()
def now() -> datetime:
    """A Wednesday inside business hours."""
    return NOW


@pytest.fixture()
def weekend() -> datetime:
    return WEEKEND


@pytest.fixture()
def patch_text() -> str:
    """Patch content every default approval is bound to."""
    return PATCH


@pytest.fixture(name="approval_fields")
def approval_fields_fixture() -> Callable[..., dict[str, Any]]:
    return approval_fields
