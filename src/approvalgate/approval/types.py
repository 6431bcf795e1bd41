"""Approval record models and their wire format.

Records serialize to camelCase JSON (``approvalId``, ``scopesApproved``) and are
frozen once built. A change of mind is a new record with ``decision=revoked``.

Dependencies: errors, roles
Wired in: approval/signing.py, approval/status.py, policy/types.py, gate/*
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from approvalgate.errors import ApprovalValidationError
from approvalgate.roles import Role


class ApprovalScope(StrEnum):
    """Permission an approver explicitly grants."""

    COMMIT = "commit"
    PUSH = "push"
    OPEN_PR = "open_pr"
    MERGE = "merge"
    DEPLOY = "deploy"


class ApprovalDecision(StrEnum):
    APPROVED = "approved"
    DENIED = "denied"
    REVOKED = "revoked"


class TargetType(StrEnum):
    CANDIDATE = "candidate"
    RUN = "run"
    PR = "pr"


class ApproverType(StrEnum):
    USER = "user"
    SERVICE = "service"
    AGENT = "agent"


class ApprovalSource(StrEnum):
    """Channel the approval was collected through."""

    CLI = "cli"
    PR_COMMENT = "pr_comment"
    API = "api"
    WEB = "web"


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="forbid",
    )


class Approver(_WireModel):
    """Identity of whoever signed the decision."""

    type: ApproverType = ApproverType.USER
    id: str
    display_name: str | None = None
    email: str | None = None
    github_username: str | None = None
    organization: str | None = None

    @field_validator("id")
    @classmethod
    def _id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("approver id must not be empty")
        return value


class ApprovalTarget(_WireModel):
    candidate_id: str | None = None
    run_id: str | None = None
    pr_number: int | None = None
    repo: str | None = None


class _ApprovalFields(_WireModel):
    tenant_id: str
    approver: Approver
    approver_role: Role
    decision: ApprovalDecision
    scopes_approved: tuple[ApprovalScope, ...] = ()
    target_type: TargetType
    target: ApprovalTarget
    intent_hash: str
    patch_hash: str | None = None
    source: ApprovalSource
    reason: str | None = None
    comment: str | None = None
    trace_id: str | None = None
    request_id: str | None = None
    expires_at: AwareDatetime | None = None

    @field_validator("scopes_approved")
    @classmethod
    def _normalize_scopes(cls, value: tuple[ApprovalScope, ...]) -> tuple[ApprovalScope, ...]:
        return tuple(sorted(set(value)))

    @field_validator("tenant_id", "intent_hash")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @model_validator(mode="after")
    def _check_invariants(self) -> _ApprovalFields:
        if self.decision is not ApprovalDecision.APPROVED and self.scopes_approved:
            raise ValueError(f"scopesApproved must be empty for decision={self.decision.value}")
        if _target_id(self.target_type, self.target) is None:
            raise ValueError(f"target is missing the id for targetType={self.target_type.value}")
        return self

    @property
    def target_id(self) -> str:
        return _target_id(self.target_type, self.target) or ""


class CreateSignedApproval(_ApprovalFields):
    """Unsigned approval input; the signer fills id, timestamp and signature."""

    approval_id: str | None = None
    created_at: AwareDatetime | None = None

    @classmethod
    def from_input(cls, raw: CreateSignedApproval | dict[str, Any]) -> CreateSignedApproval:
        if isinstance(raw, CreateSignedApproval):
            return raw
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise invalid_approval(exc) from exc


class SignedApproval(_ApprovalFields):
    """The immutable, signed approval fact."""

    approval_id: str
    created_at: AwareDatetime
    signature: str
    signing_key_id: str

    @model_validator(mode="after")
    def _check_expiry_order(self) -> SignedApproval:
        if self.expires_at is not None and self.expires_at <= self.created_at:
            raise ValueError("expiresAt must be later than createdAt")
        return self

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or datetime.now(UTC))

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON shape persisted by callers."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_wire(cls, raw: dict[str, Any]) -> SignedApproval:
        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise invalid_approval(exc) from exc


def invalid_approval(exc: ValidationError) -> ApprovalValidationError:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first["loc"]) or "record"
    return ApprovalValidationError(
        "invalid_approval", f"Approval record is malformed at {location}: {first['msg']}"
    )


def _target_id(target_type: TargetType, target: ApprovalTarget) -> str | None:
    if target_type is TargetType.RUN:
        return target.run_id or None
    if target_type is TargetType.CANDIDATE:
        return target.candidate_id or None
    return str(target.pr_number) if target.pr_number is not None else None
