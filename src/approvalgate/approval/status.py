"""Per-target approval state, folded from the decision history at read time.

Nothing here is cached: every call recomputes quorum and scope sufficiency
from the records it is given, in ``(created_at, approval_id)`` order, so the
arrival order of the input never changes the answer.

Dependencies: approval.types
Wired in: policy/helpers.py, gate/verifier.py
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from approvalgate.approval.types import (
    ApprovalDecision,
    ApprovalScope,
    SignedApproval,
    TargetType,
)


class StatusValue(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    REVOKED = "revoked"
    EXPIRED = "expired"


@dataclass(frozen=True)
class ApprovalStatus:
    target_id: str
    target_type: TargetType
    status: StatusValue
    approvals: tuple[SignedApproval, ...]
    required_approvals: int
    current_approvals: int
    missing_scopes: frozenset[ApprovalScope]
    denial_reasons: tuple[str, ...] = ()


def history_order(approval: SignedApproval) -> tuple[datetime, str]:
    return (approval.created_at, approval.approval_id)


def latest_decisions(approvals: Iterable[SignedApproval]) -> dict[str, SignedApproval]:
    """Return the most recent record per approver id."""
    latest: dict[str, SignedApproval] = {}
    for approval in sorted(approvals, key=history_order):
        latest[approval.approver.id] = approval
    return latest


def effective_approvals(
    approvals: Iterable[SignedApproval],
    *,
    now: datetime | None = None,
    include_expired: bool = False,
) -> list[SignedApproval]:
    """Return the ``approved`` records still in force.

    A ``revoked`` or ``denied`` record discards every earlier approval from the
    same approver; approvals expired at *now* are dropped unless
    *include_expired* is set.
    """
    standing: dict[str, list[SignedApproval]] = {}
    for approval in sorted(approvals, key=history_order):
        bucket = standing.setdefault(approval.approver.id, [])
        if approval.decision is ApprovalDecision.APPROVED:
            bucket.append(approval)
        else:
            bucket.clear()
    moment = now or datetime.now(UTC)
    remaining = [
        approval
        for bucket in standing.values()
        for approval in bucket
        if include_expired or not approval.is_expired(moment)
    ]
    return sorted(remaining, key=history_order)


def approved_scopes(approvals: Iterable[SignedApproval]) -> frozenset[ApprovalScope]:
    return frozenset(scope for approval in approvals for scope in approval.scopes_approved)


def unique_approver_ids(approvals: Iterable[SignedApproval]) -> frozenset[str]:
    return frozenset(approval.approver.id for approval in approvals)


def compute_approval_status(  # noqa: PLR0913
    target_type: TargetType,
    target_id: str,
    approvals: Iterable[SignedApproval],
    *,
    required_approvals: int = 1,
    required_scopes: Iterable[ApprovalScope] = (),
    now: datetime | None = None,
) -> ApprovalStatus:
    """Fold the history of one target into its current state.

    Precedence: denied, approved, revoked, expired, pending.
    """
    history = tuple(
        sorted(
            (a for a in approvals if a.target_type is target_type and a.target_id == target_id),
            key=history_order,
        )
    )
    required = frozenset(required_scopes)
    moment = now or datetime.now(UTC)
    latest = latest_decisions(history)
    effective = effective_approvals(history, now=moment)
    current = len(unique_approver_ids(effective))
    missing = required - approved_scopes(effective)

    def _status(value: StatusValue, reasons: tuple[str, ...] = ()) -> ApprovalStatus:
        return ApprovalStatus(
            target_id=target_id,
            target_type=target_type,
            status=value,
            approvals=history,
            required_approvals=required_approvals,
            current_approvals=current,
            missing_scopes=missing,
            denial_reasons=reasons,
        )

    denials = [a for a in latest.values() if a.decision is ApprovalDecision.DENIED]
    if denials:
        return _status(
            StatusValue.DENIED,
            tuple(a.reason or f"Denied by {a.approver.id}" for a in denials),
        )
    if current >= required_approvals and current > 0 and not missing:
        return _status(StatusValue.APPROVED)
    revoked = any(a.decision is ApprovalDecision.REVOKED for a in latest.values())
    if revoked and not effective:
        return _status(StatusValue.REVOKED)
    if not effective and effective_approvals(history, include_expired=True):
        return _status(StatusValue.EXPIRED)
    return _status(StatusValue.PENDING)
