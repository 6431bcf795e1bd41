"""Single entry point for "may this operation proceed, and if so, run it".

The caller's callback runs at most once, and only after the mode, approval
and policy checks have all passed. Every check and outcome is emitted to the
configured audit sink.

Dependencies: approval.signing, config, gate.capabilities, gate.verifier,
    infra.audit_log, infra.otel_tracing, policy.engine
Wired in: (public API, constructed by callers)
"""

from __future__ import annotations

import asyncio
import dataclasses
import inspect
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from approvalgate.approval.keys import KeyRegistry
from approvalgate.approval.signing import VerificationResult, verify_approval_with_key_store
from approvalgate.approval.types import SignedApproval
from approvalgate.config import GateSettings
from approvalgate.gate.capabilities import (
    MODE_CAPABILITIES,
    ApprovalCheckResult,
    DenialReason,
    GateCheckResult,
    GatedOperationResult,
    OperatingMode,
    OperationRequest,
    RejectedApproval,
    SafeOperation,
)
from approvalgate.gate.verifier import check_approval
from approvalgate.infra.audit_log import AuditRecord, AuditSink
from approvalgate.infra.otel_tracing import gate_span
from approvalgate.policy.engine import PolicyEngine
from approvalgate.policy.types import Decision, PolicyContext, PolicyResult

_log = logging.getLogger(__name__)

GateAction = Callable[[], Any]


class CapabilityGate:
    """Combines approval checks, signature verification and policy evaluation."""

    def __init__(
        self,
        engine: PolicyEngine,
        *,
        key_registry: KeyRegistry | None = None,
        audit_sink: AuditSink | None = None,
        settings: GateSettings | None = None,
    ) -> None:
        self._engine = engine
        self._key_registry = key_registry
        self._audit_sink = audit_sink
        self._settings = settings or GateSettings()

    @property
    def engine(self) -> PolicyEngine:
        return self._engine

    async def execute_if_approved(  # noqa: PLR0913
        self,
        request: OperationRequest,
        approval: SignedApproval | None,
        patch_content: str | bytes | None,
        policy_context: PolicyContext,
        action: GateAction,
        *,
        now: datetime | None = None,
    ) -> GatedOperationResult:
        """Run *action* only if the request passes mode, approval and policy checks."""
        with gate_span(
            "execute_if_approved",
            operation=request.operation.value,
            tenant_id=request.tenant_id,
            actor_id=request.actor_id,
            approval_id=approval.approval_id if approval else None,
            mode=request.mode.value if request.mode else None,
        ) as span:
            result = await self._execute(
                request, approval, patch_content, policy_context, action, now=now
            )
            span.record_outcome(
                executed=result.executed,
                success=result.success,
                denial_reason=result.denial_reason.value if result.denial_reason else None,
            )
        self._emit(result.to_audit_record(request.actor_id, approval))
        return result

    async def _execute(  # noqa: PLR0913
        self,
        request: OperationRequest,
        approval: SignedApproval | None,
        patch_content: str | bytes | None,
        policy_context: PolicyContext,
        action: GateAction,
        *,
        now: datetime | None,
    ) -> GatedOperationResult:
        if request.mode is not None and not MODE_CAPABILITIES[request.mode].allows_gated(
            request.operation
        ):
            _log.info("Operation %s is not allowed in mode %s", request.operation, request.mode)
            return _denied(
                request,
                DenialReason.POLICY_DENIED,
                f"Operation {request.operation} is not permitted in {request.mode} mode.",
            )

        check = check_approval(request, approval, patch_content, now=now)
        self._emit(check.to_audit_record(request, approval))
        if not check.approved:
            _log.info(
                "Denied %s for %s: %s", request.operation, request.actor_id, check.reason
            )
            return _denied(request, check.reason, check.message, approval_check=check)

        policy_result = self._engine.evaluate(policy_context)
        self._emit(policy_result.to_audit_record(policy_context))
        if policy_result.decision is not Decision.ALLOW:
            reason = (
                DenialReason.POLICY_DENIED
                if policy_result.decision is Decision.DENY
                else DenialReason.INSUFFICIENT_QUORUM
            )
            return _denied(
                request,
                reason,
                " ".join(policy_result.reasons) or reason.denial_text,
                approval_check=check,
                policy_result=policy_result,
                resolution=" ".join(policy_result.resolutions) or None,
            )

        try:
            outcome = await _invoke(action)
        except Exception as exc:  # noqa: BLE001
            _log.warning("Gated operation %s failed", request.operation, exc_info=True)
            return GatedOperationResult(
                success=False,
                executed=True,
                operation=request.operation,
                message=f"Operation {request.operation} failed: {exc}",
                approval_check=check,
                policy_result=policy_result,
                error=str(exc),
            )
        return GatedOperationResult(
            success=True,
            executed=True,
            operation=request.operation,
            message=f"Operation {request.operation} completed.",
            approval_check=check,
            policy_result=policy_result,
            result=outcome,
        )

    async def run_safe_operation(
        self,
        mode: OperatingMode,
        operation: SafeOperation,
        action: GateAction,
        *,
        actor_id: str = "system",
    ) -> GatedOperationResult:
        """Run a non-gated operation if *mode* permits it; no approval is consulted."""
        with gate_span(
            "run_safe_operation", operation=operation.value, mode=mode.value, actor_id=actor_id
        ) as span:
            result = await _run_safe(mode, operation, action)
            span.record_outcome(
                executed=result.executed,
                success=result.success,
                denial_reason=result.denial_reason.value if result.denial_reason else None,
            )
        self._emit(result.to_audit_record(actor_id))
        return result

    async def authorize(self, context: PolicyContext) -> GateCheckResult:
        """Verify every approval in *context*, then evaluate policy on the valid ones."""
        with gate_span(
            "authorize",
            action=str(context.action),
            tenant_id=context.tenant_id,
            actor_id=context.actor.id,
            approvals=len(context.approvals),
        ) as span:
            verifications = await asyncio.gather(
                *(self._verify(context, approval) for approval in context.approvals)
            )
            verified: list[SignedApproval] = []
            rejected: list[RejectedApproval] = []
            for approval, verification in zip(context.approvals, verifications, strict=True):
                self._emit(verification.to_audit_record(approval))
                if verification.valid:
                    verified.append(approval)
                    continue
                _log.warning(
                    "Discarding approval %s: %s", approval.approval_id, verification.error
                )
                rejected.append(
                    RejectedApproval(
                        approval_id=approval.approval_id,
                        code=verification.code or "invalid",
                        error=verification.error or "",
                    )
                )
            policy_result = self._engine.evaluate(
                dataclasses.replace(context, approvals=tuple(verified))
            )
            span.record_decision(policy_result.decision.value, rejected=len(rejected))
        self._emit(policy_result.to_audit_record(context))
        self._emit(_authorize_record(context, policy_result, rejected))
        return GateCheckResult(
            allowed=policy_result.allowed,
            policy_result=policy_result,
            rejected_approvals=tuple(rejected),
        )

    async def _verify(self, context: PolicyContext, approval: SignedApproval) -> VerificationResult:
        if approval.tenant_id != context.tenant_id:
            return VerificationResult.failed(
                "tenant_mismatch",
                f"Approval belongs to tenant {approval.tenant_id}, not {context.tenant_id}.",
            )
        if self._key_registry is None:
            return VerificationResult.failed(
                "key_registry_missing", "No key registry is configured to verify signatures."
            )
        return await verify_approval_with_key_store(
            approval,
            self._key_registry,
            timeout_seconds=self._settings.key_registry_timeout_seconds,
            now=context.environment.timestamp,
        )

    def _emit(self, record: AuditRecord) -> None:
        if self._audit_sink is not None:
            self._audit_sink.emit(record)


async def _invoke(action: GateAction) -> Any:
    outcome = action()
    if inspect.isawaitable(outcome):
        return await outcome
    return outcome


async def _run_safe(
    mode: OperatingMode, operation: SafeOperation, action: GateAction
) -> GatedOperationResult:
    if not MODE_CAPABILITIES[mode].allows_safe(operation):
        return GatedOperationResult(
            success=False,
            executed=False,
            operation=operation,
            message=f"Operation {operation} is not permitted in {mode} mode.",
            denial_reason=DenialReason.POLICY_DENIED,
            resolution=DenialReason.POLICY_DENIED.resolution_text,
        )
    try:
        outcome = await _invoke(action)
    except Exception as exc:  # noqa: BLE001
        _log.warning("Safe operation %s failed", operation, exc_info=True)
        return GatedOperationResult(
            success=False,
            executed=True,
            operation=operation,
            message=f"Operation {operation} failed: {exc}",
            error=str(exc),
        )
    return GatedOperationResult(
        success=True,
        executed=True,
        operation=operation,
        message=f"Operation {operation} completed.",
        result=outcome,
    )


def _denied(  # noqa: PLR0913
    request: OperationRequest,
    reason: DenialReason | None,
    message: str,
    *,
    approval_check: ApprovalCheckResult | None = None,
    policy_result: PolicyResult | None = None,
    resolution: str | None = None,
) -> GatedOperationResult:
    denial = reason or DenialReason.NO_APPROVAL
    return GatedOperationResult(
        success=False,
        executed=False,
        operation=request.operation,
        message=message,
        denial_reason=denial,
        resolution=resolution or denial.resolution_text,
        approval_check=approval_check,
        policy_result=policy_result,
    )


def _authorize_record(
    context: PolicyContext,
    policy_result: PolicyResult,
    rejected: list[RejectedApproval],
) -> AuditRecord:
    return AuditRecord(
        type="gate.authorize",
        reason_code=policy_result.decision.value,
        actor_id=context.actor.id,
        action=str(context.action),
        details={
            "tenantId": context.tenant_id,
            "rejectedApprovals": [item.approval_id for item in rejected],
        },
    )
