"""Tests for gate spans and the optional OpenTelemetry exporter setup."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from approvalgate.approval.types import SignedApproval
from approvalgate.gate.capabilities import GatedOperation, OperatingMode, OperationRequest
from approvalgate.gate.capability_gate import CapabilityGate
from approvalgate.infra import otel_tracing
from approvalgate.policy.engine import PolicyEngine
from approvalgate.policy.types import ActionId, PolicyContext


def _fake_trace() -> tuple[MagicMock, MagicMock]:
    trace_mod = MagicMock()
    tracer = trace_mod.get_tracer.return_value
    span = tracer.start_as_current_span.return_value.__enter__.return_value
    return trace_mod, span


def test_gate_span_collects_attributes_without_opentelemetry() -> None:
    with (
        patch.object(otel_tracing, "_load_trace", return_value=None),
        otel_tracing.gate_span("authorize", tenant_id="tenant-1", approval_id=None) as span,
    ):
        span.record_decision("ALLOW", rejected=2)
    assert span.attributes == {
        "approvalgate.tenant_id": "tenant-1",
        "approvalgate.decision": "ALLOW",
        "approvalgate.rejected_approvals": 2,
    }


def test_gate_span_mirrors_attributes_onto_live_span() -> None:
    trace_mod, span = _fake_trace()
    with (
        patch.object(otel_tracing, "_load_trace", return_value=trace_mod),
        otel_tracing.gate_span("execute_if_approved", operation="git_push") as gate,
    ):
        gate.record_outcome(executed=False, success=False, denial_reason="SCOPE_MISMATCH")

    trace_mod.get_tracer.assert_called_once_with(otel_tracing.TRACER_NAME)
    trace_mod.get_tracer.return_value.start_as_current_span.assert_called_once_with(
        "approvalgate.execute_if_approved"
    )
    span.set_attribute.assert_any_call("approvalgate.operation", "git_push")
    span.set_attribute.assert_any_call("approvalgate.denial_reason", "SCOPE_MISMATCH")
    span.set_attribute.assert_any_call("approvalgate.executed", False)


def test_outcome_without_denial_omits_reason() -> None:
    gate = otel_tracing.GateSpan()
    gate.record_outcome(executed=True, success=True)
    assert "approvalgate.denial_reason" not in gate.attributes


@pytest.mark.asyncio()
async def test_gate_records_denial_on_span(
    engine: PolicyEngine,
    make_approval: Callable[..., SignedApproval],
    make_context: Callable[..., PolicyContext],
    now: datetime,
) -> None:
    trace_mod, span = _fake_trace()
    approval = make_approval(scopes_approved=["merge"])
    request = OperationRequest(
        operation=GatedOperation.PR_MERGE,
        tenant_id="tenant-1",
        actor_id="user-123",
        run_id="run-123",
        mode=OperatingMode.COMMIT_AFTER_APPROVAL,
    )
    with patch.object(otel_tracing, "_load_trace", return_value=trace_mod):
        await CapabilityGate(engine).execute_if_approved(
            request,
            approval,
            None,
            make_context(action=ActionId.PR_MERGE, approvals=(approval,)),
            lambda: None,
            now=now,
        )
    span.set_attribute.assert_any_call("approvalgate.mode", "commit-after-approval")
    span.set_attribute.assert_any_call("approvalgate.approval_id", approval.approval_id)
    span.set_attribute.assert_any_call("approvalgate.denial_reason", "POLICY_DENIED")


def test_configure_without_endpoint_does_nothing(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    with patch.object(otel_tracing, "_load_trace") as load_trace:
        assert otel_tracing.configure() is False
    load_trace.assert_not_called()


def test_configure_warns_when_packages_missing(caplog: pytest.LogCaptureFixture) -> None:
    with (
        patch.object(otel_tracing, "_load_trace", return_value=None),
        caplog.at_level(logging.WARNING, logger="approvalgate.infra.otel_tracing"),
    ):
        assert otel_tracing.configure("http://localhost:4317") is False
    assert "gate tracing disabled" in caplog.text
