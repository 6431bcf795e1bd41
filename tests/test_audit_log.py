"""Tests for audit records and sinks."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from approvalgate.approval.signing import VerificationResult
from approvalgate.approval.types import SignedApproval
from approvalgate.config import GateSettings
from approvalgate.infra.audit_log import (
    AuditRecord,
    InMemoryAuditSink,
    JsonlAuditSink,
    build_audit_sink,
)


def _record(**overrides: str) -> AuditRecord:
    fields = {
        "type": "policy.decision",
        "reason_code": "ALLOW",
        "actor_id": "user-123",
        "action": "git.commit",
    }
    fields.update(overrides)
    return AuditRecord(**fields)


def test_json_line_uses_camel_case_and_drops_nulls() -> None:
    line = _record().to_json_line()
    assert line.endswith("\n")
    data = json.loads(line)
    assert data["reasonCode"] == "ALLOW"
    assert data["actorId"] == "user-123"
    assert "approvalRef" not in data
    assert data["timestamp"]


def test_jsonl_sink_appends_lines(tmp_path: Path) -> None:
    path = tmp_path / "audit" / "approvals.jsonl"
    sink = JsonlAuditSink(path)
    sink.emit(_record())
    sink.emit(_record(reason_code="DENY", approval_ref="appr-1"))

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["reasonCode"] for line in lines] == ["ALLOW", "DENY"]
    assert json.loads(lines[1])["approvalRef"] == "appr-1"


def test_in_memory_sink_filters_by_type() -> None:
    sink = InMemoryAuditSink()
    sink.emit(_record())
    sink.emit(_record(type="gate.result", reason_code="EXECUTED"))
    assert [r.reason_code for r in sink.of_type("gate.result")] == ["EXECUTED"]


def test_build_sink_without_path_is_none() -> None:
    assert build_audit_sink(GateSettings()) is None


def test_build_sink_from_settings(tmp_path: Path) -> None:
    sink = build_audit_sink(GateSettings(audit_log_path=tmp_path / "audit.jsonl"))
    assert isinstance(sink, JsonlAuditSink)
    assert sink.path == tmp_path / "audit.jsonl"


def test_build_sink_reads_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APPROVAL_AUDIT_LOG_PATH", str(tmp_path / "env.jsonl"))
    sink = build_audit_sink()
    assert isinstance(sink, JsonlAuditSink)
    assert sink.path == tmp_path / "env.jsonl"


def test_verification_failure_record(make_approval: Callable[..., SignedApproval]) -> None:
    approval = make_approval()
    record = VerificationResult.failed("key_revoked", "Key was revoked").to_audit_record(approval)
    assert record.type == "approval.verification"
    assert record.reason_code == "key_revoked"
    assert record.approval_ref == approval.approval_id
    assert record.actor_id == "user-456"
