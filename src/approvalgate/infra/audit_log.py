"""Flat audit records for approval checks, policy decisions and gate results.

Every decision the core makes can be emitted as one ``AuditRecord``. Storage
is the caller's concern; the JSON Lines sink is an append-only file for
single-host deployments.

Dependencies: config
Wired in: approval/signing.py, policy/types.py, gate/*
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from approvalgate.config import GateSettings

_log = logging.getLogger(__name__)


class AuditRecord(BaseModel):
    """One append-only audit entry."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    type: str
    reason_code: str
    approval_ref: str | None = None
    actor_id: str
    action: str
    timestamp: AwareDatetime = Field(default_factory=lambda: datetime.now(UTC))
    details: dict[str, Any] = Field(default_factory=dict)

    def to_json_line(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True) + "\n"


class AuditSink(Protocol):
    def emit(self, record: AuditRecord) -> None: ...


class InMemoryAuditSink:
    """Collects records in a list; used by tests and embedded callers."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def emit(self, record: AuditRecord) -> None:
        self.records.append(record)

    def of_type(self, record_type: str) -> list[AuditRecord]:
        return [record for record in self.records if record.type == record_type]


class JsonlAuditSink:
    """Append one JSON object per line to *audit_path*."""

    def __init__(self, audit_path: Path) -> None:
        self._path = audit_path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, record: AuditRecord) -> None:
        line = record.to_json_line()
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line)


def build_audit_sink(settings: GateSettings | None = None) -> AuditSink | None:
    """Return a JSONL sink when an audit path is configured, else None."""
    resolved = settings or GateSettings.from_env()
    if resolved.audit_log_path is None:
        return None
    _log.info("Writing approval audit records to %s", resolved.audit_log_path)
    return JsonlAuditSink(resolved.audit_log_path)
