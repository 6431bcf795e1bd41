"""Signing and verification of approval records.

The signed payload is the canonical JSON of the record's wire form with
``signature`` and ``signingKeyId`` removed. Verification never raises for an
expected failure; it returns a ``VerificationResult`` carrying a stable code.

Dependencies: approval.canonical, approval.crypto, approval.keys, approval.types,
    config, infra.audit_log
Wired in: gate/capability_gate.py -> authorize()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import ValidationError

from approvalgate.approval.canonical import canonicalize
from approvalgate.approval.crypto import SigningKeyPair, sign_bytes, verify_bytes
from approvalgate.approval.keys import KeyRegistry, PublicKeyRecord
from approvalgate.approval.types import CreateSignedApproval, SignedApproval, invalid_approval
from approvalgate.config import DEFAULT_KEY_REGISTRY_TIMEOUT_SECONDS
from approvalgate.infra.audit_log import AuditRecord

_log = logging.getLogger(__name__)

_UNSIGNED_FIELDS = ("signature", "signingKeyId")


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of checking one approval signature."""

    valid: bool
    error: str | None = None
    code: str | None = None

    @classmethod
    def ok(cls) -> VerificationResult:
        return cls(valid=True)

    @classmethod
    def failed(cls, code: str, error: str) -> VerificationResult:
        return cls(valid=False, error=error, code=code)

    def to_audit_record(self, approval: SignedApproval) -> AuditRecord:
        return AuditRecord(
            type="approval.verification",
            reason_code=self.code or "valid",
            approval_ref=approval.approval_id,
            actor_id=approval.approver.id,
            action="verify_signature",
            details={"signingKeyId": approval.signing_key_id, "error": self.error},
        )


def approval_signing_payload(approval: SignedApproval) -> bytes:
    """Return the exact bytes an approval signature covers."""
    wire = approval.to_wire()
    for name in _UNSIGNED_FIELDS:
        wire.pop(name, None)
    return canonicalize(wire)


def create_signed_approval(
    approval_input: CreateSignedApproval | dict[str, Any],
    key_pair: SigningKeyPair,
    *,
    now: datetime | None = None,
) -> SignedApproval:
    """Validate *approval_input*, stamp id and time, and sign it with *key_pair*."""
    data = CreateSignedApproval.from_input(approval_input)
    fields = data.model_dump(exclude_none=True)
    fields["approval_id"] = data.approval_id or str(uuid4())
    fields["created_at"] = data.created_at or now or datetime.now(UTC)
    try:
        unsigned = SignedApproval.model_validate(
            {**fields, "signature": "", "signing_key_id": key_pair.key_id}
        )
    except ValidationError as exc:
        raise invalid_approval(exc) from exc
    signature = sign_bytes(approval_signing_payload(unsigned), key_pair.private_key)
    return unsigned.model_copy(update={"signature": signature})


def verify_approval_signature(approval: SignedApproval, public_key_hex: str) -> VerificationResult:
    if verify_bytes(approval_signing_payload(approval), approval.signature, public_key_hex):
        return VerificationResult.ok()
    _log.warning(
        "Signature check failed for approval %s (key %s)",
        approval.approval_id,
        approval.signing_key_id,
    )
    return VerificationResult.failed(
        "invalid_signature", "Approval signature does not match its content."
    )


async def verify_approval_with_key_store(
    approval: SignedApproval,
    registry: KeyRegistry,
    *,
    timeout_seconds: float | None = None,
    now: datetime | None = None,
) -> VerificationResult:
    """Resolve the signing key through *registry* and verify the signature.

    Failure order: key not found, key revoked, key expired, bad signature. A
    registry that is slower than *timeout_seconds* or raises yields
    ``registry_unavailable`` instead of blocking the caller.
    """
    timeout = DEFAULT_KEY_REGISTRY_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    key_id = approval.signing_key_id
    try:
        record = await asyncio.wait_for(registry.get_public_key(key_id), timeout=timeout)
    except TimeoutError:
        _log.warning("Key registry lookup for %s timed out after %.2fs", key_id, timeout)
        return VerificationResult.failed(
            "registry_unavailable", f"Key registry did not answer within {timeout:g}s."
        )
    except Exception as exc:  # noqa: BLE001
        _log.warning("Key registry lookup for %s failed", key_id, exc_info=True)
        return VerificationResult.failed(
            "registry_unavailable", f"Key registry lookup failed: {exc}"
        )
    return _verify_against_record(approval, record, now=now)


def _verify_against_record(
    approval: SignedApproval,
    record: PublicKeyRecord | None,
    *,
    now: datetime | None,
) -> VerificationResult:
    key_id = approval.signing_key_id
    if record is None:
        return VerificationResult.failed("key_not_found", f"Signing key {key_id} not found.")
    if record.revoked:
        _log.warning("Approval %s is signed by revoked key %s", approval.approval_id, key_id)
        return VerificationResult.failed("key_revoked", f"Signing key {key_id} has been revoked.")
    if record.is_expired(now):
        return VerificationResult.failed("key_expired", f"Signing key {key_id} has expired.")
    return verify_approval_signature(approval, record.public_key)
