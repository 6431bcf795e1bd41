"""Tests for key material, hashing and approval signatures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import pytest

from approvalgate.approval.crypto import (
    SigningKeyPair,
    compute_hash,
    compute_patch_hash,
    generate_signing_key_pair,
    public_key_from_hex,
    sign_bytes,
    verify_bytes,
    verify_patch_hash,
)
from approvalgate.approval.keys import InMemoryKeyRegistry, PublicKeyRecord
from approvalgate.approval.signing import (
    approval_signing_payload,
    create_signed_approval,
    verify_approval_signature,
    verify_approval_with_key_store,
)
from approvalgate.approval.types import (
    ApprovalScope,
    ApprovalTarget,
    Approver,
    SignedApproval,
)
from approvalgate.errors import ApprovalValidationError

_EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class _SlowRegistry(InMemoryKeyRegistry):
    async def get_public_key(self, key_id: str) -> PublicKeyRecord | None:
        await asyncio.sleep(5)
        return await super().get_public_key(key_id)


class _BrokenRegistry(InMemoryKeyRegistry):
    async def get_public_key(self, key_id: str) -> PublicKeyRecord | None:
        raise ConnectionError("registry offline")


def test_hash_of_empty_string() -> None:
    assert compute_hash("") == _EMPTY_SHA256
    assert compute_hash(b"") == _EMPTY_SHA256


def test_generated_key_pair_shape() -> None:
    pair = generate_signing_key_pair()
    assert pair.algorithm == "ed25519"
    assert pair.key_id.startswith("key-")
    assert len(pair.key_id) == len("key-") + 16
    assert len(bytes.fromhex(pair.public_key)) == 32
    assert pair.private_key not in repr(pair)


def test_distinct_keys_get_distinct_ids() -> None:
    pair = generate_signing_key_pair()
    other = generate_signing_key_pair()
    assert pair.key_id != other.key_id


def test_sign_and_verify_bytes_round_trip(key_pair: SigningKeyPair) -> None:
    signature = sign_bytes(b"payload", key_pair.private_key)
    assert verify_bytes(b"payload", signature, key_pair.public_key)
    assert not verify_bytes(b"payload!", signature, key_pair.public_key)


def test_verify_bytes_never_raises_on_garbage(key_pair: SigningKeyPair) -> None:
    """Malformed signatures and keys verify as False."""
    assert not verify_bytes(b"payload", "zz-not-hex", key_pair.public_key)
    assert not verify_bytes(b"payload", "00" * 64, key_pair.public_key)
    assert not verify_bytes(b"payload", "00" * 64, "abcd")


def test_wrong_key_fails_verification(key_pair: SigningKeyPair) -> None:
    other = generate_signing_key_pair()
    signature = sign_bytes(b"payload", key_pair.private_key)
    assert not verify_bytes(b"payload", signature, other.public_key)


def test_malformed_key_material_raises() -> None:
    with pytest.raises(ApprovalValidationError) as exc_info:
        public_key_from_hex("abcd")
    assert exc_info.value.code == "invalid_key_material"


def test_verify_patch_hash() -> None:
    digest = compute_patch_hash("patch A")
    assert verify_patch_hash("patch A", digest)
    assert verify_patch_hash("patch A", digest.upper())
    assert not verify_patch_hash("patch B", digest)
    assert not verify_patch_hash("patch A", "é" * 64)


def test_signed_approval_verifies(
    make_approval: Callable[..., SignedApproval], key_pair: SigningKeyPair
) -> None:
    approval = make_approval()
    assert approval.signing_key_id == key_pair.key_id
    assert approval.approval_id
    assert verify_approval_signature(approval, key_pair.public_key).valid


@pytest.mark.parametrize(
    "update",
    [
        {"tenant_id": "tenant-2"},
        {"scopes_approved": (ApprovalScope.COMMIT, ApprovalScope.MERGE)},
        {"intent_hash": compute_hash("another plan")},
        {"patch_hash": compute_hash("another patch")},
        {"target": ApprovalTarget(run_id="run-999")},
        {"approver": Approver(id="mallory")},
        {"comment": "added later"},
        {"approval_id": "forged-id"},
    ],
)
def test_tampering_any_field_breaks_signature(
    make_approval: Callable[..., SignedApproval],
    key_pair: SigningKeyPair,
    update: dict[str, Any],
) -> None:
    tampered = make_approval().model_copy(update=update)
    result = verify_approval_signature(tampered, key_pair.public_key)
    assert not result.valid
    assert result.code == "invalid_signature"


def test_moving_expiry_breaks_signature(
    make_approval: Callable[..., SignedApproval], key_pair: SigningKeyPair, now: datetime
) -> None:
    approval = make_approval(expires_at=now + timedelta(hours=1))
    tampered = approval.model_copy(update={"expires_at": now + timedelta(days=30)})
    assert not verify_approval_signature(tampered, key_pair.public_key).valid


def test_scope_order_does_not_change_payload(
    approval_fields: Callable[..., dict[str, Any]], key_pair: SigningKeyPair
) -> None:
    first = create_signed_approval(
        approval_fields(approval_id="a-1", scopes_approved=["push", "commit"]), key_pair
    )
    second = create_signed_approval(
        approval_fields(approval_id="a-1", scopes_approved=["commit", "push", "commit"]), key_pair
    )
    assert approval_signing_payload(first) == approval_signing_payload(second)
    assert first.scopes_approved == (ApprovalScope.COMMIT, ApprovalScope.PUSH)


def test_wire_round_trip_still_verifies(
    make_approval: Callable[..., SignedApproval], key_pair: SigningKeyPair
) -> None:
    approval = make_approval()
    wire = approval.to_wire()
    assert "approvalId" in wire
    assert "scopesApproved" in wire
    assert "reason" not in wire
    restored = SignedApproval.from_wire(wire)
    assert restored == approval
    assert verify_approval_signature(restored, key_pair.public_key).valid


def test_from_wire_rejects_unknown_fields(make_approval: Callable[..., SignedApproval]) -> None:
    wire = make_approval().to_wire()
    wire["schemaVersion"] = 2
    with pytest.raises(ApprovalValidationError) as exc_info:
        SignedApproval.from_wire(wire)
    assert exc_info.value.code == "invalid_approval"


def test_denied_approval_cannot_carry_scopes(
    approval_fields: Callable[..., dict[str, Any]], key_pair: SigningKeyPair
) -> None:
    with pytest.raises(ApprovalValidationError):
        create_signed_approval(approval_fields(decision="denied"), key_pair)


def test_target_must_match_target_type(
    approval_fields: Callable[..., dict[str, Any]], key_pair: SigningKeyPair
) -> None:
    with pytest.raises(ApprovalValidationError):
        create_signed_approval(
            approval_fields(target_type="pr", target={"run_id": "run-123"}), key_pair
        )


def test_expiry_must_follow_creation(
    approval_fields: Callable[..., dict[str, Any]], key_pair: SigningKeyPair, now: datetime
) -> None:
    with pytest.raises(ApprovalValidationError):
        create_signed_approval(approval_fields(expires_at=now - timedelta(minutes=1)), key_pair)


def test_naive_datetimes_rejected(
    approval_fields: Callable[..., dict[str, Any]], key_pair: SigningKeyPair
) -> None:
    with pytest.raises(ApprovalValidationError):
        create_signed_approval(approval_fields(created_at=datetime(2026, 3, 4, 10, 0)), key_pair)


@pytest.mark.asyncio()
async def test_verify_with_key_store_valid(
    make_approval: Callable[..., SignedApproval], key_registry: InMemoryKeyRegistry
) -> None:
    result = await verify_approval_with_key_store(make_approval(), key_registry)
    assert result.valid
    assert result.error is None


@pytest.mark.asyncio()
async def test_verify_with_key_store_unknown_key(
    make_approval: Callable[..., SignedApproval],
) -> None:
    result = await verify_approval_with_key_store(make_approval(), InMemoryKeyRegistry())
    assert not result.valid
    assert result.code == "key_not_found"


@pytest.mark.asyncio()
async def test_revocation_is_final(
    make_approval: Callable[..., SignedApproval],
    key_registry: InMemoryKeyRegistry,
    key_pair: SigningKeyPair,
) -> None:
    """A revoked key fails verification, and re-registering does not restore it."""
    approval = make_approval()
    assert (await verify_approval_with_key_store(approval, key_registry)).valid

    await key_registry.revoke_key(key_pair.key_id)
    await key_registry.register_public_key(
        PublicKeyRecord.from_key_pair(key_pair, owner="user-456")
    )

    for _ in range(2):
        result = await verify_approval_with_key_store(approval, key_registry)
        assert not result.valid
        assert result.code == "key_revoked"
        assert result.error is not None
        assert "revoked" in result.error


@pytest.mark.asyncio()
async def test_expired_key_rejected(
    make_approval: Callable[..., SignedApproval], key_pair: SigningKeyPair, now: datetime
) -> None:
    record = PublicKeyRecord.from_key_pair(
        key_pair, owner="user-456", expires_at=now + timedelta(days=1)
    )
    registry = InMemoryKeyRegistry([record])
    approval = make_approval()
    assert (await verify_approval_with_key_store(approval, registry, now=now)).valid
    result = await verify_approval_with_key_store(
        approval, registry, now=now + timedelta(days=2)
    )
    assert result.code == "key_expired"


@pytest.mark.asyncio()
async def test_revoked_reported_before_expired(
    make_approval: Callable[..., SignedApproval], key_pair: SigningKeyPair, now: datetime
) -> None:
    record = PublicKeyRecord.from_key_pair(
        key_pair, owner="user-456", expires_at=now + timedelta(days=1)
    ).as_revoked()
    registry = InMemoryKeyRegistry([record])
    result = await verify_approval_with_key_store(
        make_approval(), registry, now=now + timedelta(days=2)
    )
    assert result.code == "key_revoked"


@pytest.mark.asyncio()
async def test_tampered_approval_fails_with_key_store(
    make_approval: Callable[..., SignedApproval], key_registry: InMemoryKeyRegistry
) -> None:
    tampered = make_approval().model_copy(update={"tenant_id": "tenant-2"})
    result = await verify_approval_with_key_store(tampered, key_registry)
    assert result.code == "invalid_signature"


@pytest.mark.asyncio()
async def test_slow_registry_times_out(
    make_approval: Callable[..., SignedApproval], key_pair: SigningKeyPair
) -> None:
    registry = _SlowRegistry([PublicKeyRecord.from_key_pair(key_pair, owner="user-456")])
    result = await verify_approval_with_key_store(
        make_approval(), registry, timeout_seconds=0.01
    )
    assert not result.valid
    assert result.code == "registry_unavailable"


@pytest.mark.asyncio()
async def test_failing_registry_reports_unavailable(
    make_approval: Callable[..., SignedApproval],
) -> None:
    result = await verify_approval_with_key_store(make_approval(), _BrokenRegistry())
    assert result.code == "registry_unavailable"
    assert result.error is not None
    assert "registry offline" in result.error


@pytest.mark.asyncio()
async def test_zero_timeout_is_honoured(
    make_approval: Callable[..., SignedApproval], key_pair: SigningKeyPair
) -> None:
    registry = _SlowRegistry([PublicKeyRecord.from_key_pair(key_pair, owner="user-456")])
    result = await asyncio.wait_for(
        verify_approval_with_key_store(make_approval(), registry, timeout_seconds=0),
        timeout=1,
    )
    assert result.code == "registry_unavailable"
    assert result.error == "Key registry did not answer within 0s."
