"""Ed25519 key material and content hashing for approval signing.

Dependencies: errors
Wired in: approval/signing.py, approval/keys.py, gate/verifier.py
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import UTC, datetime

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, PublicFormat
from cryptography.hazmat.primitives.serialization import NoEncryption as NoPrivateKeyEncryption

from approvalgate.errors import ApprovalValidationError

SIGNING_ALGORITHM = "ed25519"
_KEY_ID_PREFIX = "key-"
_KEY_ID_HEX_LENGTH = 16
_RAW_KEY_LENGTH = 32


@dataclass(frozen=True)
class SigningKeyPair:
    """One signer identity. The private half never leaves the signer."""

    key_id: str
    public_key: str
    private_key: str = field(repr=False)
    created_at: datetime
    algorithm: str = SIGNING_ALGORITHM


def generate_signing_key_pair() -> SigningKeyPair:
    private_key = Ed25519PrivateKey.generate()
    public_key = private_key.public_key()
    return SigningKeyPair(
        key_id=compute_key_id(public_key),
        public_key=public_key_hex(public_key),
        private_key=private_key_hex(private_key),
        created_at=datetime.now(UTC),
    )


def compute_key_id(public_key: Ed25519PublicKey) -> str:
    """Compute stable key id from raw public bytes."""
    digest = hashlib.sha256(
        public_key.public_bytes(encoding=Encoding.Raw, format=PublicFormat.Raw)
    ).hexdigest()
    return f"{_KEY_ID_PREFIX}{digest[:_KEY_ID_HEX_LENGTH]}"


def public_key_hex(public_key: Ed25519PublicKey) -> str:
    """Serialize public key bytes to hex."""
    return public_key.public_bytes(encoding=Encoding.Raw, format=PublicFormat.Raw).hex()


def private_key_hex(private_key: Ed25519PrivateKey) -> str:
    return private_key.private_bytes(
        encoding=Encoding.Raw,
        format=PrivateFormat.Raw,
        encryption_algorithm=NoPrivateKeyEncryption(),
    ).hex()


def public_key_from_hex(public_key_hex_value: str) -> Ed25519PublicKey:
    """Parse Ed25519 public key from hex, raising on malformed key material."""
    return Ed25519PublicKey.from_public_bytes(_raw_key_bytes(public_key_hex_value, "public"))


def private_key_from_hex(private_key_hex_value: str) -> Ed25519PrivateKey:
    """Parse Ed25519 private key from hex, raising on malformed key material."""
    return Ed25519PrivateKey.from_private_bytes(_raw_key_bytes(private_key_hex_value, "private"))


def sign_bytes(payload: bytes, private_key_hex_value: str) -> str:
    """Sign *payload* and return the hex signature."""
    return private_key_from_hex(private_key_hex_value).sign(payload).hex()


def verify_bytes(payload: bytes, signature_hex: str, public_key_hex_value: str) -> bool:
    """Return True when *signature_hex* is a valid signature of *payload*.

    Malformed signatures or keys verify as False rather than raising; this
    sits on the hot path of every gate decision.
    """
    try:
        public_key = public_key_from_hex(public_key_hex_value)
        public_key.verify(bytes.fromhex(signature_hex), payload)
    except (InvalidSignature, ValueError):
        return False
    return True


def compute_hash(content: str | bytes) -> str:
    """SHA-256 hex digest; text is hashed as UTF-8 with no salt."""
    data = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.sha256(data).hexdigest()


def compute_intent_hash(plan_content: str | bytes) -> str:
    return compute_hash(plan_content)


def compute_patch_hash(patch_content: str | bytes) -> str:
    return compute_hash(patch_content)


def verify_patch_hash(patch_content: str | bytes, expected_hash: str) -> bool:
    expected = expected_hash.lower()
    if not expected.isascii():
        return False
    return hmac.compare_digest(compute_patch_hash(patch_content), expected)


def _raw_key_bytes(value: str, kind: str) -> bytes:
    try:
        raw = bytes.fromhex(value)
    except ValueError as exc:
        raise ApprovalValidationError(
            "invalid_key_material", f"Ed25519 {kind} key is not valid hex."
        ) from exc
    if len(raw) != _RAW_KEY_LENGTH:
        raise ApprovalValidationError(
            "invalid_key_material",
            f"Ed25519 {kind} key must be {_RAW_KEY_LENGTH} bytes, got {len(raw)}.",
        )
    return raw
