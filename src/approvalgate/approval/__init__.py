"""Signed approval records.

Public API: SignedApproval, CreateSignedApproval, create_signed_approval,
    verify_approval_with_key_store, KeyRegistry, compute_approval_status
Internal: canonical, crypto, key_files, keys, signing, status, types
"""

from approvalgate.approval.canonical import canonicalize
from approvalgate.approval.crypto import (
    SigningKeyPair,
    compute_hash,
    compute_intent_hash,
    compute_patch_hash,
    generate_signing_key_pair,
    verify_patch_hash,
)
from approvalgate.approval.keys import (
    CachingKeyRegistry,
    FileKeyRegistry,
    InMemoryKeyRegistry,
    KeyRegistry,
    PublicKeyRecord,
)
from approvalgate.approval.signing import (
    VerificationResult,
    create_signed_approval,
    verify_approval_signature,
    verify_approval_with_key_store,
)
from approvalgate.approval.status import (
    ApprovalStatus,
    StatusValue,
    compute_approval_status,
    effective_approvals,
)
from approvalgate.approval.types import (
    ApprovalDecision,
    ApprovalScope,
    ApprovalSource,
    ApprovalTarget,
    Approver,
    ApproverType,
    CreateSignedApproval,
    SignedApproval,
    TargetType,
)

__all__ = [
    "ApprovalDecision",
    "ApprovalScope",
    "ApprovalSource",
    "ApprovalStatus",
    "ApprovalTarget",
    "Approver",
    "ApproverType",
    "CachingKeyRegistry",
    "CreateSignedApproval",
    "FileKeyRegistry",
    "InMemoryKeyRegistry",
    "KeyRegistry",
    "PublicKeyRecord",
    "SignedApproval",
    "SigningKeyPair",
    "StatusValue",
    "TargetType",
    "VerificationResult",
    "canonicalize",
    "compute_approval_status",
    "compute_hash",
    "compute_intent_hash",
    "compute_patch_hash",
    "create_signed_approval",
    "effective_approvals",
    "generate_signing_key_pair",
    "verify_approval_signature",
    "verify_approval_with_key_store",
    "verify_patch_hash",
]
