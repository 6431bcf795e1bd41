"""Exception types for programming and input errors.

Expected authorization outcomes (bad signature, missing quorum, patch drift)
are returned as result objects and never raised from here.

Dependencies: (none — leaf module)
Wired in: approval/types.py, approval/keys.py, policy/engine.py
"""

from __future__ import annotations


class ApprovalGateError(ValueError):
    """Base error carrying a stable machine-readable code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ApprovalValidationError(ApprovalGateError):
    """Raised when approval or key input is malformed."""


class KeyRegistryError(ApprovalGateError):
    """Raised on conflicting key registration or a corrupt keyring."""


class PolicyRegistrationError(ApprovalGateError):
    """Raised when a policy cannot be registered."""
