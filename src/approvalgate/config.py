"""Environment-driven settings for the authorization core.

Dependencies: (none — leaf module)
Wired in: policy/environment.py, policy/defaults.py, gate/capability_gate.py,
    infra/audit_log.py
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_KEY_REGISTRY_TIMEOUT_SECONDS = 5.0
_DEFAULT_BUSINESS_HOURS_START = 9
_DEFAULT_BUSINESS_HOURS_END = 17
_DEFAULT_BUSINESS_DAYS = (0, 1, 2, 3, 4)
_DEFAULT_LARGE_PATCH_THRESHOLD = 500


@dataclass(frozen=True)
class GateSettings:
    """Tunables shared by the policy engine and the capability gate."""

    key_registry_timeout_seconds: float = DEFAULT_KEY_REGISTRY_TIMEOUT_SECONDS
    business_hours_start: int = _DEFAULT_BUSINESS_HOURS_START
    business_hours_end: int = _DEFAULT_BUSINESS_HOURS_END
    business_days: tuple[int, ...] = _DEFAULT_BUSINESS_DAYS
    large_patch_threshold: int = _DEFAULT_LARGE_PATCH_THRESHOLD
    audit_log_path: Path | None = None

    def __post_init__(self) -> None:
        if self.key_registry_timeout_seconds <= 0:
            raise ValueError("key_registry_timeout_seconds must be > 0.")
        if not 0 <= self.business_hours_start <= 23:  # noqa: PLR2004
            raise ValueError("business_hours_start must be within 0-23.")
        if not self.business_hours_start < self.business_hours_end <= 24:  # noqa: PLR2004
            raise ValueError("business_hours_end must be greater than start and at most 24.")
        if any(day < 0 or day > 6 for day in self.business_days):  # noqa: PLR2004
            raise ValueError("business_days must contain weekday numbers 0-6.")
        if self.large_patch_threshold < 0:
            raise ValueError("large_patch_threshold must be >= 0.")

    @classmethod
    def from_env(cls) -> GateSettings:
        audit_raw = os.getenv("APPROVAL_AUDIT_LOG_PATH")
        start = _read_int_in_range(
            "APPROVAL_BUSINESS_HOURS_START", _DEFAULT_BUSINESS_HOURS_START, 0, 23
        )
        end = _read_int_in_range("APPROVAL_BUSINESS_HOURS_END", _DEFAULT_BUSINESS_HOURS_END, 1, 24)
        if end <= start:
            raise SystemExit(
                "Invalid business hours: APPROVAL_BUSINESS_HOURS_END must be > "
                "APPROVAL_BUSINESS_HOURS_START."
            )
        return cls(
            key_registry_timeout_seconds=_read_positive_float(
                "APPROVAL_KEY_REGISTRY_TIMEOUT_SECONDS", DEFAULT_KEY_REGISTRY_TIMEOUT_SECONDS
            ),
            business_hours_start=start,
            business_hours_end=end,
            business_days=_read_weekdays("APPROVAL_BUSINESS_DAYS", _DEFAULT_BUSINESS_DAYS),
            large_patch_threshold=_read_non_negative_int(
                "APPROVAL_LARGE_PATCH_THRESHOLD", _DEFAULT_LARGE_PATCH_THRESHOLD
            ),
            audit_log_path=Path(audit_raw) if audit_raw else None,
        )


def _read_positive_float(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        value = float(raw)
    except ValueError as exc:
        raise SystemExit(f"{name} must be a number.") from exc
    if value <= 0:
        raise SystemExit(f"{name} must be > 0.")
    return value


def _read_non_negative_int(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise SystemExit(f"{name} must be an integer.") from exc
    if value < 0:
        raise SystemExit(f"{name} must be >= 0.")
    return value


def _read_int_in_range(name: str, default: int, low: int, high: int) -> int:
    value = _read_non_negative_int(name, default)
    if not low <= value <= high:
        raise SystemExit(f"{name} must be within {low}-{high}.")
    return value


def _read_weekdays(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        days = tuple(sorted({int(part) for part in raw.split(",") if part.strip()}))
    except ValueError as exc:
        raise SystemExit(f"{name} must be a comma-separated list of integers.") from exc
    if not days or any(day < 0 or day > 6 for day in days):  # noqa: PLR2004
        raise SystemExit(f"{name} must list weekday numbers 0-6 (Monday=0).")
    return days
