"""Time-of-request attributes consumed by time-sensitive policies.

Dependencies: config
Wired in: policy/types.py, gate/capability_gate.py
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from approvalgate.config import GateSettings


@dataclass(frozen=True)
class EnvironmentContext:
    """When the request happens, plus any caller-supplied attributes."""

    timestamp: datetime
    day_of_week: int
    hour: int
    is_business_hours: bool
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)


def is_business_hours(moment: datetime, settings: GateSettings) -> bool:
    return (
        moment.weekday() in settings.business_days
        and settings.business_hours_start <= moment.hour < settings.business_hours_end
    )


def create_environment_context(
    now: datetime | None = None,
    settings: GateSettings | None = None,
    *,
    attributes: Mapping[str, Any] | None = None,
) -> EnvironmentContext:
    """Build the environment for *now* (UTC when omitted) from the business calendar."""
    moment = now or datetime.now(UTC)
    resolved = settings or GateSettings()
    return EnvironmentContext(
        timestamp=moment,
        day_of_week=moment.weekday(),
        hour=moment.hour,
        is_business_hours=is_business_hours(moment, resolved),
        attributes=MappingProxyType(dict(attributes or {})),
    )
