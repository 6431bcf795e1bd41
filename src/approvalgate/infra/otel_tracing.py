"""OpenTelemetry spans around capability gate calls.

``gate_span`` opens one span per gate call, tags it with the request identity
and lets the gate record its outcome (denial reason, policy decision, rejected
approvals) under ``approvalgate.*`` attribute names. Without the optional
``opentelemetry`` packages the attributes are still collected on the
``GateSpan`` but nothing is exported.

Dependencies: (stdlib only, optional opentelemetry)
Wired in: gate/capability_gate.py -> execute_if_approved(), run_safe_operation(),
    authorize()
"""

from __future__ import annotations

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager
from types import ModuleType
from typing import Any

_log = logging.getLogger(__name__)

TRACER_NAME = "approvalgate"
ATTRIBUTE_PREFIX = "approvalgate."

AttributeValue = str | int | float | bool


def _load_trace() -> ModuleType | None:
    try:
        from opentelemetry import trace
    except ModuleNotFoundError:
        return None
    return trace


class GateSpan:
    """Attributes of one gate call, mirrored onto the live span when there is one."""

    def __init__(self, span: Any | None = None) -> None:
        self._span = span
        self.attributes: dict[str, AttributeValue] = {}

    def set(self, name: str, value: AttributeValue | None) -> None:
        if value is None:
            return
        key = ATTRIBUTE_PREFIX + name
        self.attributes[key] = value
        if self._span is not None:
            self._span.set_attribute(key, value)

    def record_outcome(
        self, *, executed: bool, success: bool, denial_reason: str | None = None
    ) -> None:
        self.set("executed", executed)
        self.set("success", success)
        self.set("denial_reason", denial_reason)

    def record_decision(self, decision: str, *, rejected: int = 0) -> None:
        self.set("decision", decision)
        self.set("rejected_approvals", rejected)


@contextmanager
def gate_span(call: str, **identity: AttributeValue | None) -> Generator[GateSpan, None, None]:
    """Trace gate *call*; *identity* keyword values become span attributes.

    ``None`` values are skipped so optional request fields can be passed as-is.
    """
    trace = _load_trace()
    if trace is None:
        gate = GateSpan()
        _tag(gate, identity)
        yield gate
        return

    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(ATTRIBUTE_PREFIX + call) as span:
        gate = GateSpan(span)
        _tag(gate, identity)
        yield gate


def _tag(gate: GateSpan, identity: dict[str, AttributeValue | None]) -> None:
    for name, value in identity.items():
        gate.set(name, value)


def configure(endpoint: str | None = None) -> bool:
    """Export gate spans over OTLP/gRPC; returns True when an exporter was installed.

    *endpoint* defaults to ``OTEL_EXPORTER_OTLP_ENDPOINT``. Without one, or
    without the ``otel`` extra, tracing stays local and this returns False.
    """
    target = endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if not target:
        return False

    trace = _load_trace()
    try:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ModuleNotFoundError:
        trace = None
    if trace is None:
        _log.warning(
            "Gate tracing requested for %s but the 'otel' extra is not installed; "
            "gate tracing disabled.",
            target,
        )
        return False

    service_name = os.getenv("OTEL_SERVICE_NAME", TRACER_NAME)
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    insecure = os.getenv("OTEL_EXPORTER_OTLP_INSECURE", "true").lower() == "true"
    provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=target, insecure=insecure))
    )
    trace.set_tracer_provider(provider)
    _log.info("Exporting gate spans to %s (service=%s)", target, service_name)
    return True
