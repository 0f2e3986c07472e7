"""Logging, tracing and in-memory event metrics for provisioning runs.

Diagnostics go to stderr so stdout carries only the provisioning result.
"""

import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, TextIO

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

from ..errors import WarningKind


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Azure SDK loggers report every token request and HTTP round trip at INFO.
NOISY_LOGGERS = ("azure", "msal", "httpx")


class ProvisioningEvent(str, Enum):
    REQUESTED = "provisioning_requested"
    ACCOUNT_CREATED = "account_created"
    GROUP_ASSIGNMENT_FAILED = "group_assignment_failed"
    LICENSE_ASSIGNMENT_FAILED = "license_assignment_failed"
    NOTIFICATION_FAILED = "notification_failed"
    CLEANUP_FAILED = "cleanup_failed"
    COMPLETED = "provisioning_completed"
    FAILED = "provisioning_failed"

    @classmethod
    def for_warning(cls, kind: WarningKind) -> "ProvisioningEvent":
        return cls(f"{kind.value}_failed")


def build_tracer_provider(service_name: str = "identity-provisioner", stream: Optional[TextIO] = None) -> TracerProvider:
    provider = TracerProvider(resource=Resource(attributes={"service.name": service_name}))
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter(out=stream or sys.stderr)))
    return provider


def setup_telemetry(service_name: str = "identity-provisioner", stream: Optional[TextIO] = None):
    trace.set_tracer_provider(build_tracer_provider(service_name, stream))
    return trace.get_tracer(__name__)


def setup_logging(log_level: str = "INFO", stream: Optional[TextIO] = None):
    level = getattr(logging, log_level)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S", stream=stream or sys.stderr)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return logging.getLogger("identity_provisioner")


class ProvisioningMetrics:
    """In-memory record of provisioning events, mirrored onto the active span."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def record_event(self, event: ProvisioningEvent, metadata: Optional[Mapping[str, Any]] = None) -> None:
        event = ProvisioningEvent(event)
        attributes = {key: value for key, value in (metadata or {}).items() if value is not None}

        self.events.append({
            "event_type": event.value,
            "timestamp": datetime.now(timezone.utc),
            "metadata": attributes,
        })
        trace.get_current_span().add_event(event.value, attributes=attributes)

    def events_of(self, event: ProvisioningEvent) -> List[Dict[str, Any]]:
        event = ProvisioningEvent(event)
        return [entry for entry in self.events if entry["event_type"] == event.value]

    def count(self, event: ProvisioningEvent) -> int:
        return len(self.events_of(event))

    def reset(self) -> None:
        self.events = []


provisioning_metrics = ProvisioningMetrics()
