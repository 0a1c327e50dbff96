"""Tracing and audit data models."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class TraceEvent:
    """A single audit event about a flow."""

    id: str
    event_type: str  # e.g. "flow_started", "round_executed"
    actor: str  # who created this event
    data: dict
    timestamp: datetime


@dataclass
class OutboundMessage:
    """A message queued in the outbox for an external delivery worker."""

    id: str
    flow_id: str
    kind: str  # "agent_request" or "requester_notice"
    sender: str
    recipient: str
    subject: str
    body: str
    created_at: datetime
    request_id: str | None = None
    status: str = "pending"  # "pending", "delivered", "failed"
    attempts: int = 0
