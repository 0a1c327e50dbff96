"""Flow-related data models."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from .decisions import ContinueDecision, Decision

REQUEST_ID_PATTERN = re.compile(r"\[Req:\s*(req-[A-Za-z0-9_-]+)\]")


class FlowStatus(str, Enum):
    """Lifecycle status of a flow."""

    ACTIVE = "active"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowStatus.COMPLETED, FlowStatus.FAILED, FlowStatus.TIMEOUT)


OPEN_STATUSES = [FlowStatus.ACTIVE, FlowStatus.WAITING]


class WaitKind(str, Enum):
    """What kind of external event resumes a waiting flow."""

    AGENT_RESPONSE = "agent_response"
    TOOL_CALLBACK = "tool_callback"
    WEBHOOK = "webhook"


class ResumeKind(str, Enum):
    EMAIL_RESPONSE = "email_response"
    TOOL_CALLBACK = "tool_callback"
    WEBHOOK = "webhook"
    MANUAL = "manual"


@dataclass(frozen=True)
class Trigger:
    """The inbound event that started a flow."""

    message_id: str
    sender: str  # raw From header, "Name <addr>" or "addr"
    subject: str
    body: str
    received_at: datetime
    to: str = ""
    kind: str = "email"  # "email", "webhook", "manual"


@dataclass
class Requester:
    """Who is notified when the flow ends."""

    email: str
    name: str | None = None


def extract_request_id(subject: str) -> str | None:
    """Return the correlation id embedded as ``[Req: req-...]`` in a subject."""
    match = REQUEST_ID_PATTERN.search(subject or "")
    return match.group(1) if match else None


@dataclass
class ResumeInput:
    """An external reply delivered to a waiting flow."""

    kind: ResumeKind = ResumeKind.EMAIL_RESPONSE
    request_id: str | None = None
    message_id: str | None = None
    sender: str = ""
    subject: str = ""
    body: str = ""
    in_reply_to: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    payload: Any = None

    def correlation_id(self) -> str | None:
        return self.request_id or extract_request_id(self.subject)


@dataclass
class WaitState:
    """Persisted description of what will resume a waiting flow."""

    kind: WaitKind
    expected_by: datetime
    request_id: str
    agent: str | None = None  # target agent email (or legacy id)
    server_id: str | None = None
    method: str | None = None
    message_id: str | None = None
    thread_message_ids: list[str] = field(default_factory=list)

    def matches(self, reply: ResumeInput) -> bool:
        """Tell whether ``reply`` answers this wait."""
        correlation = reply.correlation_id()
        if correlation:
            return correlation == self.request_id

        referenced = set(reply.in_reply_to) | set(reply.references)
        known = {self.message_id, *self.thread_message_ids} - {None}
        if referenced & known:
            return True

        # Operator override
        return reply.kind is ResumeKind.MANUAL


@dataclass
class FlowMessage:
    """A message sent or received while processing a round."""

    id: str
    direction: str  # "sent" or "received"
    body: str
    timestamp: datetime
    to: str | None = None
    sender: str | None = None
    subject: str | None = None
    message_id: str | None = None
    request_id: str | None = None
    in_reply_to: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)


@dataclass
class FlowAction:
    id: str
    type: str  # "send_email", "call_tool", "call_policy", "wait", "decide"
    timestamp: datetime
    status: str = "completed"  # "pending", "completed", "failed"
    input: Any = None
    output: Any = None
    error: str | None = None


@dataclass
class PolicyInvocation:
    id: str
    policy: str
    response: dict
    timestamp: datetime
    error: str | None = None


@dataclass
class ToolCall:
    id: str
    server_id: str
    method: str
    input: Any
    timestamp: datetime
    output: Any = None
    request_id: str | None = None


def placeholder_decision() -> Decision:
    return ContinueDecision(reasoning="Starting round execution", confidence=0.0)


@dataclass
class Round:
    """One decision cycle within a flow."""

    round_number: int
    started_at: datetime
    decision: Decision = field(default_factory=placeholder_decision)
    completed_at: datetime | None = None
    actions: list[FlowAction] = field(default_factory=list)
    policy_invocations: list[PolicyInvocation] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    messages: list[FlowMessage] = field(default_factory=list)


@dataclass
class FlowMetadata:
    """Aggregate counters, derived from rounds."""

    total_policy_invocations: int = 0
    total_tool_calls: int = 0
    total_agent_messages: int = 0
    tags: list[str] = field(default_factory=list)


@dataclass
class Flow:
    """One persisted orchestration instance."""

    id: str
    agent_id: str
    status: FlowStatus
    trigger: Trigger
    requester: Requester
    max_rounds: int
    created_at: datetime
    updated_at: datetime
    timeout_at: datetime
    rounds: list[Round] = field(default_factory=list)
    current_round: int = 0
    waiting_for: WaitState | None = None
    completed_at: datetime | None = None
    team_id: str | None = None
    user_id: str | None = None
    metadata: FlowMetadata = field(default_factory=FlowMetadata)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def last_round(self) -> Round | None:
        return self.rounds[-1] if self.rounds else None

    def is_overdue(self, now: datetime) -> bool:
        """Past the flow deadline, or waiting past the wait's own deadline."""
        if self.is_terminal:
            return False
        if now > self.timeout_at:
            return True
        return self.waiting_for is not None and now > self.waiting_for.expected_by
