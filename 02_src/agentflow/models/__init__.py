"""Core data models for agent flows."""

from .agents import AgentProfile, MultiRoundConfig
from .decisions import (
    AgentTarget,
    CompleteDecision,
    ContinueDecision,
    Decision,
    DecisionType,
    FailDecision,
    ToolRequest,
    WaitForAgentDecision,
    WaitForToolDecision,
    decision_from_dict,
    decision_to_dict,
)
from .flows import (
    OPEN_STATUSES,
    Flow,
    FlowAction,
    FlowMessage,
    FlowMetadata,
    FlowStatus,
    PolicyInvocation,
    Requester,
    ResumeInput,
    ResumeKind,
    Round,
    ToolCall,
    Trigger,
    WaitKind,
    WaitState,
    extract_request_id,
)
from .tracing import OutboundMessage, TraceEvent

__all__ = [
    # Agents
    "AgentProfile",
    "MultiRoundConfig",
    # Decisions
    "AgentTarget",
    "ToolRequest",
    "Decision",
    "DecisionType",
    "ContinueDecision",
    "WaitForAgentDecision",
    "WaitForToolDecision",
    "CompleteDecision",
    "FailDecision",
    "decision_to_dict",
    "decision_from_dict",
    # Flows
    "Flow",
    "FlowStatus",
    "OPEN_STATUSES",
    "Trigger",
    "Requester",
    "Round",
    "FlowAction",
    "FlowMessage",
    "FlowMetadata",
    "PolicyInvocation",
    "ToolCall",
    "WaitKind",
    "WaitState",
    "ResumeKind",
    "ResumeInput",
    "extract_request_id",
    # Tracing
    "TraceEvent",
    "OutboundMessage",
]
