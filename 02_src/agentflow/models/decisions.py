"""Decision variants returned by a decision policy."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class DecisionType(str, Enum):
    """Tag of a Decision variant."""

    CONTINUE = "continue"
    WAIT_FOR_AGENT = "wait_for_agent"
    WAIT_FOR_MCP = "wait_for_mcp"
    COMPLETE = "complete"
    FAIL = "fail"


def _check_confidence(confidence: float) -> None:
    if not 0.0 <= confidence <= 1.0:
        raise ValueError(f"confidence must be between 0 and 1, got {confidence}")


@dataclass(frozen=True)
class AgentTarget:
    """Who a wait_for_agent decision contacts and what it asks."""

    message_subject: str
    message_body: str
    question: str = ""
    agent_email: str | None = None
    agent_id: str | None = None  # legacy, resolved through the directory

    def __post_init__(self):
        if not self.agent_email and not self.agent_id:
            raise ValueError("AgentTarget needs agent_email or agent_id")


@dataclass(frozen=True)
class ToolRequest:
    """A call to a tool server."""

    server_id: str
    method: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ContinueDecision:
    reasoning: str
    confidence: float = 0.5
    type = DecisionType.CONTINUE

    def __post_init__(self):
        _check_confidence(self.confidence)


@dataclass(frozen=True)
class WaitForAgentDecision:
    target: AgentTarget
    reasoning: str
    confidence: float = 0.5
    type = DecisionType.WAIT_FOR_AGENT

    def __post_init__(self):
        _check_confidence(self.confidence)


@dataclass(frozen=True)
class WaitForToolDecision:
    call: ToolRequest
    reasoning: str
    confidence: float = 0.5
    type = DecisionType.WAIT_FOR_MCP

    def __post_init__(self):
        _check_confidence(self.confidence)


@dataclass(frozen=True)
class CompleteDecision:
    final_response: str
    reasoning: str
    confidence: float = 0.5
    type = DecisionType.COMPLETE

    def __post_init__(self):
        _check_confidence(self.confidence)
        if not self.final_response:
            raise ValueError("CompleteDecision needs a final_response")


@dataclass(frozen=True)
class FailDecision:
    reasoning: str
    confidence: float = 1.0
    type = DecisionType.FAIL

    def __post_init__(self):
        _check_confidence(self.confidence)


Decision = Union[
    ContinueDecision,
    WaitForAgentDecision,
    WaitForToolDecision,
    CompleteDecision,
    FailDecision,
]


def decision_to_dict(decision: Decision) -> dict:
    """Serialize a decision with its ``type`` tag."""
    data: dict[str, Any] = {
        "type": decision.type.value,
        "reasoning": decision.reasoning,
        "confidence": decision.confidence,
    }
    if isinstance(decision, WaitForAgentDecision):
        t = decision.target
        data["target_agent"] = {
            "agent_email": t.agent_email,
            "agent_id": t.agent_id,
            "message_subject": t.message_subject,
            "message_body": t.message_body,
            "question": t.question,
        }
    elif isinstance(decision, WaitForToolDecision):
        data["tool_call"] = {
            "server_id": decision.call.server_id,
            "method": decision.call.method,
            "params": decision.call.params,
        }
    elif isinstance(decision, CompleteDecision):
        data["final_response"] = decision.final_response
    return data


def decision_from_dict(data: dict) -> Decision:
    """Rebuild a decision from ``decision_to_dict`` output."""
    kind = DecisionType(data["type"])
    reasoning = data.get("reasoning", "")
    confidence = float(data.get("confidence", 0.5))

    if kind is DecisionType.CONTINUE:
        return ContinueDecision(reasoning=reasoning, confidence=confidence)
    if kind is DecisionType.WAIT_FOR_AGENT:
        t = data["target_agent"]
        return WaitForAgentDecision(
            target=AgentTarget(
                agent_email=t.get("agent_email"),
                agent_id=t.get("agent_id"),
                message_subject=t.get("message_subject", ""),
                message_body=t.get("message_body", ""),
                question=t.get("question", ""),
            ),
            reasoning=reasoning,
            confidence=confidence,
        )
    if kind is DecisionType.WAIT_FOR_MCP:
        c = data["tool_call"]
        return WaitForToolDecision(
            call=ToolRequest(
                server_id=c["server_id"],
                method=c["method"],
                params=c.get("params") or {},
            ),
            reasoning=reasoning,
            confidence=confidence,
        )
    if kind is DecisionType.COMPLETE:
        return CompleteDecision(
            final_response=data["final_response"],
            reasoning=reasoning,
            confidence=confidence,
        )
    return FailDecision(reasoning=reasoning, confidence=confidence)
