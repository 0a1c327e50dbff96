"""Conversion between Flow objects and their JSON records.

Records written by older versions may lack fields added later; every
reader falls back to the dataclass default in that case.
"""

from datetime import datetime, timezone
from typing import Any

from ..models import (
    Flow,
    FlowAction,
    FlowMessage,
    FlowMetadata,
    FlowStatus,
    PolicyInvocation,
    Requester,
    Round,
    ToolCall,
    Trigger,
    WaitKind,
    WaitState,
    decision_from_dict,
    decision_to_dict,
)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_ts(value: str | None) -> datetime | None:
    """Parse an ISO timestamp, assuming UTC when no offset is stored."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _message_to_dict(m: FlowMessage) -> dict:
    return {
        "id": m.id,
        "direction": m.direction,
        "to": m.to,
        "from": m.sender,
        "subject": m.subject,
        "body": m.body,
        "timestamp": _ts(m.timestamp),
        "message_id": m.message_id,
        "request_id": m.request_id,
        "in_reply_to": list(m.in_reply_to),
        "references": list(m.references),
    }


def _message_from_dict(d: dict) -> FlowMessage:
    return FlowMessage(
        id=d["id"],
        direction=d["direction"],
        body=d.get("body", ""),
        timestamp=parse_ts(d.get("timestamp")),
        to=d.get("to"),
        sender=d.get("from"),
        subject=d.get("subject"),
        message_id=d.get("message_id"),
        request_id=d.get("request_id"),
        in_reply_to=d.get("in_reply_to") or [],
        references=d.get("references") or [],
    )


def _round_to_dict(r: Round) -> dict:
    return {
        "round_number": r.round_number,
        "started_at": _ts(r.started_at),
        "completed_at": _ts(r.completed_at),
        "decision": decision_to_dict(r.decision),
        "actions": [
            {
                "id": a.id,
                "type": a.type,
                "timestamp": _ts(a.timestamp),
                "status": a.status,
                "input": a.input,
                "output": a.output,
                "error": a.error,
            }
            for a in r.actions
        ],
        "policy_invocations": [
            {
                "id": p.id,
                "policy": p.policy,
                "response": p.response,
                "timestamp": _ts(p.timestamp),
                "error": p.error,
            }
            for p in r.policy_invocations
        ],
        "tool_calls": [
            {
                "id": t.id,
                "server_id": t.server_id,
                "method": t.method,
                "input": t.input,
                "output": t.output,
                "request_id": t.request_id,
                "timestamp": _ts(t.timestamp),
            }
            for t in r.tool_calls
        ],
        "messages": [_message_to_dict(m) for m in r.messages],
    }


def _round_from_dict(d: dict) -> Round:
    return Round(
        round_number=d["round_number"],
        started_at=parse_ts(d["started_at"]),
        completed_at=parse_ts(d.get("completed_at")),
        decision=decision_from_dict(d["decision"]),
        actions=[
            FlowAction(
                id=a["id"],
                type=a["type"],
                timestamp=parse_ts(a.get("timestamp")),
                status=a.get("status", "completed"),
                input=a.get("input"),
                output=a.get("output"),
                error=a.get("error"),
            )
            for a in d.get("actions", [])
        ],
        policy_invocations=[
            PolicyInvocation(
                id=p["id"],
                policy=p.get("policy", ""),
                response=p.get("response") or {},
                timestamp=parse_ts(p.get("timestamp")),
                error=p.get("error"),
            )
            for p in d.get("policy_invocations", [])
        ],
        tool_calls=[
            ToolCall(
                id=t["id"],
                server_id=t["server_id"],
                method=t["method"],
                input=t.get("input"),
                output=t.get("output"),
                request_id=t.get("request_id"),
                timestamp=parse_ts(t.get("timestamp")),
            )
            for t in d.get("tool_calls", [])
        ],
        messages=[_message_from_dict(m) for m in d.get("messages", [])],
    )


def _wait_to_dict(w: WaitState | None) -> dict | None:
    if w is None:
        return None
    return {
        "kind": w.kind.value,
        "expected_by": _ts(w.expected_by),
        "request_id": w.request_id,
        "agent": w.agent,
        "server_id": w.server_id,
        "method": w.method,
        "message_id": w.message_id,
        "thread_message_ids": list(w.thread_message_ids),
    }


def _wait_from_dict(d: dict | None) -> WaitState | None:
    if not d:
        return None
    return WaitState(
        kind=WaitKind(d["kind"]),
        expected_by=parse_ts(d["expected_by"]),
        request_id=d["request_id"],
        agent=d.get("agent"),
        server_id=d.get("server_id"),
        method=d.get("method"),
        message_id=d.get("message_id"),
        thread_message_ids=d.get("thread_message_ids") or [],
    )


def flow_to_record(flow: Flow) -> dict[str, Any]:
    """Serialize a flow to a JSON-compatible dict."""
    t = flow.trigger
    return {
        "id": flow.id,
        "agent_id": flow.agent_id,
        "status": flow.status.value,
        "trigger": {
            "message_id": t.message_id,
            "from": t.sender,
            "to": t.to,
            "subject": t.subject,
            "body": t.body,
            "received_at": _ts(t.received_at),
            "kind": t.kind,
        },
        "requester": {"email": flow.requester.email, "name": flow.requester.name},
        "rounds": [_round_to_dict(r) for r in flow.rounds],
        "current_round": flow.current_round,
        "max_rounds": flow.max_rounds,
        "waiting_for": _wait_to_dict(flow.waiting_for),
        "team_id": flow.team_id,
        "user_id": flow.user_id,
        "created_at": _ts(flow.created_at),
        "updated_at": _ts(flow.updated_at),
        "completed_at": _ts(flow.completed_at),
        "timeout_at": _ts(flow.timeout_at),
        "metadata": {
            "total_policy_invocations": flow.metadata.total_policy_invocations,
            "total_tool_calls": flow.metadata.total_tool_calls,
            "total_agent_messages": flow.metadata.total_agent_messages,
            "tags": list(flow.metadata.tags),
        },
    }


def flow_from_record(data: dict[str, Any], version: int = 0) -> Flow:
    """Rebuild a flow from ``flow_to_record`` output."""
    t = data["trigger"]
    meta = data.get("metadata") or {}
    return Flow(
        id=data["id"],
        agent_id=data["agent_id"],
        status=FlowStatus(data["status"]),
        trigger=Trigger(
            message_id=t.get("message_id", ""),
            sender=t.get("from", ""),
            to=t.get("to", ""),
            subject=t.get("subject", ""),
            body=t.get("body", ""),
            received_at=parse_ts(t.get("received_at") or data["created_at"]),
            kind=t.get("kind", "email"),
        ),
        requester=Requester(
            email=data["requester"]["email"],
            name=data["requester"].get("name"),
        ),
        rounds=[_round_from_dict(r) for r in data.get("rounds", [])],
        current_round=data.get("current_round", 0),
        max_rounds=data["max_rounds"],
        waiting_for=_wait_from_dict(data.get("waiting_for")),
        team_id=data.get("team_id"),
        user_id=data.get("user_id"),
        created_at=parse_ts(data["created_at"]),
        updated_at=parse_ts(data.get("updated_at") or data["created_at"]),
        completed_at=parse_ts(data.get("completed_at")),
        timeout_at=parse_ts(data["timeout_at"]),
        metadata=FlowMetadata(
            total_policy_invocations=meta.get("total_policy_invocations", 0),
            total_tool_calls=meta.get("total_tool_calls", 0),
            total_agent_messages=meta.get("total_agent_messages", 0),
            tags=meta.get("tags") or [],
        ),
        version=version,
    )
