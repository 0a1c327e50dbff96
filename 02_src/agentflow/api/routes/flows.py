"""Agent flow API routes."""

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from fastapi import APIRouter, HTTPException, Query

from ...app import Application
from ...models import Flow, FlowStatus, Requester, ResumeInput, ResumeKind, Trigger
from ...storage import flow_to_record


class FlowSummary(BaseModel):
    """Response model for a flow listing entry."""

    id: str
    agent_id: str
    status: str
    subject: str
    requester: str
    current_round: int
    max_rounds: int
    created_at: datetime
    updated_at: datetime
    timeout_at: datetime
    completed_at: datetime | None = None
    waiting_for: dict[str, Any] | None = None


class RequesterBody(BaseModel):
    email: str
    name: str | None = None


class StartFlowRequest(BaseModel):
    """Request model for starting a flow from a trigger."""

    agent_id: str
    sender: str
    subject: str
    body: str
    to: str = ""
    message_id: str | None = None
    received_at: datetime | None = None
    kind: str = "manual"
    requester: RequesterBody | None = None
    max_rounds: int | None = Field(None, ge=1)
    timeout_minutes: int | None = Field(None, gt=0)
    team_id: str | None = None
    user_id: str | None = None


class ResumeFlowRequest(BaseModel):
    """Request model for delivering a reply to a waiting flow."""

    agent_id: str
    kind: ResumeKind = ResumeKind.EMAIL_RESPONSE
    request_id: str | None = None
    message_id: str | None = None
    sender: str = ""
    subject: str = ""
    body: str = ""
    in_reply_to: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    payload: Any = None


class CompleteFlowRequest(BaseModel):
    agent_id: str
    final_response: str


class FailFlowRequest(BaseModel):
    agent_id: str
    reason: str


class ExtendTimeoutRequest(BaseModel):
    agent_id: str
    minutes: int = Field(..., gt=0)


def flow_summary(flow: Flow) -> dict:
    record = flow_to_record(flow)
    return {
        "id": flow.id,
        "agent_id": flow.agent_id,
        "status": flow.status.value,
        "subject": flow.trigger.subject,
        "requester": flow.requester.email,
        "current_round": flow.current_round,
        "max_rounds": flow.max_rounds,
        "created_at": flow.created_at,
        "updated_at": flow.updated_at,
        "timeout_at": flow.timeout_at,
        "completed_at": flow.completed_at,
        "waiting_for": record["waiting_for"],
    }


def create_flows_router(app: Application) -> APIRouter:
    """Create agent flow router."""
    router = APIRouter(prefix="/api/agent-flows", tags=["agent-flows"])

    @router.get("", response_model=list[FlowSummary])
    async def list_flows(
        agent_id: str = Query(..., description="Owning agent"),
        status: FlowStatus | None = Query(None, description="Filter by status"),
        limit: int = Query(50, ge=1, le=500),
    ) -> list[dict]:
        """List an agent's flows, newest first."""
        statuses = [status] if status else None
        flows = await app.engine.list_agent_flows(agent_id, statuses, limit)
        return [flow_summary(f) for f in flows]

    @router.get("/{flow_id}")
    async def get_flow(flow_id: str, agent_id: str = Query(...)) -> dict:
        """Get the full flow record."""
        flow = await app.engine.get_flow(flow_id, agent_id)
        if flow is None:
            raise HTTPException(status_code=404, detail="Flow not found")
        return flow_to_record(flow)

    @router.post("", response_model=FlowSummary, status_code=201)
    async def start_flow(request: StartFlowRequest) -> dict:
        """Start a flow and run it until it waits or ends."""
        trigger = Trigger(
            message_id=request.message_id or f"<{uuid.uuid4()}@agentflow>",
            sender=request.sender,
            subject=request.subject,
            body=request.body,
            received_at=request.received_at or datetime.now(timezone.utc),
            to=request.to,
            kind=request.kind,
        )
        requester = None
        if request.requester:
            requester = Requester(
                email=request.requester.email.strip().lower(), name=request.requester.name
            )
        flow = await app.engine.start_flow(
            request.agent_id,
            trigger,
            requester=requester,
            max_rounds=request.max_rounds,
            timeout_minutes=request.timeout_minutes,
            team_id=request.team_id,
            user_id=request.user_id,
        )
        return flow_summary(flow)

    @router.post("/{flow_id}/resume", response_model=FlowSummary)
    async def resume_flow(flow_id: str, request: ResumeFlowRequest) -> dict:
        """Deliver a reply to a waiting flow."""
        reply = ResumeInput(
            kind=request.kind,
            request_id=request.request_id,
            message_id=request.message_id,
            sender=request.sender,
            subject=request.subject,
            body=request.body,
            in_reply_to=request.in_reply_to,
            references=request.references,
            payload=request.payload,
        )
        flow = await app.engine.resume_flow(flow_id, reply, request.agent_id)
        return flow_summary(flow)

    @router.post("/{flow_id}/complete", response_model=FlowSummary)
    async def complete_flow(flow_id: str, request: CompleteFlowRequest) -> dict:
        """Complete a flow with a final response."""
        flow = await app.engine.complete_flow(flow_id, request.final_response, request.agent_id)
        return flow_summary(flow)

    @router.post("/{flow_id}/fail", response_model=FlowSummary)
    async def fail_flow(flow_id: str, request: FailFlowRequest) -> dict:
        """Fail a flow with a reason."""
        flow = await app.engine.fail_flow(flow_id, request.reason, request.agent_id)
        return flow_summary(flow)

    @router.post("/{flow_id}/extend-timeout", response_model=FlowSummary)
    async def extend_timeout(flow_id: str, request: ExtendTimeoutRequest) -> dict:
        """Push back the deadline of an open flow."""
        flow = await app.engine.extend_timeout(flow_id, request.agent_id, request.minutes)
        return flow_summary(flow)

    return router
