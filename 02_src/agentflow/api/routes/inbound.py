"""Inbound email API routes."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field
from fastapi import APIRouter

from ...app import Application
from ...inbound import InboundEmail
from .flows import FlowSummary, flow_summary


class InboundEmailRequest(BaseModel):
    """Request model for an email delivered to an agent."""

    message_id: str
    sender: str
    subject: str
    body: str
    to: str = ""
    received_at: datetime | None = None
    in_reply_to: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)


class InboundEmailResponse(BaseModel):
    resumed: bool
    duplicate: bool = False
    flow: FlowSummary


def create_inbound_router(app: Application) -> APIRouter:
    """Create inbound email router."""
    router = APIRouter(prefix="/api/agents", tags=["inbound"])

    @router.post("/{agent_id}/inbound", response_model=InboundEmailResponse)
    async def receive_email(agent_id: str, request: InboundEmailRequest) -> dict:
        """Resume the flow the email answers, or start a new one."""
        email = InboundEmail(
            message_id=request.message_id,
            sender=request.sender,
            subject=request.subject,
            body=request.body,
            to=request.to,
            received_at=request.received_at or datetime.now(timezone.utc),
            in_reply_to=request.in_reply_to,
            references=request.references,
        )
        result = await app.inbound.route_email(agent_id, email)
        return {
            "resumed": result.resumed,
            "duplicate": result.duplicate,
            "flow": flow_summary(result.flow),
        }

    return router
