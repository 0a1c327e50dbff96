"""Observability API routes."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException, Query

from ...app import Application


class TraceEventResponse(BaseModel):
    """Response model for trace event."""

    id: str
    event_type: str
    actor: str
    data: dict[str, Any]
    timestamp: datetime


class OutboundMessageResponse(BaseModel):
    id: str
    flow_id: str
    kind: str
    sender: str
    recipient: str
    subject: str
    body: str
    request_id: str | None = None
    status: str
    created_at: datetime


def create_observability_router(app: Application) -> APIRouter:
    """Create observability router."""
    router = APIRouter(prefix="/api", tags=["observability"])

    @router.get("/trace-events", response_model=list[TraceEventResponse])
    async def get_trace_events(
        after: str | None = Query(None, description="ISO timestamp filter"),
        limit: int = Query(100, ge=1, le=1000),
        event_type: str | None = Query(None, description="Filter by event type"),
        actor: str | None = Query(None, description="Filter by actor"),
    ) -> list[dict]:
        """Get trace events with optional filters."""
        after_dt = None
        if after:
            try:
                after_dt = datetime.fromisoformat(after)
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid after timestamp format")

        event_types = [event_type] if event_type else None
        events = await app.storage.get_trace_events(
            after=after_dt,
            event_types=event_types,
            actor=actor,
            limit=limit,
        )
        return [
            {
                "id": e.id,
                "event_type": e.event_type,
                "actor": e.actor,
                "data": e.data,
                "timestamp": e.timestamp.isoformat(),
            }
            for e in events
        ]

    @router.get("/outbox", response_model=list[OutboundMessageResponse])
    async def get_outbox(
        flow_id: str | None = Query(None, description="Filter by flow"),
        status: str | None = Query("pending", description="Filter by delivery status"),
        limit: int = Query(100, ge=1, le=1000),
    ) -> list[dict]:
        """Queued outbound messages, oldest first."""
        messages = await app.storage.get_outbound(flow_id=flow_id, status=status, limit=limit)
        return [
            {
                "id": m.id,
                "flow_id": m.flow_id,
                "kind": m.kind,
                "sender": m.sender,
                "recipient": m.recipient,
                "subject": m.subject,
                "body": m.body,
                "request_id": m.request_id,
                "status": m.status,
                "created_at": m.created_at.isoformat(),
            }
            for m in messages
        ]

    return router
