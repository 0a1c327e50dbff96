"""Outbox transport: queues outbound messages in the flow store."""

import uuid
from datetime import datetime, timezone

from ..logging_config import get_logger
from ..models import OutboundMessage
from ..storage import IFlowStore
from .transport import format_request_subject

logger = get_logger(__name__)


class OutboxTransport:
    """Writes messages to the outbox table; a delivery worker sends them."""

    def __init__(self, storage: IFlowStore):
        self._storage = storage

    async def send_agent_to_agent(
        self,
        from_email: str,
        to_email: str,
        subject: str,
        body: str,
        flow_id: str,
        request_id: str,
    ) -> str | None:
        message = OutboundMessage(
            id=f"<{uuid.uuid4()}@agentflow>",
            flow_id=flow_id,
            kind="agent_request",
            sender=from_email,
            recipient=to_email,
            subject=format_request_subject(request_id, subject),
            body=body,
            request_id=request_id,
            created_at=datetime.now(timezone.utc),
        )
        await self._storage.enqueue_outbound(message)
        logger.info("Queued agent request %s to %s", request_id, to_email)
        return message.id

    async def send_agent_to_requester(
        self,
        from_agent_id: str,
        to_email: str,
        subject: str,
        body: str,
        flow_id: str,
    ) -> str | None:
        message = OutboundMessage(
            id=f"<{uuid.uuid4()}@agentflow>",
            flow_id=flow_id,
            kind="requester_notice",
            sender=from_agent_id,
            recipient=to_email,
            subject=subject,
            body=body,
            created_at=datetime.now(timezone.utc),
        )
        await self._storage.enqueue_outbound(message)
        logger.info("Queued notice for %s on flow %s", to_email, flow_id)
        return message.id
