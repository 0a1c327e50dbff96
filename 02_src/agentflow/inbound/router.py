"""Routes inbound agent email to a waiting flow or a new one."""

from dataclasses import dataclass, field
from datetime import datetime, timezone

from ..engine import FlowEngine
from ..engine.formatting import extract_address
from ..logging_config import get_logger
from ..models import (
    Flow,
    FlowStatus,
    ResumeInput,
    ResumeKind,
    Trigger,
    extract_request_id,
)

logger = get_logger(__name__)


@dataclass
class InboundEmail:
    """An email delivered to an agent's mailbox."""

    message_id: str
    sender: str
    subject: str
    body: str
    to: str = ""
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    in_reply_to: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)

    def to_trigger(self) -> Trigger:
        return Trigger(
            message_id=self.message_id,
            sender=self.sender,
            subject=self.subject,
            body=self.body,
            received_at=self.received_at,
            to=self.to,
        )

    def to_resume_input(self, request_id: str | None = None) -> ResumeInput:
        return ResumeInput(
            kind=ResumeKind.EMAIL_RESPONSE,
            request_id=request_id,
            message_id=self.message_id,
            sender=self.sender,
            subject=self.subject,
            body=self.body,
            in_reply_to=list(self.in_reply_to),
            references=list(self.references),
        )


@dataclass
class InboundResult:
    flow: Flow
    resumed: bool
    duplicate: bool = False


class InboundRouter:
    """Finds the flow an inbound email answers.

    Replies are matched first by the message ids they reference, then by
    the ``[Req: ...]`` tag in the subject. An email already recorded on one of
    the agent's flows is a redelivery and changes nothing. Anything else
    starts a new flow; when the sender is another agent, the new flow takes
    over the requester and user of the flow that delegated to it.
    """

    def __init__(self, engine: FlowEngine):
        self._engine = engine

    async def find_waiting_flow(self, agent_id: str, email: InboundEmail) -> Flow | None:
        waiting = await self._engine.list_agent_flows(agent_id, [FlowStatus.WAITING])
        if not waiting:
            return None

        referenced = set(email.in_reply_to) | set(email.references)
        if referenced:
            for flow in waiting:
                wait = flow.waiting_for
                if wait is None:
                    continue
                known = {wait.message_id, *wait.thread_message_ids} - {None}
                if referenced & known:
                    logger.info("Matched email %s to flow %s by thread", email.message_id, flow.id)
                    return flow

        request_id = extract_request_id(email.subject)
        if request_id:
            for flow in waiting:
                if flow.waiting_for and flow.waiting_for.request_id == request_id:
                    logger.info("Matched email %s to flow %s by request id", email.message_id, flow.id)
                    return flow
            logger.warning("No waiting flow for request %s, treating as new", request_id)

        return None

    async def find_processed_flow(self, agent_id: str, email: InboundEmail) -> Flow | None:
        """The flow that already consumed ``email``, matched by message id."""
        if not email.message_id:
            return None
        for flow in await self._engine.list_agent_flows(agent_id):
            if flow.trigger.message_id == email.message_id:
                return flow
            for round_ in flow.rounds:
                for message in round_.messages:
                    if message.direction == "received" and message.message_id == email.message_id:
                        return flow
        return None

    async def find_delegating_flow(self, email: InboundEmail) -> Flow | None:
        """The sending agent's flow waiting on this email, if the sender is an agent."""
        sender = await self._engine.directory.find_by_email(extract_address(email.sender))
        if sender is None:
            return None

        waiting = await self._engine.list_agent_flows(sender.id, [FlowStatus.WAITING])
        request_id = extract_request_id(email.subject)
        thread = {email.message_id, *email.in_reply_to, *email.references}
        for flow in waiting:
            wait = flow.waiting_for
            if wait is None:
                continue
            if request_id and wait.request_id == request_id:
                return flow
            if thread & ({wait.message_id, *wait.thread_message_ids} - {None}):
                return flow
        return None

    async def route_email(self, agent_id: str, email: InboundEmail) -> InboundResult:
        processed = await self.find_processed_flow(agent_id, email)
        if processed is not None:
            logger.info("Email %s already handled by flow %s, ignoring", email.message_id, processed.id)
            return InboundResult(flow=processed, resumed=False, duplicate=True)

        flow = await self.find_waiting_flow(agent_id, email)
        if flow is not None:
            resumed = await self._engine.resume_flow(
                flow.id, email.to_resume_input(flow.waiting_for.request_id), agent_id
            )
            return InboundResult(flow=resumed, resumed=True)

        requester = None
        user_id = None
        delegating = await self.find_delegating_flow(email)
        if delegating is not None:
            logger.info("Email %s delegated by flow %s", email.message_id, delegating.id)
            requester = delegating.requester
            user_id = delegating.user_id

        started = await self._engine.start_flow(
            agent_id, email.to_trigger(), requester=requester, user_id=user_id
        )
        return InboundResult(flow=started, resumed=False)
