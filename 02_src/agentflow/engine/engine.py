"""FlowEngine: the persisted state machine driving agent flows.

A flow advances one round at a time. Each round asks the decision policy
for a Decision and acts on it: loop into another round, suspend while an
external reply is awaited, or terminate with a notification to the
requester. Suspension is nothing more than a persisted ``waiting`` record;
``resume_flow`` picks the flow up again on a later call.

Every mutating operation holds the flow's lock for its whole duration and
writes with a version check, so two callers can never both advance the
same flow.
"""

import dataclasses
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from ..config import Settings
from ..directory import IAgentDirectory
from ..errors import (
    AgentNotFoundError,
    CorrelationMismatchError,
    FlowConflictError,
    FlowNotFoundError,
    FlowOwnershipError,
    InvalidFlowStateError,
    RoundLimitError,
)
from ..logging_config import flow_context, get_logger
from ..models import (
    AgentProfile,
    CompleteDecision,
    DecisionType,
    FailDecision,
    Flow,
    FlowAction,
    FlowMessage,
    FlowStatus,
    PolicyInvocation,
    Requester,
    ResumeInput,
    ResumeKind,
    Round,
    ToolCall,
    Trigger,
    WaitForAgentDecision,
    WaitForToolDecision,
    WaitKind,
    WaitState,
    decision_to_dict,
)
from ..policy import IDecisionPolicy
from ..storage import IFlowStore
from ..tracker import ITracker
from ..transport import IMessageTransport, IToolTransport, format_request_subject
from .formatting import (
    MAX_ROUNDS_REASONING,
    MAX_ROUNDS_RESPONSE,
    TIMEOUT_MESSAGE,
    format_failure,
    format_final_response,
    format_forwarded_message,
    requester_from_sender,
)
from .locks import FlowLocks

logger = get_logger(__name__)

ACTOR = "flow_engine"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


class IFlowEngine(Protocol):
    """Operations exposed to triggers, inbound routing and operators."""

    async def start_flow(
        self,
        agent_id: str,
        trigger: Trigger,
        requester: Requester | None = None,
        max_rounds: int | None = None,
        timeout_minutes: int | None = None,
        team_id: str | None = None,
        user_id: str | None = None,
    ) -> Flow:
        """Create a flow and run it until it waits or terminates."""
        ...

    async def resume_flow(self, flow_id: str, reply: ResumeInput, agent_id: str) -> Flow:
        """Fold a correlated reply into a waiting flow and continue it."""
        ...

    async def get_flow(self, flow_id: str, agent_id: str) -> Flow | None:
        ...

    async def list_agent_flows(
        self,
        agent_id: str,
        statuses: list[FlowStatus] | None = None,
        limit: int | None = None,
    ) -> list[Flow]:
        ...


class FlowEngine:
    """Drives flows from trigger to a terminal status."""

    def __init__(
        self,
        storage: IFlowStore,
        policy: IDecisionPolicy,
        transport: IMessageTransport,
        directory: IAgentDirectory,
        tracker: ITracker | None = None,
        tool_transport: IToolTransport | None = None,
        settings: Settings | None = None,
        locks: FlowLocks | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._storage = storage
        self._policy = policy
        self._transport = transport
        self._directory = directory
        self._tracker = tracker
        self._tool_transport = tool_transport
        self._settings = settings or Settings()
        self._locks = locks or FlowLocks()
        self._clock = clock

    @property
    def storage(self) -> IFlowStore:
        return self._storage

    @property
    def directory(self) -> IAgentDirectory:
        return self._directory

    # Public operations

    async def start_flow(
        self,
        agent_id: str,
        trigger: Trigger,
        requester: Requester | None = None,
        max_rounds: int | None = None,
        timeout_minutes: int | None = None,
        team_id: str | None = None,
        user_id: str | None = None,
    ) -> Flow:
        """Create a flow and run it until it waits or terminates.

        Limits fall back to the agent's multi-round config, then to the
        configured defaults. The requester defaults to the trigger's sender.
        """
        agent = await self._require_agent(agent_id)
        if max_rounds is None:
            max_rounds = agent.multi_round.max_rounds or self._settings.default_max_rounds
        if timeout_minutes is None:
            timeout_minutes = (
                agent.multi_round.timeout_minutes or self._settings.default_timeout_minutes
            )
        if max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        if timeout_minutes <= 0:
            raise ValueError("timeout_minutes must be positive")

        now = self._clock()
        flow = Flow(
            id=f"flow-{agent_id}-{uuid.uuid4().hex[:8]}",
            agent_id=agent_id,
            status=FlowStatus.ACTIVE,
            trigger=trigger,
            requester=requester or requester_from_sender(trigger.sender),
            max_rounds=max_rounds,
            created_at=now,
            updated_at=now,
            timeout_at=now + timedelta(minutes=timeout_minutes),
            team_id=team_id or agent.team_id,
            user_id=user_id,
        )

        async with self._locks.hold(flow.id):
            await self._storage.save(flow, expected_version=0)
            logger.info(
                "Started flow %s for agent %s (max %s rounds, timeout %s min)",
                flow.id,
                agent_id,
                max_rounds,
                timeout_minutes,
                extra=flow_context(flow),
            )
            await self._track(
                "flow_started",
                {
                    "flow_id": flow.id,
                    "agent_id": agent_id,
                    "requester": flow.requester.email,
                    "subject": trigger.subject,
                },
            )
            await self._run_rounds(flow, agent)

        return flow

    async def execute_round(self, flow_id: str, agent_id: str) -> Flow:
        """Run the round loop on an active flow."""
        async with self._locks.hold(flow_id):
            flow = await self._load(flow_id, agent_id)
            self._check_can_execute(flow)
            agent = await self._require_agent(flow.agent_id)
            await self._run_rounds(flow, agent)
            return flow

    async def resume_flow(self, flow_id: str, reply: ResumeInput, agent_id: str) -> Flow:
        """Fold a correlated reply into a waiting flow and continue it.

        Rejected without any change when the flow is missing, owned by
        another agent, not waiting, or when the reply does not match the
        wait state on record.
        """
        async with self._locks.hold(flow_id):
            flow = await self._load(flow_id, agent_id)
            if flow.status is not FlowStatus.WAITING or flow.waiting_for is None:
                raise InvalidFlowStateError(
                    f"Flow {flow_id} is not waiting (status: {flow.status.value})",
                    flow_id=flow_id,
                )
            if not flow.waiting_for.matches(reply):
                raise CorrelationMismatchError(
                    f"Reply does not match the request flow {flow_id} is waiting for",
                    flow_id=flow_id,
                )

            now = self._clock()
            wait = flow.waiting_for
            last = flow.last_round
            if last is not None:
                last.messages.append(
                    FlowMessage(
                        id=_short_id("msg"),
                        direction="received",
                        sender=reply.sender or wait.agent,
                        subject=reply.subject or None,
                        body=reply.body,
                        timestamp=now,
                        message_id=reply.message_id,
                        request_id=wait.request_id,
                        in_reply_to=list(reply.in_reply_to),
                        references=list(reply.references),
                    )
                )
                if reply.kind is ResumeKind.TOOL_CALLBACK:
                    for call in last.tool_calls:
                        if call.request_id == wait.request_id:
                            call.output = reply.payload

            flow.status = FlowStatus.ACTIVE
            flow.waiting_for = None
            flow.updated_at = now
            await self._storage.save(flow, expected_version=flow.version)

            logger.info("Resumed flow %s (%s)", flow_id, reply.kind.value)
            await self._track(
                "flow_resumed",
                {"flow_id": flow_id, "kind": reply.kind.value, "request_id": wait.request_id},
            )

            if flow.current_round >= flow.max_rounds:
                # The wait was issued in the last allowed round
                await self._complete(flow, MAX_ROUNDS_RESPONSE, MAX_ROUNDS_REASONING)
                return flow

            agent = await self._require_agent(flow.agent_id)
            await self._run_rounds(flow, agent)
            return flow

    async def complete_flow(self, flow_id: str, final_response: str, agent_id: str) -> Flow:
        """Mark a flow completed and send the final response."""
        async with self._locks.hold(flow_id):
            flow = await self._load(flow_id, agent_id)
            await self._complete(flow, final_response)
            return flow

    async def fail_flow(self, flow_id: str, reason: str, agent_id: str) -> Flow:
        """Mark a flow failed and send the failure explanation."""
        async with self._locks.hold(flow_id):
            flow = await self._load(flow_id, agent_id)
            await self._fail(flow, reason)
            return flow

    async def timeout_flow(self, flow_id: str, agent_id: str, now: datetime | None = None) -> bool:
        """Force an overdue open flow into ``timeout``.

        Returns False when the flow is gone, already terminal, or not yet
        overdue by the time the lock is acquired.
        """
        now = now or self._clock()
        async with self._locks.hold(flow_id):
            flow = await self._storage.load(agent_id, flow_id)
            if flow is None or flow.is_terminal or not flow.is_overdue(now):
                return False

            flow.status = FlowStatus.TIMEOUT
            flow.waiting_for = None
            flow.completed_at = now
            flow.updated_at = now
            await self._storage.save(flow, expected_version=flow.version)

            logger.info("Flow %s timed out (deadline %s)", flow_id, flow.timeout_at.isoformat())
            await self._track("flow_timed_out", {"flow_id": flow_id, "agent_id": agent_id})
            await self._notify(flow, lambda: TIMEOUT_MESSAGE, "timeout")
            return True

    async def extend_timeout(self, flow_id: str, agent_id: str, minutes: int) -> Flow:
        """Push an open flow's deadline back by ``minutes``."""
        if minutes <= 0:
            raise ValueError("minutes must be positive")
        async with self._locks.hold(flow_id):
            flow = await self._load(flow_id, agent_id)
            self._check_open(flow)
            flow.timeout_at = flow.timeout_at + timedelta(minutes=minutes)
            if flow.waiting_for is not None:
                flow.waiting_for.expected_by = flow.waiting_for.expected_by + timedelta(minutes=minutes)
            flow.updated_at = self._clock()
            await self._storage.save(flow, expected_version=flow.version)
            logger.info("Extended timeout of flow %s to %s", flow_id, flow.timeout_at.isoformat())
            return flow

    async def get_flow(self, flow_id: str, agent_id: str) -> Flow | None:
        """Read-only lookup; None when missing or owned by another agent."""
        try:
            return await self._load(flow_id, agent_id)
        except (FlowNotFoundError, FlowOwnershipError):
            return None

    async def list_agent_flows(
        self,
        agent_id: str,
        statuses: list[FlowStatus] | None = None,
        limit: int | None = None,
    ) -> list[Flow]:
        """An agent's flows, newest first."""
        flows = await self._storage.list_flows(agent_id, statuses)
        flows.sort(key=lambda f: f.created_at, reverse=True)
        if limit is not None:
            return flows[:limit]
        return flows

    # Round loop

    async def _run_rounds(self, flow: Flow, agent: AgentProfile) -> None:
        """Play rounds until the flow waits or terminates.

        ``max_rounds`` bounds the loop: a ``continue`` in the last allowed
        round completes the flow instead of opening another round.
        """
        conflicts = 0
        while True:
            self._check_can_execute(flow)
            try:
                round_ = await self._play_round(flow, agent)
            except FlowConflictError:
                conflicts += 1
                reloaded = await self._storage.load(flow.agent_id, flow.id)
                if reloaded is None or reloaded.status is not FlowStatus.ACTIVE:
                    logger.warning("Flow %s changed under a running round, stopping", flow.id)
                    if reloaded is not None:
                        self._adopt(flow, reloaded)
                    return
                if conflicts > self._settings.conflict_retries:
                    raise
                logger.warning("Retrying round on flow %s after a write conflict", flow.id)
                self._adopt(flow, reloaded)
                continue

            decision = round_.decision
            if decision.type is DecisionType.CONTINUE:
                if flow.current_round >= flow.max_rounds:
                    logger.info("Max rounds (%s) reached on flow %s", flow.max_rounds, flow.id)
                    round_.decision = CompleteDecision(
                        final_response=MAX_ROUNDS_RESPONSE,
                        reasoning=MAX_ROUNDS_REASONING,
                        confidence=1.0,
                    )
                    await self._complete(flow, MAX_ROUNDS_RESPONSE)
                    return
                continue

            if isinstance(decision, WaitForAgentDecision):
                await self._wait_for_agent(flow, agent, decision)
            elif isinstance(decision, WaitForToolDecision):
                await self._wait_for_tool(flow, agent, decision)
            elif isinstance(decision, CompleteDecision):
                await self._complete(flow, decision.final_response)
            else:
                await self._fail(flow, decision.reasoning)
            return

    async def _play_round(self, flow: Flow, agent: AgentProfile) -> Round:
        """Ask the policy, record its decision and persist the round."""
        round_ = Round(round_number=flow.current_round + 1, started_at=self._clock())
        policy_name = getattr(self._policy, "name", type(self._policy).__name__)
        error = None

        try:
            decision = await self._policy.decide(flow, agent)
        except Exception as e:
            logger.error("Decision policy failed on flow %s: %s", flow.id, e, exc_info=True)
            error = str(e)
            decision = FailDecision(reasoning=f"Decision policy error: {e}", confidence=1.0)

        now = self._clock()
        round_.decision = decision
        round_.policy_invocations.append(
            PolicyInvocation(
                id=_short_id("pol"),
                policy=policy_name,
                response=decision_to_dict(decision),
                timestamp=now,
                error=error,
            )
        )
        round_.actions.append(
            FlowAction(
                id=_short_id("act"),
                type="decide",
                timestamp=now,
                status="failed" if error else "completed",
                output=decision.type.value,
                error=error,
            )
        )
        round_.completed_at = now

        flow.rounds.append(round_)
        flow.current_round = round_.round_number
        flow.updated_at = now
        flow.metadata.total_policy_invocations += len(round_.policy_invocations)

        await self._storage.save(flow, expected_version=flow.version)

        logger.info(
            "Flow %s round %s/%s decided %s (confidence %.0f%%): %s",
            flow.id,
            round_.round_number,
            flow.max_rounds,
            decision.type.value,
            decision.confidence * 100,
            decision.reasoning[:100],
            extra=flow_context(flow),
        )
        await self._track(
            "round_executed",
            {
                "flow_id": flow.id,
                "round": round_.round_number,
                "decision": decision.type.value,
                "confidence": decision.confidence,
            },
        )
        return round_

    # Decision handlers

    async def _wait_for_agent(
        self, flow: Flow, agent: AgentProfile, decision: WaitForAgentDecision
    ) -> None:
        target = decision.target
        to_email = target.agent_email
        if not to_email and target.agent_id:
            profile = await self._directory.get_agent(target.agent_id)
            to_email = profile.email if profile else None
        if not to_email:
            await self._fail(flow, "Target agent email not specified and could not be resolved")
            return
        if not agent.multi_round.may_contact(to_email):
            await self._fail(flow, f"Agent {agent.email} is not allowed to contact {to_email}")
            return

        now = self._clock()
        request_id = _short_id("req")
        body = format_forwarded_message(target.message_body, flow.trigger, flow.requester)

        # Persist the wait state before dispatching so that a fast reply
        # already finds the flow waiting.
        flow.status = FlowStatus.WAITING
        flow.waiting_for = WaitState(
            kind=WaitKind.AGENT_RESPONSE,
            expected_by=now + timedelta(minutes=self._settings.wait_minutes),
            request_id=request_id,
            agent=to_email,
        )
        round_ = flow.last_round
        sent = FlowMessage(
            id=_short_id("msg"),
            direction="sent",
            to=to_email,
            sender=agent.email,
            subject=format_request_subject(request_id, target.message_subject),
            body=body,
            timestamp=now,
            request_id=request_id,
        )
        action = FlowAction(
            id=_short_id("act"),
            type="send_email",
            timestamp=now,
            status="pending",
            input={"to": to_email, "request_id": request_id, "question": target.question},
        )
        round_.messages.append(sent)
        round_.actions.append(action)
        flow.metadata.total_agent_messages += 1
        flow.updated_at = now
        await self._storage.save(flow, expected_version=flow.version)

        try:
            message_id = await self._transport.send_agent_to_agent(
                from_email=agent.email,
                to_email=to_email,
                subject=target.message_subject,
                body=body,
                flow_id=flow.id,
                request_id=request_id,
            )
        except Exception as e:
            logger.error("Failed to send request %s to %s: %s", request_id, to_email, e, exc_info=True)
            action.status = "failed"
            action.error = str(e)
            await self._fail(flow, f"Could not forward the request to {to_email}")
            return

        action.status = "completed"
        if message_id:
            sent.message_id = message_id
            flow.waiting_for.message_id = message_id
        try:
            await self._storage.save(flow, expected_version=flow.version)
        except FlowConflictError:
            logger.warning("Could not record message id for %s on flow %s", request_id, flow.id)

        logger.info("Flow %s waiting for %s (request %s)", flow.id, to_email, request_id)
        await self._track(
            "flow_waiting",
            {"flow_id": flow.id, "kind": WaitKind.AGENT_RESPONSE.value, "target": to_email, "request_id": request_id},
        )

    async def _wait_for_tool(
        self, flow: Flow, agent: AgentProfile, decision: WaitForToolDecision
    ) -> None:
        call = decision.call
        if self._tool_transport is None:
            await self._fail(flow, "Tool calls are not available for this agent")
            return
        if agent.tool_server_ids and call.server_id not in agent.tool_server_ids:
            await self._fail(flow, f"Agent {agent.email} has no access to tool server {call.server_id}")
            return

        now = self._clock()
        request_id = _short_id("req")
        flow.status = FlowStatus.WAITING
        flow.waiting_for = WaitState(
            kind=WaitKind.TOOL_CALLBACK,
            expected_by=now + timedelta(minutes=self._settings.wait_minutes),
            request_id=request_id,
            server_id=call.server_id,
            method=call.method,
        )
        round_ = flow.last_round
        round_.tool_calls.append(
            ToolCall(
                id=_short_id("tool"),
                server_id=call.server_id,
                method=call.method,
                input=call.params,
                timestamp=now,
                request_id=request_id,
            )
        )
        action = FlowAction(
            id=_short_id("act"),
            type="call_tool",
            timestamp=now,
            status="pending",
            input={"server_id": call.server_id, "method": call.method, "request_id": request_id},
        )
        round_.actions.append(action)
        flow.metadata.total_tool_calls += 1
        flow.updated_at = now
        await self._storage.save(flow, expected_version=flow.version)

        try:
            await self._tool_transport.call_tool(
                server_id=call.server_id,
                method=call.method,
                params=call.params,
                flow_id=flow.id,
                request_id=request_id,
            )
        except Exception as e:
            logger.error("Tool call %s.%s failed: %s", call.server_id, call.method, e, exc_info=True)
            action.status = "failed"
            action.error = str(e)
            await self._fail(flow, f"Could not call tool server {call.server_id}")
            return

        action.status = "completed"
        try:
            await self._storage.save(flow, expected_version=flow.version)
        except FlowConflictError:
            logger.warning("Could not record dispatch of %s on flow %s", request_id, flow.id)

        logger.info("Flow %s waiting for tool %s.%s (request %s)", flow.id, call.server_id, call.method, request_id)
        await self._track(
            "flow_waiting",
            {"flow_id": flow.id, "kind": WaitKind.TOOL_CALLBACK.value, "target": call.server_id, "request_id": request_id},
        )

    # Terminal transitions

    async def _complete(self, flow: Flow, final_response: str, reasoning: str | None = None) -> None:
        self._check_open(flow)
        now = self._clock()
        flow.status = FlowStatus.COMPLETED
        flow.waiting_for = None
        flow.completed_at = now
        flow.updated_at = now
        if reasoning and flow.last_round is not None:
            flow.last_round.actions.append(
                FlowAction(id=_short_id("act"), type="complete", timestamp=now, output=reasoning)
            )
        await self._storage.save(flow, expected_version=flow.version)

        logger.info(
            "Flow %s completed after %s rounds",
            flow.id,
            flow.current_round,
            extra=flow_context(flow),
        )
        await self._track("flow_completed", {"flow_id": flow.id, "rounds": flow.current_round})
        await self._notify(flow, lambda: format_final_response(final_response, flow), "completion")

    async def _fail(self, flow: Flow, reason: str) -> None:
        self._check_open(flow)
        now = self._clock()
        flow.status = FlowStatus.FAILED
        flow.waiting_for = None
        flow.completed_at = now
        flow.updated_at = now
        last = flow.last_round
        if last is not None and not last.decision.reasoning.startswith("FAILED: "):
            last.decision = dataclasses.replace(last.decision, reasoning=f"FAILED: {reason}")
        await self._storage.save(flow, expected_version=flow.version)

        logger.info("Flow %s failed: %s", flow.id, reason, extra=flow_context(flow))
        await self._track("flow_failed", {"flow_id": flow.id, "reason": reason})
        await self._notify(flow, lambda: format_failure(reason), "failure")

    async def _notify(self, flow: Flow, render: Callable[[], str], kind: str) -> None:
        """Best-effort notice to the requester; never blocks a transition."""
        try:
            body = render()
            await self._transport.send_agent_to_requester(
                from_agent_id=flow.agent_id,
                to_email=flow.requester.email,
                subject=f"Re: {flow.trigger.subject}",
                body=body,
                flow_id=flow.id,
            )
        except Exception as e:
            logger.warning(
                "Failed to send %s notice for flow %s: %s",
                kind,
                flow.id,
                e,
                exc_info=True,
                extra=flow_context(flow),
            )

    # Helpers

    async def _load(self, flow_id: str, agent_id: str) -> Flow:
        if not flow_id.startswith(f"flow-{agent_id}-"):
            raise FlowOwnershipError(
                f"Flow {flow_id} does not belong to agent {agent_id}", flow_id=flow_id
            )
        flow = await self._storage.load(agent_id, flow_id)
        if flow is None:
            raise FlowNotFoundError(f"Flow {flow_id} not found", flow_id=flow_id)
        if flow.agent_id != agent_id:
            raise FlowOwnershipError(
                f"Flow {flow_id} does not belong to agent {agent_id}", flow_id=flow_id
            )
        return flow

    async def _require_agent(self, agent_id: str) -> AgentProfile:
        agent = await self._directory.get_agent(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found")
        return agent

    @staticmethod
    def _check_open(flow: Flow) -> None:
        if flow.is_terminal:
            raise InvalidFlowStateError(
                f"Flow {flow.id} is already {flow.status.value}", flow_id=flow.id
            )

    @staticmethod
    def _check_can_execute(flow: Flow) -> None:
        if flow.status is not FlowStatus.ACTIVE:
            raise InvalidFlowStateError(
                f"Flow {flow.id} is not active (status: {flow.status.value})",
                flow_id=flow.id,
            )
        if flow.current_round >= flow.max_rounds:
            raise RoundLimitError(
                f"Flow {flow.id} has reached maximum rounds ({flow.max_rounds})",
                flow_id=flow.id,
            )

    @staticmethod
    def _adopt(flow: Flow, other: Flow) -> None:
        """Replace ``flow``'s state in place so callers holding it see the reload."""
        for f in dataclasses.fields(Flow):
            setattr(flow, f.name, getattr(other, f.name))

    async def _track(self, event_type: str, data: dict) -> None:
        if self._tracker:
            await self._tracker.track(event_type, ACTOR, data)
