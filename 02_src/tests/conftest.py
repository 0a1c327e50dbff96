"""Pytest configuration and fixtures."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from agentflow.config import Settings  # noqa: E402
from agentflow.directory import AgentDirectory  # noqa: E402
from agentflow.models import (  # noqa: E402
    AgentProfile,
    CompleteDecision,
    MultiRoundConfig,
    Trigger,
)


START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock for the engine."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class ScriptedPolicy:
    """Returns queued decisions in order; raises queued exceptions.

    Once the script runs out every round completes.
    """

    name = "scripted"

    def __init__(self, *script):
        self.script = list(script)
        self.calls: list[tuple[str, int]] = []

    def push(self, *items) -> None:
        self.script.extend(items)

    async def decide(self, flow, agent):
        self.calls.append((flow.id, flow.current_round))
        if not self.script:
            return CompleteDecision(final_response="Done", reasoning="Nothing left to do")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class RecordingTransport:
    """Message transport that records what it was asked to send."""

    def __init__(self):
        self.agent_messages: list[dict] = []
        self.requester_messages: list[dict] = []
        self.fail_agent_sends = False
        self.fail_requester_sends = False

    async def send_agent_to_agent(self, from_email, to_email, subject, body, flow_id, request_id):
        if self.fail_agent_sends:
            raise ConnectionError("mail gateway down")
        message_id = f"<msg-{len(self.agent_messages) + 1}@test>"
        self.agent_messages.append(
            {
                "from": from_email,
                "to": to_email,
                "subject": subject,
                "body": body,
                "flow_id": flow_id,
                "request_id": request_id,
                "message_id": message_id,
            }
        )
        return message_id

    async def send_agent_to_requester(self, from_agent_id, to_email, subject, body, flow_id):
        if self.fail_requester_sends:
            raise ConnectionError("mail gateway down")
        self.requester_messages.append(
            {
                "from_agent_id": from_agent_id,
                "to": to_email,
                "subject": subject,
                "body": body,
                "flow_id": flow_id,
            }
        )
        return None


class RecordingToolTransport:
    def __init__(self):
        self.calls: list[dict] = []

    async def call_tool(self, server_id, method, params, flow_id, request_id):
        self.calls.append(
            {
                "server_id": server_id,
                "method": method,
                "params": params,
                "flow_id": flow_id,
                "request_id": request_id,
            }
        )


def make_trigger(
    subject: str = "Quarterly numbers",
    body: str = "Hi,\nCould you send me the Q3 revenue figures?\nThanks",
    sender: str = "Alice Smith <alice@example.com>",
    received_at: datetime = START,
) -> Trigger:
    return Trigger(
        message_id="<trigger-1@example.com>",
        sender=sender,
        subject=subject,
        body=body,
        received_at=received_at,
        to="assistant@example.com",
    )


@pytest.fixture
def trigger():
    return make_trigger()


@pytest_asyncio.fixture
async def storage():
    """Create in-memory storage for testing."""
    from agentflow.storage import FlowStore

    st = FlowStore(":memory:")
    await st.init()
    yield st
    await st.close()


@pytest.fixture
def agents():
    return [
        AgentProfile(
            id="assistant",
            name="Assistant",
            email="assistant@example.com",
            tool_server_ids=["calendar"],
            multi_round=MultiRoundConfig(can_message_agents=True),
        ),
        AgentProfile(
            id="finance",
            name="Finance Agent",
            email="finance@example.com",
            role="Finance",
        ),
        AgentProfile(
            id="loner",
            name="Loner",
            email="loner@example.com",
            multi_round=MultiRoundConfig(max_rounds=2, timeout_minutes=15),
        ),
    ]


@pytest.fixture
def directory(agents):
    return AgentDirectory(agents)


@pytest.fixture
def policy():
    return ScriptedPolicy()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def tool_transport():
    return RecordingToolTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def tracker(storage):
    """Create Tracker with storage."""
    from agentflow.tracker import Tracker

    return Tracker(storage)


@pytest.fixture
def engine(storage, policy, transport, directory, tracker, tool_transport, settings, clock):
    """Create FlowEngine wired to the recording fakes."""
    from agentflow.engine import FlowEngine

    return FlowEngine(
        storage=storage,
        policy=policy,
        transport=transport,
        directory=directory,
        tracker=tracker,
        tool_transport=tool_transport,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def mock_llm():
    """Create mock LLM provider."""
    llm = Mock()
    llm.complete = AsyncMock(return_value='{"decision": "CONTINUE", "reasoning": "thinking"}')
    return llm
