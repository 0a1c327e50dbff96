"""Tests for the LLM decision policy."""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from agentflow.engine import FlowEngine
from agentflow.errors import PolicyError
from agentflow.models import (
    CompleteDecision,
    ContinueDecision,
    DecisionType,
    FailDecision,
    Flow,
    FlowMessage,
    FlowStatus,
    Requester,
    Round,
    ToolCall,
    WaitForAgentDecision,
    WaitForToolDecision,
)
from agentflow.policy import (
    LLMDecisionPolicy,
    build_decision_prompt,
    parse_decision,
    summarize_actions,
    summarize_information,
)
from conftest import START, make_trigger


def make_flow():
    return Flow(
        id="flow-assistant-0000abcd",
        agent_id="assistant",
        status=FlowStatus.ACTIVE,
        trigger=make_trigger(),
        requester=Requester(email="alice@example.com", name="Alice Smith"),
        max_rounds=5,
        created_at=START,
        updated_at=START,
        timeout_at=START + timedelta(minutes=60),
    )


class TestParseDecision:
    """Tests for parse_decision."""

    def test_continue(self):
        """Test parsing a continue decision."""
        decision = parse_decision('{"decision": "CONTINUE", "reasoning": "think", "confidence": 0.4}')
        assert decision == ContinueDecision("think", 0.4)

    def test_json_inside_prose(self):
        """Test that the JSON object is found inside surrounding text."""
        content = 'Sure, here it is:\n```json\n{"decision": "FAIL", "reasoning": "no data"}\n```'
        decision = parse_decision(content)
        assert isinstance(decision, FailDecision)
        assert decision.reasoning == "no data"

    def test_wait_for_agent(self):
        """Test parsing a wait_for_agent decision."""
        content = json.dumps(
            {
                "decision": "WAIT_FOR_AGENT",
                "reasoning": "finance knows",
                "confidence": 0.8,
                "target_agent": {
                    "agent_email": "finance@example.com",
                    "question": "Q3 revenue?",
                    "message_subject": "Q3",
                    "message_body": "Please send Q3 revenue",
                },
            }
        )

        decision = parse_decision(content)

        assert isinstance(decision, WaitForAgentDecision)
        assert decision.target.agent_email == "finance@example.com"
        assert decision.target.question == "Q3 revenue?"

    def test_wait_for_agent_without_target(self):
        """Test that a wait_for_agent decision without target is rejected."""
        with pytest.raises(PolicyError):
            parse_decision('{"decision": "WAIT_FOR_AGENT", "reasoning": "x"}')

    def test_wait_for_agent_without_address(self):
        """Test that a target without email or id is rejected."""
        content = json.dumps(
            {"decision": "WAIT_FOR_AGENT", "target_agent": {"message_subject": "Q3"}}
        )
        with pytest.raises(PolicyError):
            parse_decision(content)

    def test_wait_for_tool(self):
        """Test parsing a tool call decision."""
        content = json.dumps(
            {
                "decision": "WAIT_FOR_MCP",
                "reasoning": "calendar",
                "tool_call": {"server_id": "calendar", "method": "free_slots", "params": {"day": "mon"}},
            }
        )

        decision = parse_decision(content)

        assert isinstance(decision, WaitForToolDecision)
        assert decision.call.params == {"day": "mon"}

    def test_complete_requires_final_response(self):
        """Test that COMPLETE without final_response is rejected."""
        with pytest.raises(PolicyError):
            parse_decision('{"decision": "COMPLETE", "reasoning": "done"}')

    def test_unknown_decision_defaults_to_continue(self):
        """Test that an unknown decision name becomes continue."""
        decision = parse_decision('{"decision": "PONDER", "reasoning": "hmm"}')
        assert decision.type == DecisionType.CONTINUE

    def test_invalid_confidence(self):
        """Test that an out-of-range confidence is rejected."""
        with pytest.raises(PolicyError):
            parse_decision('{"decision": "CONTINUE", "confidence": 3}')
        with pytest.raises(PolicyError):
            parse_decision('{"decision": "CONTINUE", "confidence": "high"}')

    def test_not_json(self):
        """Test that non-JSON output is rejected."""
        with pytest.raises(PolicyError):
            parse_decision("I think we should continue.")
        with pytest.raises(PolicyError):
            parse_decision("{not json}")


class TestPrompt:
    """Tests for prompt construction."""

    def test_first_round_summaries(self):
        """Test summaries of a flow with no rounds."""
        flow = make_flow()
        assert "first round" in summarize_actions(flow)
        assert "No additional information" in summarize_information(flow)

    def test_information_from_replies_and_tools(self):
        """Test that replies are cleaned and tool outputs included."""
        flow = make_flow()
        round_ = Round(round_number=1, started_at=START)
        round_.messages.append(
            FlowMessage(
                id="m1",
                direction="received",
                sender="finance@example.com",
                body="Hi Alice,\nQ3 revenue was $4.2M.\nBest regards",
                timestamp=START,
            )
        )
        round_.tool_calls.append(
            ToolCall(
                id="t1",
                server_id="calendar",
                method="free_slots",
                input={},
                timestamp=START,
                output=["10:00"],
            )
        )
        flow.rounds.append(round_)

        info = summarize_information(flow)

        assert "Agent finance@example.com provided: Q3 revenue was $4.2M." in info
        assert "Best regards" not in info
        assert "Tool calendar.free_slots returned: ['10:00']" in info

    def test_prompt_includes_context(self, agents):
        """Test that the prompt carries the request, progress and contacts."""
        assistant, finance = agents[0], agents[1]
        system, user = build_decision_prompt(make_flow(), assistant, [finance])

        assert system == "You are a helpful AI assistant."
        assert "Subject: Quarterly numbers" in user
        assert "Round: 1/5" in user
        assert "Finance Agent <finance@example.com> (Finance)" in user
        assert "Available Tool Servers: calendar" in user


class TestLLMDecisionPolicy:
    """Tests for LLMDecisionPolicy.decide()."""

    async def test_decide_calls_llm(self, mock_llm, directory, agents):
        """Test that decide() sends the prompt and parses the answer."""
        policy = LLMDecisionPolicy(mock_llm, directory)

        decision = await policy.decide(make_flow(), agents[0])

        assert decision == ContinueDecision("thinking")
        call_args = mock_llm.complete.call_args
        assert call_args.kwargs["temperature"] == 0.3
        assert call_args.kwargs["max_tokens"] == 1000
        assert call_args.kwargs["messages"][0]["role"] == "user"

    async def test_contacts_exclude_self(self, mock_llm, directory, agents):
        """Test that an unrestricted agent sees every other agent."""
        policy = LLMDecisionPolicy(mock_llm, directory)

        await policy.decide(make_flow(), agents[0])

        prompt = mock_llm.complete.call_args.kwargs["messages"][0]["content"]
        assert "finance@example.com" in prompt
        assert "<assistant@example.com>" not in prompt

    async def test_contacts_follow_allow_list(self, mock_llm, directory, agents):
        """Test that the allow-list limits the contacts offered."""
        agents[0].multi_round.allowed_agent_emails = ["legal@example.com"]
        policy = LLMDecisionPolicy(mock_llm, directory)

        await policy.decide(make_flow(), agents[0])

        prompt = mock_llm.complete.call_args.kwargs["messages"][0]["content"]
        assert "legal@example.com" in prompt
        assert "finance@example.com" not in prompt

    async def test_no_contacts_without_permission(self, mock_llm, directory, agents):
        """Test that agents that cannot message get no contact list."""
        policy = LLMDecisionPolicy(mock_llm, directory)

        await policy.decide(make_flow(), agents[1])

        prompt = mock_llm.complete.call_args.kwargs["messages"][0]["content"]
        assert "Available Agents You Can Contact" not in prompt

    async def test_invalid_answer_fails_flow(self, mock_llm, storage, directory, transport, clock):
        """Test that an unusable LLM answer fails the flow through the engine."""
        mock_llm.complete = AsyncMock(return_value='{"decision": "COMPLETE"}')
        engine = FlowEngine(
            storage=storage,
            policy=LLMDecisionPolicy(mock_llm, directory),
            transport=transport,
            directory=directory,
            clock=clock,
        )

        flow = await engine.start_flow("assistant", make_trigger())

        assert flow.status == FlowStatus.FAILED
        assert "final_response" in flow.rounds[0].decision.reasoning
        assert flow.rounds[0].policy_invocations[0].policy == "llm"

    async def test_llm_complete_end_to_end(self, mock_llm, storage, directory, transport, clock):
        """Test a flow completed by the LLM policy."""
        mock_llm.complete = AsyncMock(
            return_value='{"decision": "COMPLETE", "reasoning": "known", "final_response": "Q3 was $4.2M"}'
        )
        engine = FlowEngine(
            storage=storage,
            policy=LLMDecisionPolicy(mock_llm, directory),
            transport=transport,
            directory=directory,
            clock=clock,
        )

        flow = await engine.start_flow("assistant", make_trigger())

        assert flow.status == FlowStatus.COMPLETED
        assert flow.rounds[0].decision == CompleteDecision("Q3 was $4.2M", "known", 0.5)
