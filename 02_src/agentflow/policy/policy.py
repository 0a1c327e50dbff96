"""Decision policy contract and the LLM-backed implementation."""

import json
import re
from typing import Protocol

from ..directory import IAgentDirectory
from ..errors import PolicyError
from ..llm import ILLMProvider
from ..logging_config import get_logger
from ..models import (
    AgentProfile,
    AgentTarget,
    CompleteDecision,
    ContinueDecision,
    Decision,
    FailDecision,
    Flow,
    ToolRequest,
    WaitForAgentDecision,
    WaitForToolDecision,
)
from .prompt import build_decision_prompt

logger = get_logger(__name__)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class IDecisionPolicy(Protocol):
    """Proposes the next action for a flow."""

    async def decide(self, flow: Flow, agent: AgentProfile) -> Decision:
        """Return exactly one Decision."""
        ...


def parse_decision(content: str) -> Decision:
    """Turn the model's JSON answer into a Decision.

    Raises PolicyError when the answer cannot be acted upon.
    """
    match = _JSON_BLOCK.search(content or "")
    if not match:
        raise PolicyError("Policy response is not valid JSON")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise PolicyError(f"Policy response is not valid JSON: {e}") from e

    name = str(parsed.get("decision", "")).upper()
    reasoning = str(parsed.get("reasoning") or "No reasoning provided")
    try:
        confidence = float(parsed.get("confidence", 0.5))
    except (TypeError, ValueError) as e:
        raise PolicyError("Decision confidence must be a number") from e

    try:
        if name == "WAIT_FOR_AGENT":
            target = parsed.get("target_agent")
            if not target:
                raise PolicyError("WAIT_FOR_AGENT decision must include target_agent")
            return WaitForAgentDecision(
                target=AgentTarget(
                    agent_email=target.get("agent_email") or None,
                    agent_id=target.get("agent_id") or None,
                    message_subject=str(
                        target.get("message_subject") or "Request for information"
                    ),
                    message_body=str(target.get("message_body") or ""),
                    question=str(target.get("question") or ""),
                ),
                reasoning=reasoning,
                confidence=confidence,
            )
        if name == "WAIT_FOR_MCP":
            call = parsed.get("tool_call") or parsed.get("mcp_call")
            if not call or not call.get("server_id") or not call.get("method"):
                raise PolicyError("WAIT_FOR_MCP decision must include tool_call")
            return WaitForToolDecision(
                call=ToolRequest(
                    server_id=str(call["server_id"]),
                    method=str(call["method"]),
                    params=call.get("params") or {},
                ),
                reasoning=reasoning,
                confidence=confidence,
            )
        if name == "COMPLETE":
            final = parsed.get("final_response")
            if not final:
                raise PolicyError("COMPLETE decision must include final_response")
            return CompleteDecision(
                final_response=str(final), reasoning=reasoning, confidence=confidence
            )
        if name == "FAIL":
            return FailDecision(reasoning=reasoning, confidence=confidence)
        if name != "CONTINUE":
            logger.warning("Unknown decision type %r, defaulting to continue", name)
        return ContinueDecision(reasoning=reasoning, confidence=confidence)
    except ValueError as e:
        # Raised by the decision dataclasses' own validation
        raise PolicyError(str(e)) from e


class LLMDecisionPolicy:
    """Asks the LLM for the next decision."""

    name = "llm"

    def __init__(
        self,
        llm_provider: ILLMProvider,
        directory: IAgentDirectory,
        max_tokens: int = 1000,
        temperature: float = 0.3,
    ):
        self._llm = llm_provider
        self._directory = directory
        self._max_tokens = max_tokens
        self._temperature = temperature

    async def _contacts(self, agent: AgentProfile) -> list[AgentProfile]:
        config = agent.multi_round
        if not config.can_message_agents:
            return []

        if config.allowed_agent_emails:
            contacts = []
            for email in config.allowed_agent_emails:
                profile = await self._directory.find_by_email(email)
                if profile:
                    contacts.append(profile)
                else:
                    contacts.append(AgentProfile(id=email, name=email, email=email))
            return contacts

        return [a for a in await self._directory.list_agents() if a.id != agent.id]

    async def decide(self, flow: Flow, agent: AgentProfile) -> Decision:
        """Build the prompt, call the LLM and parse its answer."""
        contacts = await self._contacts(agent)
        system, prompt = build_decision_prompt(flow, agent, contacts)

        logger.info("Requesting decision for flow %s round %s", flow.id, flow.current_round + 1)
        content = await self._llm.complete(
            messages=[{"role": "user", "content": prompt}],
            system=system,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )

        decision = parse_decision(content)
        logger.info(
            "Decision for flow %s: %s (confidence %.0f%%)",
            flow.id,
            decision.type.value,
            decision.confidence * 100,
        )
        return decision
