"""Prompt construction for the LLM decision policy."""

import re

from ..models import AgentProfile, DecisionType, Flow

_GREETING = re.compile(r"^(Hallo|Hello|Hi|Liebe|Dear)\s+\w+,?\s*", re.IGNORECASE)
_SIGN_OFF = re.compile(
    r"^(Viele Grüße|Best regards|Thanks|Thank you),?\s*$", re.IGNORECASE | re.MULTILINE
)

SUMMARY_LIMIT = 300


def summarize_actions(flow: Flow) -> str:
    """One line per finished round."""
    if not flow.rounds:
        return "This is the first round, no actions taken yet."

    lines = []
    for round_ in flow.rounds:
        decision = round_.decision
        if decision.type is DecisionType.WAIT_FOR_AGENT:
            lines.append(f"Round {round_.round_number}: Requested information from another agent")
        elif decision.type is DecisionType.WAIT_FOR_MCP:
            lines.append(f"Round {round_.round_number}: Called tool server")
        else:
            lines.append(f"Round {round_.round_number}: {decision.reasoning}")
    return "\n".join(lines)


def summarize_information(flow: Flow) -> str:
    """Replies and tool results gathered so far."""
    information = []
    for round_ in flow.rounds:
        for msg in round_.messages:
            if msg.direction != "received":
                continue
            body = _SIGN_OFF.sub("", _GREETING.sub("", msg.body)).strip()
            if len(body) > SUMMARY_LIMIT:
                body = body[:SUMMARY_LIMIT] + "..."
            information.append(f"Agent {msg.sender} provided: {body}")

        finished = [t for t in round_.tool_calls if t.output is not None]
        for call in finished:
            information.append(f"Tool {call.server_id}.{call.method} returned: {call.output}")

    if not information:
        return "No additional information gathered yet (first round)."
    return "\n\n".join(information)


def format_contacts(contacts: list[AgentProfile]) -> str:
    return "\n".join(
        f"- {a.name} <{a.email}>{f' ({a.role})' if a.role else ''}" for a in contacts
    )


def build_decision_prompt(
    flow: Flow, agent: AgentProfile, contacts: list[AgentProfile]
) -> tuple[str, str]:
    """Return (system prompt, user prompt) for one decision."""
    requester = flow.requester.name or flow.requester.email
    system = agent.prompt or "You are a helpful AI assistant."

    contacts_block = ""
    if contacts:
        contacts_block = f"Available Agents You Can Contact:\n{format_contacts(contacts)}\n"

    tools_block = ""
    if agent.tool_server_ids:
        tools_block = f"Available Tool Servers: {', '.join(agent.tool_server_ids)}\n"

    user = f"""CURRENT SITUATION:
You are processing a request in a multi-round flow.

Original Request From: {requester} ({flow.requester.email})
Subject: {flow.trigger.subject}
Body: {flow.trigger.body}

Current Progress:
- Round: {flow.current_round + 1}/{flow.max_rounds}
- Actions Taken: {summarize_actions(flow)}
- Information Gathered: {summarize_information(flow)}

Available Actions:
1. CONTINUE - Take another step in this flow
2. WAIT_FOR_AGENT - Need information from another agent
3. WAIT_FOR_MCP - Need to call a tool server
4. COMPLETE - You have enough information to respond to the user
5. FAIL - Cannot fulfill the user's request

{contacts_block}{tools_block}
When you choose COMPLETE, "final_response" is YOUR reply to {requester}.
Synthesize what other agents told you; do not forward their messages.

Respond ONLY with valid JSON in this format:
{{
  "decision": "CONTINUE" | "WAIT_FOR_AGENT" | "WAIT_FOR_MCP" | "COMPLETE" | "FAIL",
  "reasoning": "why you chose this action",
  "confidence": 0.0 to 1.0,
  "target_agent": {{
    "agent_email": "agent@example.com",
    "question": "what you need to know",
    "message_subject": "subject line",
    "message_body": "full email body"
  }},
  "tool_call": {{"server_id": "...", "method": "...", "params": {{}}}},
  "final_response": "your reply to {requester}"
}}

Include "target_agent" only for WAIT_FOR_AGENT, "tool_call" only for
WAIT_FOR_MCP and "final_response" only for COMPLETE."""

    return system, user
