"""Text of the messages the engine sends."""

import re

from ..models import Flow, Requester, Trigger

_NAME_ADDR = re.compile(r"^\s*([^<]*)<([^>]+)>")

MAX_ROUNDS_RESPONSE = "Flow completed after reaching maximum rounds"
MAX_ROUNDS_REASONING = "Maximum rounds reached"

TIMEOUT_MESSAGE = (
    "I apologize, but your request has timed out.\n\n"
    "This can happen when:\n"
    "- Required information takes too long to gather\n"
    "- Other agents don't respond in time\n"
    "- The system is experiencing high load\n\n"
    "Please try your request again."
)


def extract_address(header: str) -> str:
    """``"Name <a@b>"`` -> ``a@b``; plain addresses are returned lower-cased."""
    match = _NAME_ADDR.match(header or "")
    if match:
        return match.group(2).strip().lower()
    return (header or "").strip().lower()


def extract_name(header: str) -> str:
    """Display name from a From header, or the local part of the address."""
    match = _NAME_ADDR.match(header or "")
    if match and match.group(1).strip():
        return match.group(1).strip().replace('"', "").replace("'", "")
    return extract_address(header).split("@")[0]


def requester_from_sender(sender: str) -> Requester:
    return Requester(email=extract_address(sender), name=extract_name(sender))


def _display(requester: Requester) -> str:
    if requester.name:
        return f"{requester.name} <{requester.email}>"
    return requester.email


def _received(trigger: Trigger) -> str:
    return trigger.received_at.strftime("%Y-%m-%d %H:%M UTC")


def format_final_response(final_response: str, flow: Flow) -> str:
    """The agent's answer followed by the quoted original message."""
    trimmed = final_response.rstrip()
    response_body = trimmed if trimmed else final_response
    original = flow.trigger.body.strip()
    if not original:
        return response_body

    quoted = "\n".join(
        f"> {line}" if line else ">" for line in original.splitlines()
    )
    header = ["---- Original Message ----", f"Date: {_received(flow.trigger)}"]
    header.append(f"From: {_display(flow.requester)}")
    if flow.trigger.to:
        header.append(f"To: {flow.trigger.to}")
    if flow.trigger.subject:
        header.append(f"Subject: {flow.trigger.subject}")

    return f"{response_body}\n\n" + "\n".join(header) + f"\n\n{quoted}"


def format_forwarded_message(body: str, trigger: Trigger, requester: Requester) -> str:
    """Request body for another agent, with the original email below it."""
    return (
        f"{body}\n\n"
        "---- Original Message ----\n"
        f"Date: {_received(trigger)}\n"
        f"From: {_display(requester)}\n"
        f"To: {trigger.to}\n"
        f"Subject: {trigger.subject}\n\n"
        f"{trigger.body}"
    )


def format_failure(reason: str) -> str:
    return (
        "I apologize, but I was unable to complete your request.\n\n"
        f"Reason: {reason}\n\n"
        "If you need further assistance, please try again or contact support."
    )
