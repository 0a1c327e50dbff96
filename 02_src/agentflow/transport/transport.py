"""Message and tool transport contracts."""

from typing import Any, Protocol


class IMessageTransport(Protocol):
    """Delivers messages on behalf of the engine."""

    async def send_agent_to_agent(
        self,
        from_email: str,
        to_email: str,
        subject: str,
        body: str,
        flow_id: str,
        request_id: str,
    ) -> str | None:
        """Send a request to another agent. Returns the transport message id if known."""
        ...

    async def send_agent_to_requester(
        self,
        from_agent_id: str,
        to_email: str,
        subject: str,
        body: str,
        flow_id: str,
    ) -> str | None:
        """Send a human-facing notification."""
        ...


class IToolTransport(Protocol):
    """Dispatches calls to tool servers; results come back via resume."""

    async def call_tool(
        self,
        server_id: str,
        method: str,
        params: dict[str, Any],
        flow_id: str,
        request_id: str,
    ) -> None:
        """Dispatch a tool call."""
        ...


def format_request_subject(request_id: str, subject: str) -> str:
    """Embed the correlation tag so replies can be matched back."""
    return f"[Req: {request_id}] {subject}"
