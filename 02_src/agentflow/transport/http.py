"""HTTP transport: hands outbound messages to a mail gateway."""

from typing import Any

import httpx

from ..logging_config import get_logger
from .transport import format_request_subject

logger = get_logger(__name__)


class HttpTransport:
    """POSTs messages and tool calls as JSON to a gateway service.

    Endpoints: ``/messages`` for email, ``/tools/{server_id}`` for tool
    calls. The gateway answers ``{"message_id": ...}`` for messages.
    """

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> dict:
        response = await self._client.post(f"{self._base_url}{path}", json=payload)
        response.raise_for_status()
        if not response.content:
            return {}
        return response.json()

    async def send_agent_to_agent(
        self,
        from_email: str,
        to_email: str,
        subject: str,
        body: str,
        flow_id: str,
        request_id: str,
    ) -> str | None:
        data = await self._post(
            "/messages",
            {
                "kind": "agent_request",
                "from": from_email,
                "to": to_email,
                "subject": format_request_subject(request_id, subject),
                "body": body,
                "flow_id": flow_id,
                "request_id": request_id,
            },
        )
        logger.info("Gateway accepted agent request %s to %s", request_id, to_email)
        return data.get("message_id")

    async def send_agent_to_requester(
        self,
        from_agent_id: str,
        to_email: str,
        subject: str,
        body: str,
        flow_id: str,
    ) -> str | None:
        data = await self._post(
            "/messages",
            {
                "kind": "requester_notice",
                "from_agent_id": from_agent_id,
                "to": to_email,
                "subject": subject,
                "body": body,
                "flow_id": flow_id,
            },
        )
        return data.get("message_id")

    async def call_tool(
        self,
        server_id: str,
        method: str,
        params: dict[str, Any],
        flow_id: str,
        request_id: str,
    ) -> None:
        await self._post(
            f"/tools/{server_id}",
            {
                "method": method,
                "params": params,
                "flow_id": flow_id,
                "request_id": request_id,
            },
        )
        logger.info("Dispatched tool call %s.%s (%s)", server_id, method, request_id)
