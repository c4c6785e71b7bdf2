"""Agent message gateway client.

Each agent is reachable at ``POST {base_url}/{agent_id}/message`` with
``{"text", "userId", "userName", "roomId"}`` and answers with an ordered list of
``{"text", "score"?}`` messages.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from .errors import GatewayError
from .models import AgentMessage


logger = logging.getLogger(__name__)


class AgentGateway(Protocol):
    async def send_message(
        self, agent_id: str, text: str, user_id: str, user_name: str, room_id: str | None = None
    ) -> list[AgentMessage]:
        """Deliver ``text`` to an agent and return its replies in order."""

    async def generate_child(self, agent_id: str, parent_ids: list[str]) -> dict[str, Any]:
        """Ask an agent to write the persona of a derived character."""


def coerce_score(raw: Any) -> int:
    """Scores are non-negative integers; anything else counts as zero."""
    try:
        score = int(raw)
    except (TypeError, ValueError):
        return 0
    return max(score, 0)


def parse_messages(payload: Any) -> list[AgentMessage]:
    if not isinstance(payload, list):
        raise GatewayError("Unexpected response format from agent gateway")
    messages: list[AgentMessage] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        text = item.get("message") or item.get("text")
        if not text:
            continue
        score = item.get("score")
        messages.append(AgentMessage(text=str(text), score=None if score is None else coerce_score(score)))
    return messages


async def post_json(
    url: str,
    body: dict[str, Any],
    *,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
    headers: dict[str, str] | None = None,
    service: str = "agent gateway",
) -> Any:
    """POST ``body`` and return the decoded JSON answer, raising GatewayError."""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.post(url, json=body, headers=headers or {})
            resp.raise_for_status()
    except httpx.ConnectError as exc:
        raise GatewayError(f"Cannot connect to {service}") from exc
    except httpx.HTTPStatusError as exc:
        raise GatewayError(f"{service} returned {exc.response.status_code}") from exc
    except httpx.TimeoutException as exc:
        raise GatewayError(f"{service} timed out") from exc
    except httpx.HTTPError as exc:
        raise GatewayError(f"{service} request failed: {exc}") from exc

    try:
        return resp.json()
    except ValueError as exc:
        raise GatewayError(f"{service} returned invalid JSON") from exc


class HttpAgentGateway:
    def __init__(self, base_url: str, timeout: float = 120.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _post(self, path: str, body: dict[str, Any]) -> Any:
        return await post_json(f"{self.base_url}/{path}", body, timeout=self.timeout, transport=self._transport)

    async def send_message(
        self, agent_id: str, text: str, user_id: str, user_name: str, room_id: str | None = None
    ) -> list[AgentMessage]:
        body: dict[str, Any] = {"text": text, "userId": user_id, "userName": user_name}
        if room_id is not None:
            body["roomId"] = room_id
        payload = await self._post(f"{agent_id}/message", body)
        messages = parse_messages(payload)
        for message in messages:
            logger.debug("agent %s: %s", agent_id, message.text)
        return messages

    async def generate_child(self, agent_id: str, parent_ids: list[str]) -> dict[str, Any]:
        payload = await self._post(f"{agent_id}/generate-child", {"parentIds": parent_ids})
        if not isinstance(payload, dict) or not payload.get("name"):
            raise GatewayError("Agent gateway returned no derived persona")
        return payload
