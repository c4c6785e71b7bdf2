from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any

import pytest

from matchmaker.backend.models import AgentMessage, AgentProfile, RegisteredIdentity
from matchmaker.backend.store import InMemoryLedgerStore


class FakeGateway:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str, str, str | None]] = []
        self.child_calls: list[tuple[str, tuple[str, ...]]] = []
        self._replies: dict[str, list[Any]] = defaultdict(list)
        self.child: Any = {"name": "Junior", "system": "A curious child of two contestants."}

    def queue(self, agent_id: str, *responses: Any) -> None:
        """Each response is a list of AgentMessage, a (text, score) pair, or an exception."""
        for response in responses:
            if isinstance(response, tuple):
                response = [AgentMessage(text=response[0], score=response[1])]
            self._replies[agent_id].append(response)

    async def send_message(
        self, agent_id: str, text: str, user_id: str, user_name: str, room_id: str | None = None
    ) -> list[AgentMessage]:
        self.calls.append((agent_id, text, user_id, user_name, room_id))
        queue = self._replies[agent_id]
        if not queue:
            return []
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def generate_child(self, agent_id: str, parent_ids: list[str]) -> dict[str, Any]:
        self.child_calls.append((agent_id, tuple(parent_ids)))
        if isinstance(self.child, Exception):
            raise self.child
        return self.child


class FakeRegistry:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self._failures: dict[tuple[str, int], Exception] = {}
        self._counts: dict[str, int] = defaultdict(int)

    def fail_at(self, operation: str, call_number: int, exc: Exception) -> None:
        self._failures[(operation, call_number)] = exc

    def _record(self, operation: str, *args: Any) -> None:
        self._counts[operation] += 1
        failure = self._failures.pop((operation, self._counts[operation]), None)
        if failure is not None:
            raise failure
        self.calls.append((operation, *args))

    async def register_identity(self, metadata: dict[str, Any]) -> RegisteredIdentity:
        await asyncio.sleep(0)
        self._record("register_identity", metadata["ipMetadata"]["title"])
        return RegisteredIdentity(identity_id="ip-child", tx_ref="0xregister")

    async def issue_license(self, caller_credential: str, issuer_identity_id: str, holder_identity_id: str) -> str:
        await asyncio.sleep(0)
        self._record("issue_license", caller_credential, issuer_identity_id, holder_identity_id)
        return f"license-{issuer_identity_id}"

    async def register_derivative(self, caller_credential: str, child_identity_id: str, license_ids: list[str]) -> str:
        await asyncio.sleep(0)
        self._record("register_derivative", caller_credential, child_identity_id, tuple(license_ids))
        return "0xderivative"


class RecordingSleep:
    def __init__(self, stop_after: int | None = None) -> None:
        self.delays: list[float] = []
        self.stop_after = stop_after

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.stop_after is not None and len(self.delays) >= self.stop_after:
            raise asyncio.CancelledError()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def host() -> AgentProfile:
    return AgentProfile(
        agent_id="host-1",
        name="Marlo",
        ip_id="ip-host",
        wallet_address="0xhost",
        wallet_private_key="key-host",
    )


@pytest.fixture
def contestants() -> list[AgentProfile]:
    return [
        AgentProfile(agent_id="agent-a", name="Avery", ip_id="ip-a", wallet_private_key="key-a"),
        AgentProfile(agent_id="agent-b", name="Blake", ip_id="ip-b", wallet_private_key="key-b"),
    ]
