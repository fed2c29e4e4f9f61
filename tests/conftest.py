"""
Shared fakes for the Coordinator tests.
"""

import asyncio
import json
import random
from typing import Optional

import pytest

from hinan.core.schema import CombinedData, Coordinate
from services.shelter_data import build_combined_data


class FakeTransport:
    """Records what the engine sends to the Agent."""

    def __init__(self, fail_sends: bool = False):
        self.sent: list[dict] = []
        self.closed: Optional[tuple[int, Optional[str]]] = None
        self.fail_sends = fail_sends

    async def send_text(self, data: str) -> None:
        if self.fail_sends:
            raise RuntimeError("connection closed")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed = (code, reason)

    def types(self) -> list[str]:
        return [message["type"] for message in self.sent]

    def of_type(self, message_type: str) -> list[dict]:
        return [message for message in self.sent if message["type"] == message_type]


class FakeBackend:
    """Answers fetches with generated shelters; can be gated or made to fail."""

    def __init__(
        self,
        data: Optional[CombinedData] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ):
        self.data = data
        self.error = error
        self.gate = gate
        self.calls: list[Coordinate] = []

    async def fetch(self, location: Coordinate) -> CombinedData:
        self.calls.append(location)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.data is not None:
            return self.data
        return build_combined_data(location, rng=random.Random(7))


def frame(message_type: str, payload=None) -> str:
    """Build an Agent frame."""
    if isinstance(payload, Coordinate):
        payload = payload.model_dump()
    return json.dumps({"type": message_type, "payload": payload})


@pytest.fixture
def tokyo():
    """Scenario A starting point."""
    return Coordinate(lat=35.6800, lng=139.7670)


@pytest.fixture
def shelter_900m(tokyo):
    """Due north, a little over 900 m away."""
    return Coordinate(lat=tokyo.lat + 0.0081, lng=tokyo.lng)


@pytest.fixture
def shelter_15m(tokyo):
    """Due north, about 15 m away."""
    return Coordinate(lat=tokyo.lat + 0.000135, lng=tokyo.lng)
