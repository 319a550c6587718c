"""Shared test fixtures for the message queue layer."""
import pytest

from mq.adapters.memory import InMemoryAdapter, InMemoryEnvelope
from mq.metrics import InMemoryCollector

QUEUE = "test_queue"


def make_envelopes(count: int = 5, queue: str = QUEUE) -> list[InMemoryEnvelope]:
    """Envelopes tagged with an `index` attribute 0..count-1."""
    envelopes = []
    for index in range(count):
        envelope = InMemoryEnvelope(queue)
        envelope.body = f"message #{index}"
        envelope.set_attribute("index", index)
        envelopes.append(envelope)
    return envelopes


@pytest.fixture
def envelopes() -> list[InMemoryEnvelope]:
    return make_envelopes()


@pytest.fixture
def adapter(envelopes) -> InMemoryAdapter:
    """Reference broker pre-filled with five envelopes."""
    return InMemoryAdapter(envelopes)


@pytest.fixture
def collector() -> InMemoryCollector:
    return InMemoryCollector()


class FakeClientContext:
    """Async context manager standing in for aioboto3's session.client(...)."""

    def __init__(self, client):
        self.client = client
        self.exited = False

    async def __aenter__(self):
        return self.client

    async def __aexit__(self, *exc):
        self.exited = True
        return False
