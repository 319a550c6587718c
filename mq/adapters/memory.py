"""
InMemoryAdapter — reference broker for development, tests and conformance.

State:
  ready      ordered mapping id → payload, FIFO by publish order
  delivered  mapping receipt handle → payload (fetched, not yet acked)

Lifecycle of an envelope:
  publish → ready → (listen) delivered → ack: removed
                                       → nack: back to the tail of ready

Every envelope lives in exactly one of ready/delivered until it is acked.
Single-process only: no persistence, no locking.
"""
from __future__ import annotations

import asyncio
import uuid
import structlog
from collections import OrderedDict
from typing import Any, Iterable, Optional

from mq.adapters.base import Adapter, ConsumerState, OnMessage, invoke_callback
from mq.envelope import Envelope
from mq.errors import TransportError, ValidationError

logger = structlog.get_logger()


def _new_id() -> str:
    return uuid.uuid4().hex


class InMemoryEnvelope(Envelope):
    """Envelope whose vendor form is a plain dict."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "body": self.body,
            "queue": self.queue,
            "receipt_handle": self.receipt_handle,
            "attributes": self.attributes,
        }

    def to_vendor(self) -> dict[str, Any]:
        payload = self.to_dict()
        del payload["receipt_handle"]
        return payload

    @classmethod
    def from_vendor(cls, data: Any) -> InMemoryEnvelope:
        if not isinstance(data, dict):
            raise ValidationError(
                f"Dict type expected from InMemory message. Given type is: {type(data).__name__}"
            )
        if "queue" not in data:
            raise ValidationError("Missing mandatory queue key!")

        data = {"id": None, "body": "", "receipt_handle": None, "attributes": {}, **data}

        envelope = cls(data["queue"])
        envelope.id = data["id"]
        envelope.body = data["body"]
        envelope.receipt_handle = data["receipt_handle"]
        for name, value in data["attributes"].items():
            envelope.set_attribute(name, value)
        return envelope


class InMemoryAdapter(Adapter):
    """
    Reference broker implementing the full ready/delivered state machine.

    listen() options:
      filter   callable(envelope) -> bool; entries it rejects stay ready
      timeout  listen budget in seconds; the loop returns once it is spent

    nack() ignores every option: the envelope is requeued immediately.
    """

    metric_prefix = "mq.in_memory."

    def __init__(self, envelopes: Optional[Iterable[InMemoryEnvelope]] = None):
        super().__init__()
        self._ready: OrderedDict[str, dict[str, Any]] = OrderedDict()
        self._delivered: dict[str, dict[str, Any]] = {}
        self._connected = False

        # Pre-fills the broker with available messages
        for envelope in envelopes or ():
            self._enqueue(envelope)

    # ── Introspection ─────────────────────────────────────────

    def __len__(self) -> int:
        return self.pending_count

    @property
    def pending_count(self) -> int:
        """Envelopes published and not yet acknowledged."""
        return len(self._ready) + len(self._delivered)

    @property
    def ready_count(self) -> int:
        return len(self._ready)

    @property
    def delivered_count(self) -> int:
        return len(self._delivered)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def set_connected(self, connected: bool) -> InMemoryAdapter:
        """Flip the connection flag; setting it False mid-listen simulates an outage."""
        self._connected = bool(connected)
        return self

    # ── Connection ────────────────────────────────────────────

    async def connect(self) -> InMemoryAdapter:
        self._connected = True
        logger.debug("inmemory_broker_connected")
        return self

    async def close(self) -> InMemoryAdapter:
        await self.stop()
        self._connected = False
        logger.debug("inmemory_broker_closed")
        return self

    # ── Messages ──────────────────────────────────────────────

    async def listen(
        self,
        queue: str,
        on_message: OnMessage,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        options = options or {}
        if not queue:
            raise TransportError("No message queue name provided")

        message_filter = options.get("filter")
        timeout = options.get("timeout")
        if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float))):
            raise ValidationError(f'"timeout" must be a number of seconds, got {timeout!r}')
        loop = asyncio.get_running_loop()
        started = loop.time()

        def budget_spent() -> bool:
            return timeout is not None and loop.time() - started >= abs(timeout)

        self._begin_consuming()
        try:
            while self.is_consuming:
                if budget_spent():
                    break
                if not self._connected:
                    raise TransportError("Connection outage")

                for message_id in list(self._ready):
                    if not self.is_consuming or budget_spent():
                        break
                    if not self._connected:
                        raise TransportError("Connection outage")

                    payload = self._ready.get(message_id)
                    if payload is None:
                        continue

                    envelope = InMemoryEnvelope.from_vendor(payload)
                    if message_filter is not None and not message_filter(envelope):
                        continue

                    # Receipt handle = message id
                    envelope.receipt_handle = envelope.id
                    self._delivered[envelope.receipt_handle] = self._ready.pop(message_id)

                    await invoke_callback(on_message, envelope)

                # Cooperative yield
                await asyncio.sleep(0)
        finally:
            self._consumer_state = ConsumerState.IDLE

    async def publish(self, envelope: Envelope) -> Envelope:
        self._ensure_connected()
        return self._enqueue(envelope)

    async def ack(self, envelope: Envelope) -> InMemoryAdapter:
        self._ensure_connected()
        if self._delivered.pop(envelope.receipt_handle, None) is not None:
            logger.debug("inmemory_message_removed", id=envelope.id)
        return self

    async def nack(self, envelope: Envelope, options: Optional[dict[str, Any]] = None) -> InMemoryAdapter:
        self._ensure_connected()
        payload = self._delivered.pop(envelope.receipt_handle, None)
        if payload is not None:
            self._ready[envelope.receipt_handle] = payload
            logger.debug("inmemory_message_requeued", id=envelope.id)
        return self

    # ── Internals ─────────────────────────────────────────────

    def _enqueue(self, envelope: Envelope) -> Envelope:
        if not isinstance(envelope, InMemoryEnvelope):
            raise ValidationError(
                f"InMemoryEnvelope expected. Given type is: {type(envelope).__name__}"
            )
        envelope.id = _new_id()
        self._ready[envelope.id] = envelope.to_vendor()
        return envelope

    def _ensure_connected(self) -> None:
        if not self._connected:
            raise TransportError("Not connected")
