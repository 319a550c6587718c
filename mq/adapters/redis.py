"""
RedisAdapter — reliable-queue pattern on Redis lists.

Lists:
  <queue>              ready list; LPUSH on publish, consumed from the right (FIFO)
  <queue>:processing   in-flight list; BRPOPLPUSH moves each fetched payload here

ack removes the payload from the processing list; nack removes it and pushes
it back onto the ready list, behind everything already waiting. The receipt
handle is the raw JSON payload, which is what LREM needs to find it again.
"""
from __future__ import annotations

import base64
import json
import uuid
import structlog
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from mq.adapters.base import Adapter, ConsumerState, OnMessage, invoke_callback
from mq.envelope import Envelope
from mq.errors import TransportError, ValidationError

logger = structlog.get_logger()

_BYTES_TAG = "__bytes__"


def _encode(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_TAG: base64.b64encode(bytes(value)).decode("ascii")}
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict) and set(value) == {_BYTES_TAG}:
        return base64.b64decode(value[_BYTES_TAG])
    return value


def processing_list(queue: str) -> str:
    return f"{queue}:processing"


class RedisEnvelope(Envelope):
    """Envelope whose vendor form is a JSON document."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "queue": self.queue,
            "body": self.body,
            "receipt_handle": self.receipt_handle,
            "attributes": self.attributes,
        }

    def to_vendor(self) -> str:
        return json.dumps({
            "id": self.id,
            "queue": self.queue,
            "body": _encode(self.body),
            "attributes": {name: _encode(value) for name, value in self.attributes.items()},
        })

    @classmethod
    def from_vendor(cls, data: Any) -> RedisEnvelope:
        if isinstance(data, (str, bytes)):
            try:
                data = json.loads(data)
            except ValueError as e:
                raise ValidationError(f"Invalid JSON payload from Redis message: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError(
                f"JSON object expected from Redis message. Given type is: {type(data).__name__}"
            )
        if "queue" not in data:
            raise ValidationError("Missing mandatory queue key!")

        envelope = cls(data["queue"])
        envelope.id = data.get("id")
        envelope.body = _decode(data.get("body", ""))
        for name, value in (data.get("attributes") or {}).items():
            envelope.set_attribute(name, _decode(value))
        return envelope


class RedisAdapter(Adapter):
    """
    listen() options:
      block_timeout  seconds BRPOPLPUSH waits for a message (default 1)

    nack() ignores every option: the payload is requeued immediately.
    """

    metric_prefix = "mq.redis."

    LISTEN_OPT_BLOCK = "block_timeout"

    def __init__(self, url: str = "redis://localhost:6379", client: Any = None):
        super().__init__()
        self._url = url
        self._client = client
        self._connected = False

    # ── Connection ────────────────────────────────────────────

    async def connect(self) -> RedisAdapter:
        if self._connected:
            return self
        if self._client is None:
            self._client = aioredis.from_url(self._url, decode_responses=True)
        try:
            await self._client.ping()
        except RedisError as e:
            raise TransportError.wrap(e) from e

        self._connected = True
        logger.info("redis_queue_connected", url=self._url)
        return self

    async def close(self) -> RedisAdapter:
        await self.stop()
        if not self._connected:
            return self
        self._connected = False
        try:
            await self._client.aclose()
        except RedisError as e:
            raise TransportError.wrap(e) from e
        return self

    # ── Messages ──────────────────────────────────────────────

    async def listen(
        self,
        queue: str,
        on_message: OnMessage,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        client = self._require_client()
        options = options or {}
        block_timeout = options.get(self.LISTEN_OPT_BLOCK, 1)

        self._begin_consuming()
        try:
            while self.is_consuming:
                try:
                    payload = await client.brpoplpush(queue, processing_list(queue), timeout=block_timeout)
                except RedisError as e:
                    raise TransportError.wrap(e) from e

                if payload is None:
                    continue

                envelope = RedisEnvelope.from_vendor(payload)
                envelope.receipt_handle = payload
                await invoke_callback(on_message, envelope)
        finally:
            self._consumer_state = ConsumerState.IDLE

    async def publish(self, envelope: Envelope) -> Envelope:
        client = self._require_client()
        if not isinstance(envelope, RedisEnvelope):
            raise ValidationError(f"RedisEnvelope expected. Given type is: {type(envelope).__name__}")

        envelope.id = uuid.uuid4().hex
        try:
            await client.lpush(envelope.queue, envelope.to_vendor())
        except RedisError as e:
            raise TransportError.wrap(e) from e
        return envelope

    async def ack(self, envelope: Envelope) -> RedisAdapter:
        client = self._require_client()
        try:
            await client.lrem(processing_list(envelope.queue), 1, envelope.receipt_handle)
        except RedisError as e:
            raise TransportError.wrap(e) from e
        return self

    async def nack(self, envelope: Envelope, options: Optional[dict[str, Any]] = None) -> RedisAdapter:
        client = self._require_client()
        try:
            removed = await client.lrem(processing_list(envelope.queue), 1, envelope.receipt_handle)
            if removed:
                await client.lpush(envelope.queue, envelope.receipt_handle)
        except RedisError as e:
            raise TransportError.wrap(e) from e
        return self

    # ── Internals ─────────────────────────────────────────────

    def _require_client(self):
        if not self._connected:
            raise TransportError("Not connected")
        return self._client
