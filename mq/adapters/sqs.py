"""
SqsAdapter — Amazon SQS backend with adaptive long polling.

Each receive_message round-trip costs a network call and returns at most one
message, so the listen loop keeps an adaptive wait (PollBackoff):

  message received  → callback, then wait resets to its initial value
  nothing received  → wait += 1, capped at MAX_POLL (20 s, the SQS maximum)

Fast follow-up polling while traffic flows, longer server-side waits while idle.

The SQS HTTP API is a black box reached through aioboto3; botocore
exceptions are translated to TransportError at this boundary.
"""
from __future__ import annotations

import structlog
from contextlib import AsyncExitStack
from typing import Any, Optional

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from mq.adapters.base import Adapter, ConsumerState, OnMessage, invoke_callback
from mq.envelope import AttributeType, Envelope
from mq.errors import TransportError, ValidationError

logger = structlog.get_logger()

#: SQS receive_message maximum long polling value (seconds)
MAX_POLL = 20

#: SQS maximum message delay / nack visibility delay (seconds)
MAX_DELAY = 900

_TRANSPORT_ERRORS = (BotoCoreError, ClientError)


def _as_seconds(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f'"{name}" must be a number of seconds, got {value!r}')
    return int(value)


def _clamp(value: int, upper: int) -> int:
    return max(0, min(value, upper))


# ──────────────────────────────────────────────────────────────
#  Adaptive Long Polling
# ──────────────────────────────────────────────────────────────

class PollBackoff:
    """Long-poll wait owned by one listen loop, bounded to [0, maximum]."""

    def __init__(self, initial: Any = 0, maximum: int = MAX_POLL):
        self.maximum = maximum
        self.initial = _clamp(_as_seconds(initial, "WaitTimeSeconds"), maximum)
        self.wait = self.initial

    def record_hit(self) -> int:
        self.wait = self.initial
        return self.wait

    def record_miss(self) -> int:
        if self.wait < self.maximum:
            self.wait += 1
        return self.wait


# ──────────────────────────────────────────────────────────────
#  Envelope
# ──────────────────────────────────────────────────────────────

class SqsEnvelope(Envelope):
    """
    SQS message. The DelaySeconds attribute is routed to the per-message
    delay and never published as a message attribute.
    """

    # Technical attributes returned by SQS; they are overwritten by the
    # service upon reception and must not be published.
    RESERVED_ATTRIBUTE_NAMES = frozenset({
        "SenderId",
        "SentTimestamp",
        "ApproximateReceiveCount",
        "ApproximateFirstReceiveTimestamp",
        "MD5OfBody",
        "MD5OfMessageAttributes",
    })

    def __init__(self, queue: Optional[str] = None):
        super().__init__(queue)
        self._delay = 0

    @property
    def delay(self) -> int:
        return self._delay

    def set_attribute(self, name: str, value: Any) -> SqsEnvelope:
        if name == "DelaySeconds":
            self._delay = _clamp(_as_seconds(value, name), MAX_DELAY)
            return self
        super().set_attribute(name, value)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "QueueUrl": self.queue,
            "MessageId": self.id,
            "MessageBody": self.body,
            "DelaySeconds": self._delay,
            "ReceiptHandle": self.receipt_handle,
            "MessageAttributes": self.attributes,
        }

    def to_vendor(self) -> dict[str, Any]:
        payload = self.to_dict()
        del payload["MessageId"], payload["ReceiptHandle"]

        if isinstance(payload["MessageBody"], bytes):
            payload["MessageBody"] = payload["MessageBody"].decode("utf-8")

        encoded = {}
        for name, value in payload["MessageAttributes"].items():
            if name in self.RESERVED_ATTRIBUTE_NAMES:
                raise ValidationError(
                    f'Attribute name "{name}" is used internally. '
                    f"Please rename or remove the attribute before publishing."
                )
            encoded[name] = self._encode_value(value)
        payload["MessageAttributes"] = encoded
        return payload

    @classmethod
    def from_vendor(cls, data: Any) -> SqsEnvelope:
        if not isinstance(data, dict):
            raise ValidationError(
                f"Dict type expected from SQS message. Given type is: {type(data).__name__}"
            )
        if "QueueUrl" not in data:
            raise ValidationError("Missing mandatory QueueUrl key!")

        data = {
            "MessageId": None,
            "Body": "",
            "ReceiptHandle": None,
            "MessageAttributes": {},
            "Attributes": {},
            "MD5OfBody": None,
            "MD5OfMessageAttributes": None,
            **data,
        }

        envelope = cls(data["QueueUrl"])
        envelope.id = data["MessageId"]
        envelope.body = data["Body"]
        envelope.receipt_handle = data["ReceiptHandle"]

        for name, value_bag in data["MessageAttributes"].items():
            envelope.set_attribute(name, cls._decode_value(name, value_bag))
        for name, value in data["Attributes"].items():
            envelope.set_attribute(name, value)
        for name in ("MD5OfBody", "MD5OfMessageAttributes"):
            if data[name]:
                envelope.set_attribute(name, data[name])
        return envelope

    @staticmethod
    def _encode_value(value: Any) -> dict[str, Any]:
        kind = AttributeType.of(value)
        if kind is AttributeType.BOOLEAN:
            return {"DataType": "Number.Boolean", "StringValue": "1" if value else "0"}
        if kind is AttributeType.INTEGER:
            return {"DataType": "Number.Integer", "StringValue": str(value)}
        if kind is AttributeType.FLOAT:
            return {"DataType": "Number.Float", "StringValue": repr(value)}
        if kind is AttributeType.BYTES:
            return {"DataType": "Binary", "BinaryValue": bytes(value)}
        return {"DataType": "String", "StringValue": value}

    @staticmethod
    def _decode_value(name: str, value_bag: dict[str, Any]) -> Any:
        data_type = value_bag.get("DataType", "String")
        if data_type.startswith("Binary"):
            return value_bag.get("BinaryValue", b"")

        raw = value_bag.get("StringValue", "")
        try:
            if data_type == "Number.Boolean":
                return raw not in ("", "0")
            if data_type == "Number.Integer":
                return int(raw)
            if data_type == "Number.Float":
                return float(raw)
        except ValueError:
            # Malformed numbers are kept as sent
            logger.warning("sqs_attribute_undecodable", name=name, data_type=data_type, value=raw)
        return raw


# ──────────────────────────────────────────────────────────────
#  Adapter
# ──────────────────────────────────────────────────────────────

class SqsAdapter(Adapter):
    """
    listen() options:
      WaitTimeSeconds   initial long-poll wait, clamped to [0, 20] (default 0)
      any other receive_message parameter (e.g. VisibilityTimeout) is passed through;
      MaxNumberOfMessages is always forced to 1

    nack() options:
      VisibilityTimeout  seconds before the message is visible again,
                         clamped to [0, 900] (default 0)
    """

    metric_prefix = "mq.sqs."

    LISTEN_OPT_WAIT = "WaitTimeSeconds"
    NACK_OPT_TIMEOUT = "VisibilityTimeout"

    def __init__(
        self,
        region_name: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        session: Any = None,
    ):
        super().__init__()
        self._session = session or aioboto3.Session()
        self._client_kwargs = {
            key: value
            for key, value in {
                "region_name": region_name,
                "aws_access_key_id": aws_access_key_id,
                "aws_secret_access_key": aws_secret_access_key,
                "endpoint_url": endpoint_url,
            }.items()
            if value
        }
        self._client = None
        self._exit_stack: Optional[AsyncExitStack] = None
        self.backoff: Optional[PollBackoff] = None

    # ── Connection ────────────────────────────────────────────

    async def connect(self) -> SqsAdapter:
        if self._client is not None:
            return self

        stack = AsyncExitStack()
        try:
            self._client = await stack.enter_async_context(
                self._session.client("sqs", **self._client_kwargs)
            )
        except _TRANSPORT_ERRORS as e:
            await stack.aclose()
            raise TransportError.wrap(e) from e

        self._exit_stack = stack
        logger.debug("sqs_client_opened", region=self._client_kwargs.get("region_name"))
        return self

    async def close(self) -> SqsAdapter:
        await self.stop()
        if self._exit_stack is None:
            return self

        stack, self._exit_stack, self._client = self._exit_stack, None, None
        try:
            await stack.aclose()
        except _TRANSPORT_ERRORS as e:
            raise TransportError.wrap(e) from e
        logger.debug("sqs_client_closed")
        return self

    # ── Messages ──────────────────────────────────────────────

    async def listen(
        self,
        queue: str,
        on_message: OnMessage,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        client = self._require_client()
        options = dict(options or {})

        self.backoff = backoff = PollBackoff(options.pop(self.LISTEN_OPT_WAIT, 0))
        params = {
            "QueueUrl": queue,
            "MessageAttributeNames": ["All"],
            "AttributeNames": ["All"],
            **options,
            "MaxNumberOfMessages": 1,
        }

        self._begin_consuming()
        try:
            while self.is_consuming:
                params[self.LISTEN_OPT_WAIT] = backoff.wait
                envelope = await self._fetch(client, params)

                if envelope is None:
                    backoff.record_miss()
                    continue

                await invoke_callback(on_message, envelope)
                backoff.record_hit()
        finally:
            self._consumer_state = ConsumerState.IDLE

    async def publish(self, envelope: Envelope) -> Envelope:
        client = self._require_client()
        if not isinstance(envelope, SqsEnvelope):
            raise ValidationError(f"SqsEnvelope expected. Given type is: {type(envelope).__name__}")

        payload = envelope.to_vendor()
        try:
            result = await client.send_message(**payload)
        except _TRANSPORT_ERRORS as e:
            raise TransportError.wrap(e) from e

        envelope.id = result.get("MessageId")
        if result.get("MD5OfMessageBody"):
            envelope.set_attribute("MD5OfMessageBody", result["MD5OfMessageBody"])
        if result.get("MD5OfMessageAttributes"):
            envelope.set_attribute("MD5OfMessageAttributes", result["MD5OfMessageAttributes"])
        return envelope

    async def ack(self, envelope: Envelope) -> SqsAdapter:
        client = self._require_client()
        try:
            await client.delete_message(
                QueueUrl=envelope.queue,
                ReceiptHandle=envelope.receipt_handle,
            )
        except _TRANSPORT_ERRORS as e:
            raise TransportError.wrap(e) from e
        return self

    async def nack(self, envelope: Envelope, options: Optional[dict[str, Any]] = None) -> SqsAdapter:
        client = self._require_client()
        options = options or {}
        timeout = _clamp(_as_seconds(options.get(self.NACK_OPT_TIMEOUT, 0), self.NACK_OPT_TIMEOUT),
                         MAX_DELAY)
        try:
            await client.change_message_visibility(
                QueueUrl=envelope.queue,
                ReceiptHandle=envelope.receipt_handle,
                VisibilityTimeout=timeout,
            )
        except _TRANSPORT_ERRORS as e:
            raise TransportError.wrap(e) from e
        return self

    # ── Internals ─────────────────────────────────────────────

    def _require_client(self):
        if self._client is None:
            raise TransportError("Not connected")
        return self._client

    async def _fetch(self, client, params: dict[str, Any]) -> Optional[SqsEnvelope]:
        try:
            response = await client.receive_message(**params)
        except _TRANSPORT_ERRORS as e:
            raise TransportError.wrap(e) from e

        messages = response.get("Messages") or []
        if not messages:
            return None

        message = dict(messages[0])
        message["QueueUrl"] = params["QueueUrl"]
        return SqsEnvelope.from_vendor(message)
