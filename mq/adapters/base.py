"""
Adapter contract — the sole interface a new backend must satisfy.

Implementations:
  - InMemoryAdapter  (reference broker, process memory only)
  - SqsAdapter       (Amazon SQS via aioboto3, adaptive long polling)
  - AmqpAdapter      (AMQP 0-9-1 via aio-pika)
  - RedisAdapter     (Redis lists via redis.asyncio)

Every operation is a coroutine. listen() is a cooperative loop running on the
caller's event loop: it awaits the backend fetch, hands each envelope to
on_message, and only then fetches the next one. stop() flips the consumer
state; the loop samples it once per iteration, after the callback returns.
"""
from __future__ import annotations

import abc
import inspect
from enum import Enum
from typing import Any, Callable, Optional

from mq.envelope import Envelope

OnMessage = Callable[..., Any]


class ConsumerState(str, Enum):
    IDLE = "idle"
    CONSUMING = "consuming"


async def invoke_callback(callback: OnMessage, *args: Any) -> Any:
    """Call a plain or coroutine callback and wait for it to finish."""
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class Adapter(abc.ABC):
    """Interface that all message queue backends must implement."""

    #: Namespace for this backend's metrics, e.g. "mq.sqs."
    metric_prefix: str = "mq."

    def __init__(self):
        self._consumer_state = ConsumerState.IDLE

    @property
    def consumer_state(self) -> ConsumerState:
        return self._consumer_state

    @property
    def is_consuming(self) -> bool:
        return self._consumer_state is ConsumerState.CONSUMING

    def _begin_consuming(self) -> None:
        self._consumer_state = ConsumerState.CONSUMING

    # ── Connection ────────────────────────────────────────────

    @abc.abstractmethod
    async def connect(self) -> Adapter:
        """Open the underlying transport. Calling it twice is harmless."""
        ...

    async def stop(self) -> Adapter:
        """Ask a running listen() loop to exit after its current iteration."""
        self._consumer_state = ConsumerState.IDLE
        return self

    @abc.abstractmethod
    async def close(self) -> Adapter:
        """Stop listening, then release the transport."""
        ...

    # ── Messages ──────────────────────────────────────────────

    @abc.abstractmethod
    async def listen(
        self,
        queue: str,
        on_message: OnMessage,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        """Consume `queue`, calling on_message(envelope) for every fetched message."""
        ...

    @abc.abstractmethod
    async def publish(self, envelope: Envelope) -> Envelope:
        """Send the envelope and return it with backend-assigned id/attributes."""
        ...

    @abc.abstractmethod
    async def ack(self, envelope: Envelope) -> Adapter:
        """Tell the backend the envelope was processed and can be removed."""
        ...

    @abc.abstractmethod
    async def nack(self, envelope: Envelope, options: Optional[dict[str, Any]] = None) -> Adapter:
        """Return the envelope to availability, per backend-specific options."""
        ...
