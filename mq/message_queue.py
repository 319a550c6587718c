"""
MessageQueue — instrumented producer/consumer facade over one Adapter.

Every operation is delegated to the adapter and wrapped with:
  - a connection guard (PreconditionError while DISCONNECTED)
  - structlog events (debug payload snapshots, info summaries, error on failure)
  - metrics: <prefix><metric key> counters and millisecond timings, flushed
    after each operation and drained on close()

Consumer timing:
  fetch_time    time between the previous delivery (or listen start) and this one
  process_time  time between handing a message to on_message and the
                ack()/nack() that settles it

    mq = MessageQueue(InMemoryAdapter())
    await mq.connect()
    await mq.publish(envelope)
    await mq.listen("jobs", handle)     # handle(envelope, mq)
"""
from __future__ import annotations

import time
import structlog
from enum import Enum
from typing import Any, Optional

from mq.adapters.base import Adapter, OnMessage, invoke_callback
from mq.envelope import Envelope
from mq.errors import PreconditionError, TransportError
from mq.metrics import Metric, MetricCollector, NullCollector


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


class MessageQueue:
    """Orchestrates an adapter; the only entry point application code needs."""

    def __init__(self, adapter: Adapter):
        self._adapter = adapter
        self._state = ConnectionState.DISCONNECTED
        self._processing_started: Optional[float] = None
        self.set_logger(structlog.get_logger())
        self.set_metric_collector(NullCollector(), adapter.metric_prefix)

    # ── Collaborators ─────────────────────────────────────────

    def set_logger(self, logger: Any) -> MessageQueue:
        self._logger = logger
        return self

    def set_metric_collector(self, collector: MetricCollector, prefix: str) -> MessageQueue:
        self._collector = collector
        self._prefix = prefix
        return self

    @property
    def metric_collector(self) -> MetricCollector:
        return self._collector

    @property
    def adapter(self) -> Adapter:
        return self._adapter

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    # ── Connection ────────────────────────────────────────────

    async def connect(self) -> MessageQueue:
        self._logger.info("mq_connection_opening")
        start = time.monotonic()
        try:
            await self._adapter.connect()
        except TransportError as e:
            self._logger.critical("mq_connection_open_failed", error=str(e), code=e.code)
            self._fail(Metric.CONNECTION_OPEN_FAILED)
            raise

        self._state = ConnectionState.CONNECTED
        self._succeed(Metric.CONNECTION_OPEN_SUCCEED, Metric.CONNECTION_OPEN_TIME, _elapsed_ms(start))
        self._logger.info("mq_connection_opened")
        return self

    async def stop(self) -> MessageQueue:
        self._logger.info("mq_listen_stopping")
        start = time.monotonic()
        try:
            await self._adapter.stop()
        except TransportError as e:
            self._logger.error("mq_listen_stop_failed", error=str(e), code=e.code)
            self._fail(Metric.CONNECTION_STOP_FAILED)
            raise

        self._succeed(Metric.CONNECTION_STOP_SUCCEED, Metric.CONNECTION_STOP_TIME, _elapsed_ms(start))
        self._logger.info("mq_listen_stopped")
        return self

    async def close(self) -> MessageQueue:
        # A running listen() must stop before the transport goes away
        await self.stop()

        self._logger.info("mq_connection_closing")
        start = time.monotonic()
        try:
            await self._adapter.close()
        except TransportError as e:
            self._logger.error("mq_connection_close_failed", error=str(e), code=e.code)
            self._fail(Metric.CONNECTION_CLOSE_FAILED)
            raise

        self._state = ConnectionState.DISCONNECTED
        self._succeed(Metric.CONNECTION_CLOSE_SUCCEED, Metric.CONNECTION_CLOSE_TIME, _elapsed_ms(start))
        await self._collector.drain()
        self._logger.info("mq_connection_closed")
        return self

    # ── Consuming ─────────────────────────────────────────────

    async def listen(
        self,
        queue: str,
        on_message: OnMessage,
        options: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Consume `queue` until stopped. on_message receives (envelope, message_queue)
        and is expected to ack() or nack() the envelope through the second argument.
        """
        self._ensure_connected()
        self._logger.info("mq_listen_started", queue=queue)

        fetch_started = time.monotonic()

        async def deliver(envelope: Envelope) -> None:
            nonlocal fetch_started
            duration = _elapsed_ms(fetch_started)

            self._logger.info("mq_message_fetched", id=envelope.id, duration_ms=round(duration, 3))
            self._logger.debug("mq_message_fetched_payload", message=envelope.to_dict())
            self._collector.increment(Metric.MESSAGE_FETCH_SUCCEED.qualified(self._prefix))
            self._collector.timing(Metric.MESSAGE_FETCH_TIME.qualified(self._prefix), duration)

            self._processing_started = time.monotonic()
            await invoke_callback(on_message, envelope, self)

            fetch_started = time.monotonic()

        try:
            await self._adapter.listen(queue, deliver, options)
        except TransportError as e:
            self._logger.error("mq_listen_failed", queue=queue, error=str(e), code=e.code)
            self._fail(Metric.MESSAGE_LISTEN_FAILED)
            raise

        self._logger.info("mq_listen_ended", queue=queue)

    async def ack(self, envelope: Envelope) -> MessageQueue:
        self._ensure_connected()
        self._collect_processing_time()
        self._logger.debug("mq_message_acking", message=envelope.to_dict())

        start = time.monotonic()
        try:
            await self._adapter.ack(envelope)
        except TransportError as e:
            self._logger.error("mq_message_ack_failed", id=envelope.id, error=str(e), code=e.code)
            self._fail(Metric.MESSAGE_ACK_FAILED)
            raise

        duration = _elapsed_ms(start)
        self._logger.info("mq_message_acked", id=envelope.id, duration_ms=round(duration, 3))
        self._succeed(Metric.MESSAGE_ACK_SUCCEED, Metric.MESSAGE_ACK_TIME, duration)
        return self

    async def nack(self, envelope: Envelope, options: Optional[dict[str, Any]] = None) -> MessageQueue:
        self._ensure_connected()
        self._collect_processing_time()
        self._logger.debug("mq_message_nacking", message=envelope.to_dict())

        start = time.monotonic()
        try:
            await self._adapter.nack(envelope, options or {})
        except TransportError as e:
            self._logger.error("mq_message_nack_failed", id=envelope.id, error=str(e), code=e.code)
            self._fail(Metric.MESSAGE_NACK_FAILED)
            raise

        duration = _elapsed_ms(start)
        self._logger.info("mq_message_nacked", id=envelope.id, duration_ms=round(duration, 3))
        self._succeed(Metric.MESSAGE_NACK_SUCCEED, Metric.MESSAGE_NACK_TIME, duration)
        return self

    # ── Producing ─────────────────────────────────────────────

    async def publish(self, envelope: Envelope) -> Envelope:
        self._ensure_connected()
        self._logger.debug("mq_message_publishing", message=envelope.to_dict())

        start = time.monotonic()
        try:
            envelope = await self._adapter.publish(envelope)
        except TransportError as e:
            self._logger.error("mq_message_publish_failed", queue=envelope.queue, error=str(e), code=e.code)
            self._fail(Metric.MESSAGE_PUBLISH_FAILED)
            raise

        duration = _elapsed_ms(start)
        self._logger.info("mq_message_published", id=envelope.id, duration_ms=round(duration, 3))
        self._logger.debug("mq_message_published_payload", message=envelope.to_dict())
        self._succeed(Metric.MESSAGE_PUBLISH_SUCCEED, Metric.MESSAGE_PUBLISH_TIME, duration)
        return envelope

    # ── Internals ─────────────────────────────────────────────

    def _ensure_connected(self) -> None:
        if self._state is not ConnectionState.CONNECTED:
            raise PreconditionError()

    def _collect_processing_time(self) -> None:
        if self._processing_started is None:
            return
        started, self._processing_started = self._processing_started, None
        self._collector.timing(
            Metric.MESSAGE_PROCESS_TIME.qualified(self._prefix),
            _elapsed_ms(started),
        )

    def _succeed(self, counter: Metric, timer: Metric, duration_ms: float) -> None:
        self._collector.increment(counter.qualified(self._prefix))
        self._collector.timing(timer.qualified(self._prefix), duration_ms)
        self._collector.flush()

    def _fail(self, counter: Metric) -> None:
        self._collector.increment(counter.qualified(self._prefix))
        self._collector.flush()
