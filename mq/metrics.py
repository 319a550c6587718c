"""
Message queue metrics — versioned schema and collectors.

Every backend reports the same catalogue, prefixed by the adapter's
metric_prefix (e.g. "mq.sqs.message.publish.succeed"), so observability is
uniform regardless of transport.

Collectors:
  NullCollector        — discards everything (default)
  InMemoryCollector    — keeps counters and timings in process (tests, introspection)
  LogCollector         — buffers and emits structlog events on flush (development)
  CloudWatchCollector  — buffers and publishes custom metrics on flush, off the
                         event loop (production)
"""
from __future__ import annotations

import abc
import asyncio
import structlog
from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

logger = structlog.get_logger()

SCHEMA_VERSION = 1


class MetricKind(str, Enum):
    COUNTER = "counter"
    TIMING = "timing"


class Metric(Enum):
    """Metric catalogue: member → (key, kind)."""

    # Connection
    CONNECTION_OPEN_SUCCEED = ("connection.open.succeed", MetricKind.COUNTER)
    CONNECTION_OPEN_TIME = ("connection.open_time", MetricKind.TIMING)
    CONNECTION_OPEN_FAILED = ("connection.open.failed", MetricKind.COUNTER)
    CONNECTION_STOP_SUCCEED = ("connection.stop.succeed", MetricKind.COUNTER)
    CONNECTION_STOP_TIME = ("connection.stop_time", MetricKind.TIMING)
    CONNECTION_STOP_FAILED = ("connection.stop.failed", MetricKind.COUNTER)
    CONNECTION_CLOSE_SUCCEED = ("connection.close.succeed", MetricKind.COUNTER)
    CONNECTION_CLOSE_TIME = ("connection.close_time", MetricKind.TIMING)
    CONNECTION_CLOSE_FAILED = ("connection.close.failed", MetricKind.COUNTER)

    # Messages
    MESSAGE_PUBLISH_SUCCEED = ("message.publish.succeed", MetricKind.COUNTER)
    MESSAGE_PUBLISH_TIME = ("message.publish_time", MetricKind.TIMING)
    MESSAGE_PUBLISH_FAILED = ("message.publish.failed", MetricKind.COUNTER)
    MESSAGE_FETCH_SUCCEED = ("message.fetch.succeed", MetricKind.COUNTER)
    MESSAGE_FETCH_TIME = ("message.fetch_time", MetricKind.TIMING)
    MESSAGE_LISTEN_FAILED = ("message.listen.failed", MetricKind.COUNTER)
    MESSAGE_ACK_SUCCEED = ("message.ack.succeed", MetricKind.COUNTER)
    MESSAGE_ACK_TIME = ("message.ack_time", MetricKind.TIMING)
    MESSAGE_ACK_FAILED = ("message.ack.failed", MetricKind.COUNTER)
    MESSAGE_NACK_SUCCEED = ("message.nack.succeed", MetricKind.COUNTER)
    MESSAGE_NACK_TIME = ("message.nack_time", MetricKind.TIMING)
    MESSAGE_NACK_FAILED = ("message.nack.failed", MetricKind.COUNTER)
    MESSAGE_PROCESS_TIME = ("message.process_time", MetricKind.TIMING)

    def __init__(self, key: str, kind: MetricKind):
        self.key = key
        self.kind = kind

    def qualified(self, prefix: str = "") -> str:
        return f"{prefix}{self.key}"


# ──────────────────────────────────────────────────────────────
#  Collector Interface
# ──────────────────────────────────────────────────────────────

class MetricCollector(abc.ABC):
    """Sink for counters and timings."""

    @abc.abstractmethod
    def increment(self, name: str, value: int = 1) -> None:
        ...

    @abc.abstractmethod
    def timing(self, name: str, milliseconds: float) -> None:
        ...

    @abc.abstractmethod
    def flush(self) -> None:
        ...

    async def drain(self) -> None:
        """Wait for flushes still in flight."""


class NullCollector(MetricCollector):

    def increment(self, name: str, value: int = 1) -> None:
        pass

    def timing(self, name: str, milliseconds: float) -> None:
        pass

    def flush(self) -> None:
        pass


class InMemoryCollector(MetricCollector):
    """Keeps every counter and timing sample; flush only counts calls."""

    def __init__(self):
        self.counters: dict[str, int] = defaultdict(int)
        self.timings: dict[str, list[float]] = defaultdict(list)
        self.flush_count = 0

    def increment(self, name: str, value: int = 1) -> None:
        self.counters[name] += value

    def timing(self, name: str, milliseconds: float) -> None:
        self.timings[name].append(milliseconds)

    def flush(self) -> None:
        self.flush_count += 1

    def count(self, name: str) -> int:
        return self.counters.get(name, 0)

    def reset(self) -> None:
        self.counters.clear()
        self.timings.clear()
        self.flush_count = 0


class LogCollector(MetricCollector):
    """Development sink: buffers samples and logs them through structlog on flush."""

    def __init__(self, event: str = "mq_metric"):
        self.event = event
        self._buffer: list[tuple[str, str, float]] = []

    def increment(self, name: str, value: int = 1) -> None:
        self._buffer.append((MetricKind.COUNTER.value, name, value))

    def timing(self, name: str, milliseconds: float) -> None:
        self._buffer.append((MetricKind.TIMING.value, name, milliseconds))

    def flush(self) -> None:
        buffered, self._buffer = self._buffer, []
        for kind, name, value in buffered:
            logger.info(self.event, kind=kind, name=name, value=value)


class CloudWatchCollector(MetricCollector):
    """
    Production sink: buffers samples as CloudWatch MetricData and sends
    them with put_metric_data on flush.

    Inside a running event loop the blocking boto3 call is handed to a worker
    thread; drain() waits for those sends to finish.
    """

    MAX_BATCH = 20

    def __init__(
        self,
        namespace: str = "MessageQueue",
        region: str = "us-east-1",
        client: Any = None,
    ):
        self.namespace = namespace
        self.region = region
        self._client = client
        self._buffer: list[dict[str, Any]] = []
        self._pending: set[asyncio.Task] = set()

    @property
    def client(self):
        if self._client is None:
            import boto3
            self._client = boto3.client("cloudwatch", region_name=self.region)
        return self._client

    @property
    def pending_sends(self) -> int:
        return len(self._pending)

    def increment(self, name: str, value: int = 1) -> None:
        self._buffer.append(self._datum(name, value, "Count"))

    def timing(self, name: str, milliseconds: float) -> None:
        self._buffer.append(self._datum(name, milliseconds, "Milliseconds"))

    def flush(self) -> None:
        if not self._buffer:
            return
        buffered, self._buffer = self._buffer, []
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._send(buffered)
            return

        task = loop.create_task(asyncio.to_thread(self._send, buffered), name="cloudwatch_put_metric_data")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending)

    def _send(self, buffered: list[dict[str, Any]]) -> None:
        try:
            for start in range(0, len(buffered), self.MAX_BATCH):
                self.client.put_metric_data(
                    Namespace=self.namespace,
                    MetricData=buffered[start:start + self.MAX_BATCH],
                )
        except (BotoCoreError, ClientError) as e:
            logger.error("metrics_publish_error",
                         namespace=self.namespace,
                         dropped=len(buffered),
                         error=str(e))

    @staticmethod
    def _datum(name: str, value: float, unit: str) -> dict[str, Any]:
        return {
            "MetricName": name,
            "Value": value,
            "Unit": unit,
            "Timestamp": datetime.now(timezone.utc),
        }


def create_collector(
    backend: str = "null",
    namespace: str = "MessageQueue",
    region: str = "us-east-1",
) -> MetricCollector:
    """Factory: build a collector by backend name."""
    if backend == "null":
        return NullCollector()
    if backend == "memory":
        return InMemoryCollector()
    if backend == "log":
        return LogCollector()
    if backend == "cloudwatch":
        return CloudWatchCollector(namespace=namespace, region=region)
    raise ValueError(f"Unsupported metrics backend: {backend}")
