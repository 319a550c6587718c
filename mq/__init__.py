"""
Message Queue — one envelope model, one adapter contract, one instrumented
orchestrator over heterogeneous brokers.

Quick start:
  from mq import MessageQueue, InMemoryAdapter, InMemoryEnvelope
  mq = MessageQueue(InMemoryAdapter())
  await mq.connect()
  await mq.publish(InMemoryEnvelope("jobs").set_attribute("index", 0))
"""
from mq.errors import MessageQueueError, TransportError, PreconditionError, ValidationError
from mq.envelope import AttributeType, Envelope
from mq.metrics import (
    SCHEMA_VERSION, Metric, MetricKind, MetricCollector,
    NullCollector, InMemoryCollector, LogCollector, CloudWatchCollector,
    create_collector,
)
from mq.adapters.base import Adapter, ConsumerState
from mq.adapters.memory import InMemoryAdapter, InMemoryEnvelope
from mq.message_queue import ConnectionState, MessageQueue

__all__ = [
    # Errors
    "MessageQueueError", "TransportError", "PreconditionError", "ValidationError",
    # Envelope
    "AttributeType", "Envelope",
    # Metrics
    "SCHEMA_VERSION", "Metric", "MetricKind", "MetricCollector",
    "NullCollector", "InMemoryCollector", "LogCollector", "CloudWatchCollector",
    "create_collector",
    # Adapters
    "Adapter", "ConsumerState", "InMemoryAdapter", "InMemoryEnvelope",
    # Orchestrator
    "ConnectionState", "MessageQueue",
]
