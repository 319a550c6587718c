"""
Message queue backends.

  - InMemoryAdapter  (reference broker, process memory)
  - SqsAdapter       (Amazon SQS, adaptive long polling)
  - AmqpAdapter      (AMQP 0-9-1 / RabbitMQ)
  - RedisAdapter     (Redis lists, BRPOPLPUSH reliable queue)

Vendor-backed adapters are imported from their own modules so that only the
client library of the configured backend has to be loaded:
  from mq.adapters.sqs import SqsAdapter, SqsEnvelope
"""
from mq.adapters.base import Adapter, ConsumerState, OnMessage, invoke_callback
from mq.adapters.memory import InMemoryAdapter, InMemoryEnvelope

__all__ = [
    "Adapter", "ConsumerState", "OnMessage", "invoke_callback",
    "InMemoryAdapter", "InMemoryEnvelope",
]
