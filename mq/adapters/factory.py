"""
Adapter / MessageQueue factory — builds the configured backend.

  from mq.adapters.factory import create_message_queue
  mq = create_message_queue(get_settings())
  await mq.connect()
"""
from __future__ import annotations

import structlog
from typing import Optional

from config.settings import QueueConfig, Settings, get_settings
from mq.adapters.base import Adapter
from mq.message_queue import MessageQueue
from mq.metrics import create_collector

logger = structlog.get_logger()

BACKENDS = ("memory", "sqs", "amqp", "redis")


def create_adapter(queue_config: Optional[QueueConfig] = None) -> Adapter:
    """Factory: create the adapter named by queue_config.backend."""
    config = queue_config or QueueConfig()
    backend = config.backend

    if backend == "memory":
        from mq.adapters.memory import InMemoryAdapter
        return InMemoryAdapter()

    if backend == "sqs":
        from mq.adapters.sqs import SqsAdapter
        return SqsAdapter(
            region_name=config.sqs_region or None,
            aws_access_key_id=config.sqs_access_key_id or None,
            aws_secret_access_key=config.sqs_secret_access_key or None,
            endpoint_url=config.sqs_endpoint_url or None,
        )

    if backend == "amqp":
        from mq.adapters.amqp import AmqpAdapter, AmqpConnectionConfig
        return AmqpAdapter(
            AmqpConnectionConfig(
                url=config.amqp_url,
                connection_timeout=config.amqp_connection_timeout,
                heartbeat=config.amqp_heartbeat,
            ),
            consumer_id=config.amqp_consumer_id,
        )

    if backend == "redis":
        from mq.adapters.redis import RedisAdapter
        return RedisAdapter(url=config.redis_url)

    raise ValueError(f"Unsupported queue backend: {backend}. Expected one of {', '.join(BACKENDS)}")


# ── Singleton ─────────────────────────────────────────────────

_instance: Optional[MessageQueue] = None


def create_message_queue(settings: Optional[Settings] = None) -> MessageQueue:
    """Factory: create the MessageQueue singleton with its adapter and collector."""
    global _instance
    if _instance:
        return _instance

    settings = settings or get_settings()
    adapter = create_adapter(settings.queue)
    collector = create_collector(
        settings.metrics.backend,
        namespace=settings.metrics.namespace,
        region=settings.metrics.region,
    )

    _instance = MessageQueue(adapter)
    _instance.set_metric_collector(collector, settings.queue.metric_prefix or adapter.metric_prefix)

    logger.info("message_queue_created",
                backend=settings.queue.backend,
                metrics=settings.metrics.backend)
    return _instance


def get_message_queue() -> MessageQueue:
    """Return the singleton queue instance."""
    global _instance
    if _instance is None:
        _instance = create_message_queue()
    return _instance


def reset_message_queue() -> None:
    """Reset singleton (for testing)."""
    global _instance
    _instance = None
