"""
Tests for the metric schema and collectors.
"""
import asyncio
import time

import pytest
from botocore.exceptions import ClientError
from unittest.mock import MagicMock, patch

from mq.metrics import (
    SCHEMA_VERSION, CloudWatchCollector, InMemoryCollector, LogCollector,
    Metric, MetricKind, NullCollector, create_collector,
)
from mq.adapters.memory import InMemoryAdapter, InMemoryEnvelope
from mq.message_queue import MessageQueue


class TestSchema:
    def test_version(self):
        assert SCHEMA_VERSION == 1

    def test_catalogue_keys_unique(self):
        keys = [metric.key for metric in Metric]
        assert len(keys) == len(set(keys)) == 22

    def test_timings_are_suffixed_time(self):
        for metric in Metric:
            assert (metric.kind is MetricKind.TIMING) == metric.key.endswith("_time")

    def test_qualified(self):
        assert Metric.MESSAGE_PUBLISH_SUCCEED.qualified("mq.sqs.") == "mq.sqs.message.publish.succeed"
        assert Metric.CONNECTION_OPEN_TIME.qualified() == "connection.open_time"


class TestInMemoryCollector:
    def test_counts_and_timings(self):
        collector = InMemoryCollector()
        collector.increment("a")
        collector.increment("a", 2)
        collector.timing("t", 1.5)
        collector.flush()

        assert collector.count("a") == 3
        assert collector.count("missing") == 0
        assert collector.timings["t"] == [1.5]
        assert collector.flush_count == 1

        collector.reset()
        assert collector.count("a") == 0
        assert collector.flush_count == 0


class TestLogCollector:
    def test_flush_emits_buffered_samples(self):
        collector = LogCollector()
        collector.increment("mq.sqs.message.ack.succeed")
        collector.timing("mq.sqs.message.ack_time", 12.5)

        with patch("mq.metrics.logger") as logger:
            collector.flush()
            collector.flush()

        assert logger.info.call_count == 2
        logger.info.assert_any_call("mq_metric", kind="counter", name="mq.sqs.message.ack.succeed", value=1)
        logger.info.assert_any_call("mq_metric", kind="timing", name="mq.sqs.message.ack_time", value=12.5)


class TestCloudWatchCollector:
    def test_flush_sends_metric_data(self):
        client = MagicMock()
        collector = CloudWatchCollector(namespace="Test", client=client)
        collector.increment("mq.amqp.message.publish.succeed")
        collector.timing("mq.amqp.message.publish_time", 4.2)

        collector.flush()

        client.put_metric_data.assert_called_once()
        kwargs = client.put_metric_data.call_args.kwargs
        assert kwargs["Namespace"] == "Test"
        data = kwargs["MetricData"]
        assert [(d["MetricName"], d["Value"], d["Unit"]) for d in data] == [
            ("mq.amqp.message.publish.succeed", 1, "Count"),
            ("mq.amqp.message.publish_time", 4.2, "Milliseconds"),
        ]

    def test_flush_batches(self):
        client = MagicMock()
        collector = CloudWatchCollector(client=client)
        for _ in range(45):
            collector.increment("x")

        collector.flush()

        sizes = [len(c.kwargs["MetricData"]) for c in client.put_metric_data.call_args_list]
        assert sizes == [20, 20, 5]

    def test_empty_flush_is_silent(self):
        client = MagicMock()
        CloudWatchCollector(client=client).flush()
        client.put_metric_data.assert_not_called()

    def test_publish_error_is_logged(self):
        client = MagicMock()
        client.put_metric_data.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "PutMetricData",
        )
        collector = CloudWatchCollector(client=client)
        collector.increment("x")

        with patch("mq.metrics.logger") as logger:
            collector.flush()

        logger.error.assert_called_once()
        assert logger.error.call_args.args[0] == "metrics_publish_error"

    @pytest.mark.asyncio
    async def test_flush_keeps_event_loop_responsive(self):
        client = MagicMock()
        client.put_metric_data.side_effect = lambda **kwargs: time.sleep(0.2)
        collector = CloudWatchCollector(client=client)
        mq = MessageQueue(InMemoryAdapter()).set_metric_collector(collector, "mq.in_memory.")
        ticks = []

        async def ticker():
            while True:
                ticks.append(time.monotonic())
                await asyncio.sleep(0.01)

        task = asyncio.create_task(ticker())
        await asyncio.sleep(0)
        await mq.connect()
        for _ in range(3):
            await mq.publish(InMemoryEnvelope("jobs"))
        await mq.close()
        task.cancel()

        # close() waits for the sends handed to worker threads
        assert client.put_metric_data.call_count == 6
        assert collector.pending_sends == 0
        gaps = [later - earlier for earlier, later in zip(ticks, ticks[1:])]
        assert max(gaps) < 0.1

    @pytest.mark.asyncio
    async def test_publish_error_in_worker_thread_is_logged(self):
        client = MagicMock()
        client.put_metric_data.side_effect = ClientError(
            {"Error": {"Code": "Throttling", "Message": "Rate exceeded"}}, "PutMetricData",
        )
        collector = CloudWatchCollector(client=client)
        collector.increment("x")

        with patch("mq.metrics.logger") as logger:
            collector.flush()
            await collector.drain()

        logger.error.assert_called_once()


class TestCreateCollector:
    @pytest.mark.parametrize("backend,cls", [
        ("null", NullCollector),
        ("memory", InMemoryCollector),
        ("log", LogCollector),
        ("cloudwatch", CloudWatchCollector),
    ])
    def test_backends(self, backend, cls):
        assert isinstance(create_collector(backend), cls)

    def test_cloudwatch_settings(self):
        collector = create_collector("cloudwatch", namespace="Jobs", region="eu-west-1")
        assert collector.namespace == "Jobs"
        assert collector.region == "eu-west-1"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unsupported metrics backend"):
            create_collector("statsd")
