"""
Tests for configuration loading and the adapter / queue factory.
"""
import pytest

from config.settings import LoggingConfig, QueueConfig, Settings, MetricsConfig, load_settings
from mq.adapters.amqp import AmqpAdapter
from mq.adapters.factory import create_adapter, create_message_queue, get_message_queue, reset_message_queue
from mq.adapters.memory import InMemoryAdapter
from mq.adapters.redis import RedisAdapter
from mq.adapters.sqs import SqsAdapter
from mq.errors import ValidationError
from mq.metrics import LogCollector, NullCollector


# ──────────────────────────────────────────────────────────────
#  Settings
# ──────────────────────────────────────────────────────────────

class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings.queue.backend == "memory"
        assert settings.metrics.backend == "null"
        assert settings.logging.level == "INFO"

    def test_yaml_with_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("MQ_TEST_REDIS", "redis://cache:6380/2")
        path = tmp_path / "settings.yaml"
        path.write_text(
            "app_name: worker\n"
            "queue:\n"
            "  backend: redis\n"
            "  redis_url: ${MQ_TEST_REDIS}\n"
            "  amqp_heartbeat: '30'\n"
            "metrics:\n"
            "  backend: log\n"
            "logging:\n"
            "  level: debug\n"
            "  json: false\n"
        )

        settings = load_settings(str(path))

        assert settings.app_name == "worker"
        assert settings.queue.backend == "redis"
        assert settings.queue.redis_url == "redis://cache:6380/2"
        assert settings.queue.amqp_heartbeat == 30
        assert settings.queue.sqs_region == "us-east-1"
        assert settings.metrics.backend == "log"
        assert settings.logging == LoggingConfig(level="DEBUG", json=False)

    def test_unknown_env_var_left_untouched(self, tmp_path, monkeypatch):
        monkeypatch.delenv("MQ_TEST_UNSET", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text("queue:\n  redis_url: ${MQ_TEST_UNSET}\n")

        assert load_settings(str(path)).queue.redis_url == "${MQ_TEST_UNSET}"

    def test_config_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("queue:\n  backend: sqs\n")
        monkeypatch.setenv("MQ_CONFIG", str(path))

        assert load_settings().queue.backend == "sqs"


# ──────────────────────────────────────────────────────────────
#  Adapter factory
# ──────────────────────────────────────────────────────────────

class TestCreateAdapter:
    def test_default_is_memory(self):
        assert isinstance(create_adapter(), InMemoryAdapter)

    def test_sqs(self):
        adapter = create_adapter(QueueConfig(backend="sqs", sqs_region="eu-west-1",
                                             sqs_endpoint_url="http://localhost:4566"))
        assert isinstance(adapter, SqsAdapter)
        assert adapter.metric_prefix == "mq.sqs."

    def test_amqp(self):
        adapter = create_adapter(QueueConfig(backend="amqp", amqp_url="amqps://broker/"))
        assert isinstance(adapter, AmqpAdapter)

    def test_amqp_bad_url(self):
        with pytest.raises(ValidationError):
            create_adapter(QueueConfig(backend="amqp", amqp_url="http://broker/"))

    def test_redis(self):
        assert isinstance(create_adapter(QueueConfig(backend="redis")), RedisAdapter)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unsupported queue backend: kafka"):
            create_adapter(QueueConfig(backend="kafka"))


# ──────────────────────────────────────────────────────────────
#  Queue factory
# ──────────────────────────────────────────────────────────────

class TestQueueFactory:
    def setup_method(self):
        reset_message_queue()

    def teardown_method(self):
        reset_message_queue()

    def test_memory_queue_default(self):
        mq = create_message_queue(Settings())
        assert isinstance(mq.adapter, InMemoryAdapter)
        assert isinstance(mq.metric_collector, NullCollector)

    def test_collector_and_prefix_from_settings(self):
        settings = Settings(
            queue=QueueConfig(backend="redis", metric_prefix="jobs."),
            metrics=MetricsConfig(backend="log"),
        )
        mq = create_message_queue(settings)
        assert isinstance(mq.adapter, RedisAdapter)
        assert isinstance(mq.metric_collector, LogCollector)
        assert mq._prefix == "jobs."

    def test_singleton(self):
        first = create_message_queue(Settings())
        assert create_message_queue(Settings(queue=QueueConfig(backend="redis"))) is first
        assert get_message_queue() is first

    def test_reset(self):
        first = create_message_queue(Settings())
        reset_message_queue()
        assert create_message_queue(Settings()) is not first
