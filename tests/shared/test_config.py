# tests/shared/test_config.py
import pytest

from hostwatch.shared.core.config import (
    AggregatorConfig,
    CollectorConfig,
    Config,
    PublisherConfig,
    StreamClientConfig
)
from hostwatch.shared.core.exceptions import ConfigurationError, HostwatchError

ENV_VARS = (
    'COLLECTION_INTERVAL_MS', 'SAMPLER_TIMEOUT_S', 'DISK_MOUNT', 'PROCESS_LIMIT',
    'AGGREGATOR_URL', 'PUBLISH_TIMEOUT_S', 'AGGREGATOR_HOST', 'AGGREGATOR_PORT',
    'HISTORY_CAPACITY', 'VIEWER_LIVENESS_MS', 'VIEWER_SEND_TIMEOUT_S',
    'VIEWER_QUEUE_SIZE', 'EMBEDDED_COLLECTOR', 'API_CORS_ORIGINS', 'STREAM_URL',
    'RECONNECT_BACKOFF_MS', 'LOG_LEVEL', 'LOG_DIR', 'LOG_MAX_SIZE', 'LOG_BACKUP_COUNT'
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Empty environment, run from a directory without a .env file"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_defaults(clean_env):
    config = Config()

    assert config.collector.interval_ms == 2000
    assert config.collector.interval_s == 2.0
    assert config.collector.disk_mount == "/"
    assert config.collector.process_limit == 5
    assert config.publisher.metrics_endpoint == "http://127.0.0.1:3001/api/metrics"
    assert config.aggregator.port == 3001
    assert config.aggregator.history_capacity == 50
    assert config.aggregator.viewer_liveness_s == 15.0
    assert config.aggregator.embedded_collector is False
    assert config.aggregator.cors_origins == ["*"]
    assert config.stream.url == "ws://127.0.0.1:3001/ws"
    assert config.stream.reconnect_backoff_s == 3.0
    assert config.logging.level == "INFO"
    assert config.logging.max_size == 10 * 1024 * 1024
    assert config.logging.backup_count == 5


def test_environment_overrides(clean_env):
    clean_env.setenv('COLLECTION_INTERVAL_MS', '500')
    clean_env.setenv('AGGREGATOR_URL', 'https://metrics.example.com/')
    clean_env.setenv('HISTORY_CAPACITY', '10')
    clean_env.setenv('EMBEDDED_COLLECTOR', 'true')
    clean_env.setenv('API_CORS_ORIGINS', 'http://a.test,http://b.test')
    clean_env.setenv('RECONNECT_BACKOFF_MS', '1000')
    clean_env.setenv('LOG_MAX_SIZE', '2048')
    clean_env.setenv('LOG_BACKUP_COUNT', '2')

    config = Config()

    assert config.collector.interval_s == 0.5
    assert config.publisher.metrics_endpoint == "https://metrics.example.com/api/metrics"
    assert config.aggregator.history_capacity == 10
    assert config.aggregator.embedded_collector is True
    assert config.aggregator.cors_origins == ["http://a.test", "http://b.test"]
    assert config.stream.reconnect_backoff_s == 1.0
    assert config.logging.max_size == 2048
    assert config.logging.backup_count == 2


@pytest.mark.parametrize("name, value", [
    ('COLLECTION_INTERVAL_MS', 'soon'),
    ('COLLECTION_INTERVAL_MS', '0'),
    ('AGGREGATOR_PORT', '70000'),
    ('AGGREGATOR_URL', 'ftp://nowhere'),
    ('STREAM_URL', 'http://not-a-socket'),
    ('HISTORY_CAPACITY', '-1'),
    ('LOG_MAX_SIZE', 'big'),
    ('LOG_BACKUP_COUNT', '-2'),
])
def test_invalid_environment_raises(clean_env, name, value):
    clean_env.setenv(name, value)

    with pytest.raises(ConfigurationError):
        Config()


def test_section_validation():
    with pytest.raises(ConfigurationError):
        CollectorConfig(sampler_timeout_s=0)
    with pytest.raises(ConfigurationError):
        PublisherConfig(timeout_s=-1)
    with pytest.raises(ConfigurationError):
        AggregatorConfig(viewer_queue_size=0)
    with pytest.raises(ConfigurationError):
        StreamClientConfig(reconnect_backoff_ms=0)


def test_configuration_error_is_application_error():
    with pytest.raises(HostwatchError):
        CollectorConfig(process_limit=0)
