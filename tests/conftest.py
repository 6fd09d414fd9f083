import pytest

from hostwatch.shared.core.config import AggregatorConfig, CollectorConfig, StreamClientConfig
from hostwatch.shared.core.models import (
    DiskReading,
    MemoryReading,
    MetricsSnapshot,
    NetworkReading,
    ProcessInfo
)


@pytest.fixture
def make_snapshot():
    """Factory for realistic snapshots; keyword overrides replace fields"""
    def _make(**overrides) -> MetricsSnapshot:
        values = dict(
            cpu_percent=12.5,
            memory=MemoryReading(used_mb=2048, total_mb=8192, percent=25.0),
            disk=DiskReading(used_human="12G", total_human="120G", percent=10.0),
            network=NetworkReading(download_mbps=1.48, upload_mbps=0.0),
            temperature_c=48.0,
            temperature_available=True,
            uptime_seconds=86400.5,
            processes=[ProcessInfo(name="python3", cpu_percent=8.1, memory_percent=1.2, pid=4242)],
            captured_at=1_760_000_000_000
        )
        values.update(overrides)
        return MetricsSnapshot(**values)
    return _make


@pytest.fixture
def collector_config() -> CollectorConfig:
    return CollectorConfig(interval_ms=100, sampler_timeout_s=1.0)


@pytest.fixture
def aggregator_config() -> AggregatorConfig:
    return AggregatorConfig(history_capacity=5, send_timeout_s=0.2, viewer_queue_size=4)


@pytest.fixture
def stream_config() -> StreamClientConfig:
    return StreamClientConfig(
        url="ws://aggregator.test/ws",
        reconnect_backoff_ms=50,
        liveness_ms=15000,
        close_timeout_s=0.5
    )
