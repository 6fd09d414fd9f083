from typing import List, Optional
from dataclasses import dataclass, field
import os
from dotenv import load_dotenv

from .exceptions import ConfigurationError


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class CollectorConfig:
    """Metrics collection agent configuration"""
    interval_ms: int = 2000
    sampler_timeout_s: float = 5.0
    disk_mount: str = "/"
    process_limit: int = 5

    def __post_init__(self) -> None:
        """Validate collector configuration"""
        if self.interval_ms <= 0:
            raise ConfigurationError("Collection interval must be positive")
        if self.sampler_timeout_s <= 0:
            raise ConfigurationError("Sampler timeout must be positive")
        if not self.disk_mount:
            raise ConfigurationError("Disk mount must be specified")
        if self.process_limit <= 0:
            raise ConfigurationError("Process limit must be positive")

    @property
    def interval_s(self) -> float:
        return self.interval_ms / 1000


@dataclass
class PublisherConfig:
    """Snapshot publisher configuration"""
    server_url: str = "http://127.0.0.1:3001"
    timeout_s: float = 5.0

    def __post_init__(self) -> None:
        """Validate publisher configuration"""
        if not self.server_url:
            raise ConfigurationError("Aggregator URL must be specified")
        if not self.server_url.startswith(('http://', 'https://')):
            raise ConfigurationError(f"Aggregator URL must be http(s): '{self.server_url}'")
        if self.timeout_s <= 0:
            raise ConfigurationError("Publish timeout must be positive")

    @property
    def metrics_endpoint(self) -> str:
        """Get the ingest endpoint URL"""
        return f"{self.server_url.rstrip('/')}/api/metrics"


@dataclass
class AggregatorConfig:
    """Aggregation server configuration"""
    host: str = "0.0.0.0"
    port: int = 3001
    history_capacity: int = 50
    viewer_liveness_ms: int = 15000
    send_timeout_s: float = 5.0
    viewer_queue_size: int = 32
    embedded_collector: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    def __post_init__(self) -> None:
        """Validate aggregator configuration"""
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid port {self.port}")
        if self.history_capacity <= 0:
            raise ConfigurationError("History capacity must be positive")
        if self.viewer_liveness_ms <= 0:
            raise ConfigurationError("Viewer liveness window must be positive")
        if self.send_timeout_s <= 0:
            raise ConfigurationError("Viewer send timeout must be positive")
        if self.viewer_queue_size <= 0:
            raise ConfigurationError("Viewer queue size must be positive")

    @property
    def viewer_liveness_s(self) -> float:
        return self.viewer_liveness_ms / 1000


@dataclass
class StreamClientConfig:
    """Viewer-side stream client configuration"""
    url: str = "ws://127.0.0.1:3001/ws"
    reconnect_backoff_ms: int = 3000
    liveness_ms: int = 15000
    close_timeout_s: float = 2.0

    def __post_init__(self) -> None:
        """Validate stream client configuration"""
        if not self.url.startswith(('ws://', 'wss://')):
            raise ConfigurationError(f"Stream URL must be ws(s): '{self.url}'")
        if self.reconnect_backoff_ms <= 0:
            raise ConfigurationError("Reconnect backoff must be positive")
        if self.liveness_ms <= 0:
            raise ConfigurationError("Liveness window must be positive")
        if self.close_timeout_s <= 0:
            raise ConfigurationError("Close timeout must be positive")

    @property
    def reconnect_backoff_s(self) -> float:
        return self.reconnect_backoff_ms / 1000

    @property
    def liveness_s(self) -> float:
        return self.liveness_ms / 1000


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    dir_path: Optional[str] = None
    max_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    def __post_init__(self) -> None:
        """Validate logging configuration"""
        if self.max_size <= 0:
            raise ConfigurationError("Log file size must be positive")
        if self.backup_count < 0:
            raise ConfigurationError("Log backup count cannot be negative")


class Config:
    """Application configuration"""

    def __init__(self):
        load_dotenv()

        self.collector = self._init_collector_config()
        self.publisher = self._init_publisher_config()
        self.aggregator = self._init_aggregator_config()
        self.stream = self._init_stream_config()
        self.logging = self._init_log_config()

    def _init_collector_config(self) -> CollectorConfig:
        """Initialize collector configuration"""
        try:
            return CollectorConfig(
                interval_ms=int(os.getenv('COLLECTION_INTERVAL_MS', '2000')),
                sampler_timeout_s=float(os.getenv('SAMPLER_TIMEOUT_S', '5')),
                disk_mount=os.getenv('DISK_MOUNT', '/'),
                process_limit=int(os.getenv('PROCESS_LIMIT', '5'))
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid collector configuration: {e}")

    def _init_publisher_config(self) -> PublisherConfig:
        """Initialize publisher configuration"""
        try:
            return PublisherConfig(
                server_url=os.getenv('AGGREGATOR_URL', 'http://127.0.0.1:3001'),
                timeout_s=float(os.getenv('PUBLISH_TIMEOUT_S', '5'))
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid publisher configuration: {e}")

    def _init_aggregator_config(self) -> AggregatorConfig:
        """Initialize aggregation server configuration"""
        try:
            return AggregatorConfig(
                host=os.getenv('AGGREGATOR_HOST', '0.0.0.0'),
                port=int(os.getenv('AGGREGATOR_PORT', '3001')),
                history_capacity=int(os.getenv('HISTORY_CAPACITY', '50')),
                viewer_liveness_ms=int(os.getenv('VIEWER_LIVENESS_MS', '15000')),
                send_timeout_s=float(os.getenv('VIEWER_SEND_TIMEOUT_S', '5')),
                viewer_queue_size=int(os.getenv('VIEWER_QUEUE_SIZE', '32')),
                embedded_collector=_env_bool('EMBEDDED_COLLECTOR', 'false'),
                cors_origins=os.getenv('API_CORS_ORIGINS', '*').split(',')
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid aggregator configuration: {e}")

    def _init_stream_config(self) -> StreamClientConfig:
        """Initialize stream client configuration"""
        try:
            return StreamClientConfig(
                url=os.getenv('STREAM_URL', 'ws://127.0.0.1:3001/ws'),
                reconnect_backoff_ms=int(os.getenv('RECONNECT_BACKOFF_MS', '3000')),
                liveness_ms=int(os.getenv('VIEWER_LIVENESS_MS', '15000'))
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid stream client configuration: {e}")

    def _init_log_config(self) -> LogConfig:
        """Initialize logging configuration"""
        try:
            return LogConfig(
                level=os.getenv('LOG_LEVEL', 'INFO'),
                dir_path=os.getenv('LOG_DIR'),
                max_size=int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024))),
                backup_count=int(os.getenv('LOG_BACKUP_COUNT', '5'))
            )
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Invalid logging configuration: {e}")
