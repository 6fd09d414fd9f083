from dataclasses import dataclass
from prometheus_client import Counter, Gauge, CollectorRegistry

@dataclass
class AggregatorMetrics:
    """
    Prometheus metrics definitions for the aggregation server.

    Metrics:
    - Ingested snapshots and broadcast fan-out
    - Connected viewers and closures by reason
    - Latest host readings
    """

    def __init__(self):
        self.registry = CollectorRegistry()

        # Pipeline metrics
        self.snapshots_received = Counter(
            'hostwatch_snapshots_received_total',
            'Total number of snapshots ingested',
            registry=self.registry
        )

        self.messages_enqueued = Counter(
            'hostwatch_messages_enqueued_total',
            'Total number of stream messages queued for viewers',
            ['type'],
            registry=self.registry
        )

        self.history_size = Gauge(
            'hostwatch_history_size',
            'Number of snapshots held in the history ring',
            registry=self.registry
        )

        # Viewer metrics
        self.connected_viewers = Gauge(
            'hostwatch_connected_viewers',
            'Number of open viewer sessions',
            registry=self.registry
        )

        self.viewer_closures = Counter(
            'hostwatch_viewer_closures_total',
            'Total number of viewer sessions closed, by reason',
            ['reason'],
            registry=self.registry
        )

        # Host metrics from the latest snapshot
        self.host_cpu_usage = Gauge(
            'hostwatch_host_cpu_usage_percent',
            'Host CPU usage percentage',
            registry=self.registry
        )

        self.host_memory_usage = Gauge(
            'hostwatch_host_memory_usage_percent',
            'Host memory usage percentage',
            registry=self.registry
        )

        self.host_disk_usage = Gauge(
            'hostwatch_host_disk_usage_percent',
            'Host disk usage percentage',
            registry=self.registry
        )

        self.host_network_download = Gauge(
            'hostwatch_host_network_download_mbps',
            'Host download throughput in MiB/s',
            registry=self.registry
        )

        self.host_network_upload = Gauge(
            'hostwatch_host_network_upload_mbps',
            'Host upload throughput in MiB/s',
            registry=self.registry
        )

        self.host_temperature = Gauge(
            'hostwatch_host_temperature_celsius',
            'Host CPU temperature in Celsius (0 when unavailable)',
            registry=self.registry
        )
