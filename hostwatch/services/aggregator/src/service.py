import asyncio
import json
from typing import Any, Dict, List

from prometheus_client import generate_latest

from hostwatch.shared.core.config import AggregatorConfig
from hostwatch.shared.core.enums import CloseCode, ServiceStatus, ViewerState
from hostwatch.shared.core.exceptions import ServiceError
from hostwatch.shared.core.models import MetricsSnapshot
from hostwatch.shared.core.protocols import Service, ViewerTransport
from hostwatch.shared.messaging.schemas import MessageType, encode_history, encode_metrics
from hostwatch.shared.utils.logger import LoggerSetup
from hostwatch.shared.utils.time import format_duration, monotonic
from .aggregator_metrics import AggregatorMetrics
from .history import HistoryRing
from .sessions import ViewerSession


class AggregationService(Service):
    """
    Receives snapshots and fans them out to connected viewers.

    Features:
    - Latest snapshot plus bounded history ring
    - Non-blocking broadcast through per-viewer queues
    - Slow or failing viewers are closed without affecting others
    - Prometheus metrics exposure
    """

    def __init__(self, config: AggregatorConfig):
        self._config = config
        self._latest: MetricsSnapshot | None = None
        self._history = HistoryRing(config.history_capacity)
        self._sessions: Dict[str, ViewerSession] = {}
        self._closing: set[asyncio.Task] = set()
        self.prometheus_metrics = AggregatorMetrics()

        # Service state
        self._status = ServiceStatus.STOPPED
        self._start_time = monotonic()
        self._ingested = 0

        self.logger = LoggerSetup.setup(__class__.__name__)

    @property
    def status(self) -> ServiceStatus:
        return self._status

    @property
    def session_count(self) -> int:
        return len(self._sessions)


    async def start(self) -> None:
        """Start aggregation service"""
        self._status = ServiceStatus.STARTING
        self._start_time = monotonic()
        self._status = ServiceStatus.RUNNING
        self.logger.info(
            f"Aggregation service started (history={self._history.capacity}, "
            f"liveness={self._config.viewer_liveness_ms}ms)"
        )


    async def stop(self) -> None:
        """Close every viewer session with a normal closure"""
        try:
            self._status = ServiceStatus.STOPPING
            self.logger.info("Stopping aggregation service")

            sessions = list(self._sessions.values())
            await asyncio.gather(
                *(s.close(CloseCode.NORMAL, "server shutdown") for s in sessions),
                return_exceptions=True
            )
            if self._closing:
                await asyncio.gather(*self._closing, return_exceptions=True)

            self._status = ServiceStatus.STOPPED
            self.logger.info("Aggregation service stopped successfully")

        except Exception as e:
            self._status = ServiceStatus.ERROR
            self.logger.error(f"Error stopping aggregation service: {e}")
            raise


    async def ingest(self, snapshot: MetricsSnapshot) -> None:
        """Store a snapshot as latest, append it to history and broadcast it"""
        self._latest = snapshot
        self._history.append(snapshot)
        self._ingested += 1
        self.broadcast(encode_metrics(snapshot))
        self._update_metrics(snapshot)


    def broadcast(self, message: str) -> int:
        """
        Queue a message for every open session without waiting on any of them.

        Returns:
            int: Number of sessions the message was queued for
        """
        delivered = 0
        for session in list(self._sessions.values()):
            if session.deliver(message):
                delivered += 1
            elif session.is_open:
                self.logger.warning(f"Viewer {session.id} queue full, closing slow viewer")
                self._close_in_background(session, CloseCode.POLICY_VIOLATION, "viewer too slow")

        self.prometheus_metrics.messages_enqueued.labels(type=MessageType.METRICS.value).inc(delivered)
        return delivered


    def open_session(self, transport: ViewerTransport) -> ViewerSession:
        """
        Register an accepted connection and queue its history backlog.

        Registration and backlog capture happen without yielding to the loop,
        so no ingest can fall between the backlog and the first broadcast.
        """
        if self._status != ServiceStatus.RUNNING:
            raise ServiceError(f"Cannot accept viewers while {self._status.value}")
        session = ViewerSession(
            transport,
            liveness_s=self._config.viewer_liveness_s,
            send_timeout_s=self._config.send_timeout_s,
            queue_size=self._config.viewer_queue_size,
            on_closed=self._on_session_closed
        )
        session.open(encode_history(self._history.snapshot()))
        self._sessions[session.id] = session

        self.prometheus_metrics.messages_enqueued.labels(type=MessageType.HISTORY.value).inc()
        self.prometheus_metrics.connected_viewers.set(len(self._sessions))
        self.logger.info(f"Client connected to stream. Session: {session.id}")
        return session


    async def handle_inbound(self, session: ViewerSession, text: str) -> None:
        """
        Process a frame sent by a viewer.

        Viewers have nothing to say; well-formed JSON is ignored and anything
        else closes that session with 1007.
        """
        try:
            json.loads(text)
        except (TypeError, ValueError):
            self.logger.warning(f"Malformed frame from viewer {session.id}, closing")
            await session.close(CloseCode.INVALID_PAYLOAD, "malformed frame")


    def _close_in_background(self, session: ViewerSession, code: int, reason: str) -> None:
        task = asyncio.create_task(session.close(code, reason))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)


    def _on_session_closed(self, session: ViewerSession) -> None:
        if self._sessions.pop(session.id, None) is None:
            return
        self.prometheus_metrics.connected_viewers.set(len(self._sessions))
        self.prometheus_metrics.viewer_closures.labels(
            reason=session.close_reason or "disconnect"
        ).inc()


    def _update_metrics(self, snapshot: MetricsSnapshot) -> None:
        """Mirror the latest snapshot into Prometheus gauges"""
        m = self.prometheus_metrics
        m.snapshots_received.inc()
        m.history_size.set(len(self._history))
        m.host_cpu_usage.set(snapshot.cpu_percent)
        m.host_memory_usage.set(snapshot.memory.percent)
        m.host_disk_usage.set(snapshot.disk.percent)
        m.host_network_download.set(snapshot.network.download_mbps)
        m.host_network_upload.set(snapshot.network.upload_mbps)
        m.host_temperature.set(snapshot.temperature_c)


    def latest_snapshot(self) -> MetricsSnapshot:
        """Latest snapshot, or an all-default one before the first ingest"""
        return self._latest if self._latest is not None else MetricsSnapshot.empty()


    def history(self) -> List[MetricsSnapshot]:
        return self._history.snapshot()


    def stale_sessions(self) -> List[ViewerSession]:
        return [s for s in self._sessions.values() if s.state == ViewerState.STALE]


    def get_sessions(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in self._sessions.values()]


    async def get_prometheus_metrics(self) -> bytes:
        """Get metrics in Prometheus format"""
        return generate_latest(self.prometheus_metrics.registry)


    def get_service_status(self) -> str:
        """
        Generate detailed service status report.

        Returns:
            str: Multi-line status report with history and viewer details
        """
        status_lines = [
            "Aggregation Service Status:",
            f"Status: {self._status.value}",
            f"Uptime: {format_duration(monotonic() - self._start_time)}",
            "",
            "Pipeline:",
            f"  Snapshots Ingested: {self._ingested}",
            f"  History: {len(self._history)}/{self._history.capacity}",
        ]

        if self._latest:
            status_lines.append(f"  Latest: {self._latest.summary()}")

        status_lines.extend([
            "",
            f"Viewers ({len(self._sessions)}):"
        ])
        for session in self._sessions.values():
            status_lines.append(
                f"  {session.id}: {session.state.value}, "
                f"sent={session.sent_count}, pending={session.pending}"
            )

        return "\n".join(status_lines)
