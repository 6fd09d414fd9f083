from typing import Protocol

from .models import MetricsSnapshot


class Service(Protocol):
    """
    Base class for all services.

    Features:
    - Service lifecycle (start/stop)
    - Status reporting
    """
    async def start(self) -> None:
        """
        Start the service.

        Each service must implement its startup logic:
        - Initialize resources
        - Start background tasks
        """
        ...

    async def stop(self) -> None:
        """
        Stop the service.

        Each service must implement its cleanup logic:
        - Cancel background tasks
        - Close connections
        - Release resources
        """
        ...

    def get_service_status(self) -> str:
        """
        Generate detailed service status report.

        Returns:
            str: Multi-line status report
        """
        ...


class SnapshotPublisher(Protocol):
    """Destination for snapshots produced by a collector"""

    async def publish(self, snapshot: MetricsSnapshot) -> bool:
        """
        Deliver one snapshot.

        Must not raise: delivery failures are logged and reported as False.
        """
        ...

    async def cleanup(self) -> None:
        """Release transport resources"""
        ...


class ViewerTransport(Protocol):
    """
    Server-side handle of one viewer connection.

    Matches the subset of starlette's WebSocket used for sending, so a
    FastAPI WebSocket can be passed in directly.
    """

    async def send_text(self, data: str) -> None:
        ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        ...
