from enum import Enum


class ServiceStatus(str, Enum):
    """Service statuses"""
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class CollectorState(str, Enum):
    """Collector tick states"""
    IDLE = "idle"
    SAMPLING = "sampling"
    PUBLISHED = "published"


class ViewerState(str, Enum):
    """
    Server-side viewer session states.

    STALE is advisory: a session that has not been delivered anything within
    the liveness window still counts as connected until the transport closes.
    """
    CONNECTING = "connecting"
    OPEN = "open"
    STALE = "stale"
    CLOSED = "closed"


class ConnectionStatus(str, Enum):
    """Client-side stream connection statuses"""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CLOSED = "closed"


class CloseCode(int, Enum):
    """WebSocket close codes used by the stream"""
    NORMAL = 1000
    GOING_AWAY = 1001
    ABNORMAL = 1006
    INVALID_PAYLOAD = 1007
    POLICY_VIOLATION = 1008
    INTERNAL_ERROR = 1011
    LIVENESS_TIMEOUT = 4000

    @classmethod
    def is_intentional(cls, code: int | None) -> bool:
        """Check if a close code means the peer shut down on purpose"""
        return code in (cls.NORMAL, cls.GOING_AWAY)
