import asyncio
import uuid
from typing import Any, Callable

from hostwatch.shared.core.enums import CloseCode, ViewerState
from hostwatch.shared.core.protocols import ViewerTransport
from hostwatch.shared.utils.logger import LoggerSetup
from hostwatch.shared.utils.time import get_current_timestamp

logger = LoggerSetup.setup(__name__)


class ViewerSession:
    """
    Server-side state of one connected viewer.

    Outbound messages go through a bounded queue drained by a dedicated writer
    task, so enqueueing never waits on the network. A full queue, a failed
    send or a send that exceeds the timeout closes this session only.

    States: CONNECTING → OPEN → CLOSED. OPEN reports STALE when nothing was
    delivered within the liveness window; that is advisory and never closes
    the session by itself.
    """

    def __init__(self,
                 transport: ViewerTransport,
                 liveness_s: float = 15.0,
                 send_timeout_s: float = 5.0,
                 queue_size: int = 32,
                 on_closed: Callable[['ViewerSession'], None] | None = None):

        self.id = uuid.uuid4().hex[:12]
        self.transport = transport
        self.connected_at = get_current_timestamp()
        self.last_delivered_at: int | None = None
        self.close_code: int | None = None
        self.close_reason: str | None = None

        self._liveness_ms = int(liveness_s * 1000)
        self._send_timeout_s = send_timeout_s
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._on_closed = on_closed
        self._state = ViewerState.CONNECTING
        self._writer: asyncio.Task | None = None
        self._closed = asyncio.Event()
        self._sent = 0

    @property
    def state(self) -> ViewerState:
        if self._state == ViewerState.OPEN and self.is_stale():
            return ViewerState.STALE
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ViewerState.OPEN

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def is_stale(self, now: int | None = None) -> bool:
        """Nothing delivered within the liveness window"""
        now = get_current_timestamp() if now is None else now
        reference = self.last_delivered_at or self.connected_at
        return now - reference > self._liveness_ms

    def open(self, backlog: str) -> None:
        """
        Complete the handshake.

        The backlog is queued before the session can receive broadcasts, so it
        is always the first message the viewer gets.
        """
        if self._state != ViewerState.CONNECTING:
            raise RuntimeError(f"Cannot open session {self.id} in state {self._state.value}")
        self._queue.put_nowait(backlog)
        self._state = ViewerState.OPEN
        self._writer = asyncio.create_task(self._write_loop(), name=f"viewer-{self.id}")

    def deliver(self, message: str) -> bool:
        """
        Queue a message without waiting.

        Returns:
            False when the session is not open or its queue is full
        """
        if self._state != ViewerState.OPEN:
            return False
        try:
            self._queue.put_nowait(message)
            return True
        except asyncio.QueueFull:
            return False

    async def _write_loop(self) -> None:
        """Drain the queue to the transport, one bounded send at a time"""
        while True:
            message = await self._queue.get()
            try:
                await asyncio.wait_for(self.transport.send_text(message), timeout=self._send_timeout_s)
            except TimeoutError:
                logger.warning(f"Viewer {self.id} send timed out after {self._send_timeout_s}s")
                await self.close(CloseCode.INTERNAL_ERROR, "send timeout")
                return
            except Exception as e:
                logger.warning(f"Viewer {self.id} send failed: {e}")
                await self.close(CloseCode.INTERNAL_ERROR, "send failed")
                return
            self.last_delivered_at = get_current_timestamp()
            self._sent += 1

    async def close(self, code: int = CloseCode.NORMAL, reason: str = "") -> None:
        """Tear the session down; idempotent"""
        if self._state == ViewerState.CLOSED:
            return
        self._state = ViewerState.CLOSED
        self.close_code = int(code)
        self.close_reason = reason

        if self._writer and self._writer is not asyncio.current_task():
            self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass

        try:
            await asyncio.wait_for(
                self.transport.close(code=int(code), reason=reason),
                timeout=self._send_timeout_s
            )
        except Exception as e:
            # Transport already gone or stuck; the session is closed either way
            logger.debug(f"Viewer {self.id} transport close failed: {e}")

        self._closed.set()
        logger.info(
            f"Client disconnected from stream. Session: {self.id}, "
            f"Code: {self.close_code}, Reason: {reason or 'No reason provided'}"
        )
        if self._on_closed:
            self._on_closed(self)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    def to_dict(self) -> dict[str, Any]:
        """Status view of the session"""
        return {
            'id': self.id,
            'state': self.state.value,
            'connected_at': self.connected_at,
            'last_delivered_at': self.last_delivered_at,
            'sent': self._sent,
            'pending': self.pending
        }
