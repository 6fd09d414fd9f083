import asyncio
import json
from typing import Any, Callable, Coroutine, List

from pydantic import ValidationError
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed

from hostwatch.shared.core.config import StreamClientConfig
from hostwatch.shared.core.enums import CloseCode, ConnectionStatus
from hostwatch.shared.core.models import MetricsSnapshot
from hostwatch.shared.messaging.schemas import HistoryMessage, MetricsMessage, decode_message
from hostwatch.shared.utils.logger import LoggerSetup
from hostwatch.shared.utils.time import monotonic


MetricsHandler = Callable[[MetricsSnapshot], Coroutine[Any, Any, None]]
HistoryHandler = Callable[[List[MetricsSnapshot]], Coroutine[Any, Any, None]]
StatusHandler = Callable[[ConnectionStatus], None]


class MetricsStreamClient:
    """
    Reconnecting consumer of the aggregator's viewer stream.

    Features:
    - Fixed-backoff reconnection after any closure not caused by stop()
    - At most one reconnection scheduled or in flight at a time
    - Liveness watchdog: a connection that delivers no metrics within the
      window is force-closed and replaced
    - Unknown message types and malformed frames are ignored
    """

    def __init__(self,
                 config: StreamClientConfig,
                 on_metrics: MetricsHandler | None = None,
                 on_history: HistoryHandler | None = None,
                 on_status: StatusHandler | None = None,
                 connector: Callable[..., Any] = connect):

        self._config = config
        self._on_metrics = on_metrics
        self._on_history = on_history
        self._on_status = on_status
        self._connector = connector

        self._ws: Any = None
        self._status = ConnectionStatus.DISCONNECTED
        self._stopped = True
        self._connect_task: asyncio.Task | None = None
        self._reader: asyncio.Task | None = None
        self._watchdog: asyncio.Task | None = None
        self._last_metrics_at = monotonic()
        self._reconnects = 0

        self.logger = LoggerSetup.setup(__class__.__name__)

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def reconnect_pending(self) -> bool:
        """A reconnection is scheduled or in flight"""
        return self._connect_task is not None and not self._connect_task.done()

    @property
    def reconnect_count(self) -> int:
        return self._reconnects

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status:
            return
        self._status = status
        self.logger.debug(f"Stream status: {status.value}")
        if self._on_status:
            try:
                self._on_status(status)
            except Exception as e:
                self.logger.error(f"Error in status handler: {e}")


    async def start(self) -> None:
        """Open the first connection; failures fall into the reconnect cycle"""
        if not self._stopped:
            return
        self._stopped = False
        self._connect_task = asyncio.create_task(self._connect())


    async def stop(self) -> None:
        """Cancel every timer, close the transport with 1000 and stay closed"""
        self._stopped = True
        current = asyncio.current_task()
        tasks = [t for t in (self._connect_task, self._reader, self._watchdog)
                 if t and t is not current and not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._connect_task = self._reader = self._watchdog = None

        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_transport(ws, CloseCode.NORMAL, "client stop")

        self._set_status(ConnectionStatus.CLOSED)
        self.logger.info("Stream client stopped")


    def schedule_reconnect(self) -> bool:
        """
        Schedule one reconnection after the fixed backoff.

        Returns:
            bool: False when stopped or when a reconnection is already
            scheduled or in flight
        """
        if self._stopped or self.reconnect_pending:
            return False
        self._reconnects += 1
        self.logger.info(f"Reconnecting in {self._config.reconnect_backoff_s}s")
        self._connect_task = asyncio.create_task(
            self._connect(delay=self._config.reconnect_backoff_s)
        )
        return True


    async def _connect(self, delay: float = 0.0) -> None:
        """Single connection attempt"""
        if delay:
            await asyncio.sleep(delay)

        self._set_status(ConnectionStatus.CONNECTING)
        try:
            ws = await self._connector(
                self._config.url,
                close_timeout=self._config.close_timeout_s
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.warning(f"Connection to {self._config.url} failed: {e}")
            self._set_status(ConnectionStatus.DISCONNECTED)
            self._connect_task = None
            self.schedule_reconnect()
            return

        if self._stopped:
            await self._close_transport(ws, CloseCode.NORMAL, "client stop")
            return

        self._ws = ws
        self._last_metrics_at = monotonic()
        self._reader = asyncio.create_task(self._read_loop(ws))
        self._watchdog = asyncio.create_task(self._watch_liveness(ws))
        self._set_status(ConnectionStatus.CONNECTED)
        self.logger.info(f"Connected to {self._config.url}")


    async def _read_loop(self, ws: Any) -> None:
        """Receive frames until the connection closes"""
        try:
            while True:
                raw = await ws.recv()
                await self._handle_message(raw)
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd else CloseCode.ABNORMAL
            self._connection_lost(ws, code)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.logger.error(f"Stream read error: {e}")
            self._connection_lost(ws, CloseCode.ABNORMAL)


    async def _watch_liveness(self, ws: Any) -> None:
        """Force a reconnect when no metrics arrive within the liveness window"""
        while True:
            remaining = self._config.liveness_s - (monotonic() - self._last_metrics_at)
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue

            self.logger.warning(
                f"No metrics received for {self._config.liveness_ms}ms, forcing reconnect"
            )
            self._connection_lost(ws, CloseCode.LIVENESS_TIMEOUT)
            await self._close_transport(ws, CloseCode.LIVENESS_TIMEOUT, "liveness timeout")
            return


    def _connection_lost(self, ws: Any, code: int) -> None:
        """Detach a dead connection and start the reconnect cycle"""
        if ws is not self._ws:
            return
        self._ws = None

        current = asyncio.current_task()
        for task in (self._reader, self._watchdog):
            if task and task is not current:
                task.cancel()
        self._reader = self._watchdog = None

        if self._stopped:
            return

        if CloseCode.is_intentional(code):
            self.logger.info(f"Stream closed by server (code {code})")
        else:
            self.logger.warning(f"Stream closed abnormally (code {code})")
        self._set_status(ConnectionStatus.DISCONNECTED)
        self.schedule_reconnect()


    async def _close_transport(self, ws: Any, code: int, reason: str) -> None:
        try:
            await asyncio.wait_for(
                ws.close(code=int(code), reason=reason),
                timeout=self._config.close_timeout_s
            )
        except Exception as e:
            self.logger.debug(f"Error closing stream transport: {e}")


    async def _handle_message(self, raw: str | bytes) -> None:
        """Decode one frame and dispatch it to the matching handler"""
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError("frame is not a JSON object")
            message = decode_message(payload)
        except (ValueError, ValidationError) as e:
            self.logger.warning(f"Ignoring malformed frame: {e}")
            return

        if message is None:
            self.logger.debug(f"Ignoring message of unknown type {payload.get('type')!r}")
            return

        try:
            if isinstance(message, MetricsMessage):
                self._last_metrics_at = monotonic()
                if self._on_metrics:
                    await self._on_metrics(message.data)
            elif isinstance(message, HistoryMessage):
                if self._on_history:
                    await self._on_history(message.data)
        except Exception as e:
            self.logger.error(f"Error processing message: {e}")
