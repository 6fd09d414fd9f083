import asyncio
from typing import Awaitable, Callable

import aiohttp

from hostwatch.shared.core.config import PublisherConfig
from hostwatch.shared.core.exceptions import PublishError
from hostwatch.shared.core.models import MetricsSnapshot
from hostwatch.shared.utils.logger import LoggerSetup


class HttpPublisher:
    """
    Ships snapshots to the aggregation server with one HTTP POST per tick.

    Features:
    - Lazily created aiohttp session
    - Bounded request timeout
    - Failures are logged and swallowed; no retry queue
    """

    def __init__(self, config: PublisherConfig):
        self._config = config
        self._session: aiohttp.ClientSession | None = None
        self._session_lock = asyncio.Lock()
        self._sent = 0
        self._failed = 0
        self.logger = LoggerSetup.setup(__class__.__name__)

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def failed_count(self) -> int:
        return self._failed

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session"""
        if self._session is None or self._session.closed:
            async with self._session_lock:
                if self._session is None or self._session.closed:
                    self._session = aiohttp.ClientSession(
                        timeout=aiohttp.ClientTimeout(total=self._config.timeout_s),
                        headers={'Content-Type': 'application/json'}
                    )
        return self._session

    async def publish(self, snapshot: MetricsSnapshot) -> bool:
        """POST one snapshot; any 2xx counts as delivered"""
        try:
            session = await self._get_session()
            async with session.post(
                self._config.metrics_endpoint,
                data=snapshot.model_dump_json(by_alias=True)
            ) as response:
                if not 200 <= response.status < 300:
                    raise PublishError(f"HTTP {response.status}")

            self._sent += 1
            self.logger.info(f"Metrics sent - {snapshot.summary()}")
            return True

        except asyncio.TimeoutError:
            self._failed += 1
            self.logger.error(
                f"Error sending metrics: no response within {self._config.timeout_s}s"
            )
            return False
        except (PublishError, aiohttp.ClientError) as e:
            self._failed += 1
            self.logger.error(f"Error sending metrics: {e}")
            return False

    async def cleanup(self) -> None:
        """Cleanup resources"""
        if self._session:
            async with self._session_lock:
                await self._session.close()
                self._session = None


class LocalPublisher:
    """Hands snapshots to an in-process consumer (embedded collector mode)"""

    def __init__(self, sink: Callable[[MetricsSnapshot], Awaitable[None]]):
        self._sink = sink
        self.logger = LoggerSetup.setup(__class__.__name__)

    async def publish(self, snapshot: MetricsSnapshot) -> bool:
        try:
            await self._sink(snapshot)
            return True
        except Exception as e:
            self.logger.error(f"Error handing snapshot to local sink: {e}")
            return False

    async def cleanup(self) -> None:
        pass


class DryRunPublisher:
    """Logs payloads instead of sending them"""

    def __init__(self):
        self.logger = LoggerSetup.setup(__class__.__name__)

    async def publish(self, snapshot: MetricsSnapshot) -> bool:
        self.logger.info(f"Dry run payload: {snapshot.model_dump_json(by_alias=True)}")
        return True

    async def cleanup(self) -> None:
        pass
