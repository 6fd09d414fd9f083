import asyncio

from hostwatch.shared.core.config import CollectorConfig
from hostwatch.shared.core.enums import CollectorState, ServiceStatus
from hostwatch.shared.core.models import MetricsSnapshot
from hostwatch.shared.core.protocols import SnapshotPublisher
from hostwatch.shared.utils.logger import LoggerSetup
from hostwatch.shared.utils.time import get_current_timestamp, format_duration, monotonic
from .samplers import SamplerSet


class MetricsCollector:
    """
    Periodic sample-and-publish loop.

    Features:
    - Fixed wall-clock cadence on a timer task
    - Concurrent sampler fan-out within a tick
    - At most one tick in flight; timer fires during a running tick are skipped
    - Assembly and publish failures never stop the loop
    """

    def __init__(self,
                 samplers: SamplerSet,
                 publisher: SnapshotPublisher,
                 config: CollectorConfig):

        self._samplers = samplers
        self._publisher = publisher
        self._config = config

        # Service state
        self._status = ServiceStatus.STOPPED
        self._state = CollectorState.IDLE
        self._running = False
        self._timer_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self._start_time = monotonic()

        # Tick accounting
        self._ticks = 0
        self._published = 0
        self._skipped_ticks = 0
        self._failed_ticks = 0
        self._last_captured_at = 0
        self._last_snapshot: MetricsSnapshot | None = None
        self._last_error: Exception | None = None

        self.logger = LoggerSetup.setup(__class__.__name__)

    @property
    def state(self) -> CollectorState:
        return self._state

    @property
    def status(self) -> ServiceStatus:
        return self._status

    @property
    def last_snapshot(self) -> MetricsSnapshot | None:
        return self._last_snapshot

    @property
    def skipped_ticks(self) -> int:
        return self._skipped_ticks

    @property
    def tick_in_flight(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()


    async def start(self) -> None:
        """Start the collection timer"""
        if self._running:
            return
        try:
            self._status = ServiceStatus.STARTING
            self.logger.info(f"Starting monitoring loop every {self._config.interval_ms}ms")

            self._running = True
            self._start_time = monotonic()
            self._timer_task = asyncio.create_task(self._timer_loop())

            self._status = ServiceStatus.RUNNING

        except Exception as e:
            self._status = ServiceStatus.ERROR
            self.logger.error(f"Failed to start collector: {e}")
            raise


    async def stop(self) -> None:
        """Cancel the timer and let an in-flight tick finish without publishing"""
        if self._status == ServiceStatus.STOPPED:
            return
        self._status = ServiceStatus.STOPPING
        self.logger.info("Monitor agent shutting down...")

        self._running = False
        if self._timer_task:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._tick_task and not self._tick_task.done():
            await self._tick_task
        self._tick_task = None

        await self._publisher.cleanup()
        self._status = ServiceStatus.STOPPED
        self.logger.info("Collector stopped")


    async def _timer_loop(self) -> None:
        """Fire a tick every interval on a fixed grid"""
        loop = asyncio.get_running_loop()
        interval = self._config.interval_s
        next_fire = loop.time()

        while self._running:
            if self.tick_in_flight:
                self._skipped_ticks += 1
                self.logger.warning("Previous tick still in flight, skipping this one")
            else:
                self._tick_task = asyncio.create_task(self._run_tick(require_running=True))

            next_fire += interval
            now = loop.time()
            if next_fire <= now:
                # Fell behind by more than a period; re-anchor instead of bursting
                next_fire = now + interval
            await asyncio.sleep(next_fire - now)


    async def collect_snapshot(self) -> MetricsSnapshot:
        """Run every sampler concurrently and assemble one snapshot"""
        s = self._samplers
        cpu, memory, disk, network, temperature, uptime, processes = await asyncio.gather(
            s.cpu.sample(),
            s.memory.sample(),
            s.disk.sample(),
            s.network.sample(),
            s.temperature.sample(),
            s.uptime.sample(),
            s.processes.sample()
        )

        # Wall clock can step backwards; capture times never do
        captured_at = max(get_current_timestamp(), self._last_captured_at)
        self._last_captured_at = captured_at

        return MetricsSnapshot(
            cpu_percent=cpu,
            memory=memory,
            disk=disk,
            network=network,
            temperature_c=temperature.celsius,
            temperature_available=temperature.available,
            uptime_seconds=uptime,
            processes=processes,
            captured_at=captured_at
        )


    async def collect_once(self) -> MetricsSnapshot | None:
        """Run a single tick outside the timer and publish its snapshot"""
        return await self._run_tick(require_running=False)


    async def _run_tick(self, require_running: bool) -> MetricsSnapshot | None:
        """
        One Idle → Sampling → Published → Idle cycle.

        Returns:
            The assembled snapshot, or None when assembly failed.
        """
        self._ticks += 1
        self._state = CollectorState.SAMPLING
        try:
            try:
                snapshot = await self.collect_snapshot()
            except Exception as e:
                self._failed_ticks += 1
                self._last_error = e
                self.logger.error(f"Error collecting metrics, skipping tick: {e}")
                return None

            self._last_snapshot = snapshot

            if require_running and not self._running:
                self.logger.debug("Collector stopped during tick, snapshot not published")
                return snapshot

            try:
                if await self._publisher.publish(snapshot):
                    self._published += 1
            except Exception as e:
                self._last_error = e
                self.logger.error(f"Error publishing metrics: {e}")

            self._state = CollectorState.PUBLISHED
            return snapshot
        finally:
            self._state = CollectorState.IDLE


    def get_service_status(self) -> str:
        """
        Generate detailed service status report.

        Returns:
            str: Multi-line status report including tick counters and the
            latest snapshot summary
        """
        status_lines = [
            "Collector Status:",
            f"Status: {self._status.value}",
            f"Tick State: {self._state.value}",
            f"Interval: {self._config.interval_ms}ms",
            f"Uptime: {format_duration(monotonic() - self._start_time)}",
            "",
            "Ticks:",
            f"  Started: {self._ticks}",
            f"  Published: {self._published}",
            f"  Skipped (overlap): {self._skipped_ticks}",
            f"  Failed: {self._failed_ticks}"
        ]

        if self._last_snapshot:
            status_lines.extend([
                "",
                "Latest Snapshot:",
                f"  {self._last_snapshot.summary()}"
            ])

        if self._last_error:
            status_lines.extend([
                "",
                "Recent Error:",
                f"  {type(self._last_error).__name__} {str(self._last_error)}"
            ])

        return "\n".join(status_lines)
