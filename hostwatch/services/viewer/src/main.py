import asyncio
import signal
from typing import List

from hostwatch.shared.clients.metrics_stream import MetricsStreamClient
from hostwatch.shared.core.config import Config
from hostwatch.shared.core.enums import ConnectionStatus
from hostwatch.shared.core.exceptions import ConfigurationError
from hostwatch.shared.core.models import MetricsSnapshot
from hostwatch.shared.utils.logger import LoggerSetup
from hostwatch.shared.utils.time import format_duration, from_timestamp

logger = LoggerSetup.setup(__name__)


def format_snapshot(snapshot: MetricsSnapshot) -> str:
    """Render one snapshot as a single console line"""
    temperature = f"{snapshot.temperature_c:.1f}°C" if snapshot.temperature_available else "n/a"
    top = snapshot.processes[0].name if snapshot.processes else "-"
    return (
        f"[{from_timestamp(snapshot.captured_at).strftime('%H:%M:%S')}] "
        f"CPU {snapshot.cpu_percent:5.1f}% | "
        f"RAM {snapshot.memory.used_mb}/{snapshot.memory.total_mb}MB ({snapshot.memory.percent:.1f}%) | "
        f"Disk {snapshot.disk.used_human}/{snapshot.disk.total_human} ({snapshot.disk.percent:.1f}%) | "
        f"Net ↓{snapshot.network.download_mbps:.2f} ↑{snapshot.network.upload_mbps:.2f} MB/s | "
        f"Temp {temperature} | "
        f"Up {format_duration(snapshot.uptime_seconds)} | "
        f"Top {top}"
    )


async def print_snapshot(snapshot: MetricsSnapshot) -> None:
    print(format_snapshot(snapshot), flush=True)


async def print_history(snapshots: List[MetricsSnapshot]) -> None:
    print(f"Received {len(snapshots)} snapshots of history", flush=True)
    if snapshots:
        print(format_snapshot(snapshots[-1]), flush=True)


def report_status(status: ConnectionStatus) -> None:
    logger.info(f"Connection status: {status.value}")


async def run(config: Config) -> None:
    """Stream snapshots to the console until SIGINT/SIGTERM"""
    client = MetricsStreamClient(
        config.stream,
        on_metrics=print_snapshot,
        on_history=print_history,
        on_status=report_status
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    await client.start()
    try:
        await stop_event.wait()
    finally:
        await client.stop()


def main() -> None:
    try:
        config = Config()
    except ConfigurationError as e:
        raise SystemExit(f"Configuration error: {e}")

    LoggerSetup.configure(
        level=config.logging.level,
        logs_dir=config.logging.dir_path,
        max_bytes=config.logging.max_size,
        backup_count=config.logging.backup_count
    )
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
