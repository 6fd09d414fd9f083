import argparse
import asyncio
import signal

from hostwatch.shared.core.config import Config
from hostwatch.shared.core.exceptions import ConfigurationError
from hostwatch.shared.utils.logger import LoggerSetup
from .collector import MetricsCollector
from .publisher import DryRunPublisher, HttpPublisher
from .samplers import SamplerSet


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hostwatch metrics agent")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Collect and publish a single snapshot, then exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log snapshots instead of sending them to the aggregator",
    )
    return parser


async def run(config: Config, once: bool = False, dry_run: bool = False) -> None:
    """Run the agent until SIGINT/SIGTERM (or a single tick with `once`)"""
    logger = LoggerSetup.setup(__name__)

    publisher = DryRunPublisher() if dry_run else HttpPublisher(config.publisher)
    collector = MetricsCollector(
        samplers=SamplerSet.create(config.collector),
        publisher=publisher,
        config=config.collector
    )

    if once:
        await collector.collect_once()
        await publisher.cleanup()
        return

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    logger.info(f"System Monitor Agent started, publishing to {config.publisher.metrics_endpoint}")
    await collector.start()
    try:
        await stop_event.wait()
    finally:
        await collector.stop()
        logger.info(collector.get_service_status())


def main() -> None:
    args = build_parser().parse_args()
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
    asyncio.run(run(config, once=args.once, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
