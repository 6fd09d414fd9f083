import asyncio
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import psutil

from hostwatch.shared.core.config import CollectorConfig
from hostwatch.shared.core.exceptions import SamplerError
from hostwatch.shared.core.models import (
    DiskReading,
    MemoryReading,
    NetworkReading,
    ProcessInfo,
    TemperatureReading
)
from hostwatch.shared.utils.logger import LoggerSetup
from hostwatch.shared.utils.time import monotonic

logger = LoggerSetup.setup(__name__)

BYTES_PER_MB = 1_048_576
THERMAL_ZONE_PATH = Path('/sys/class/thermal/thermal_zone0/temp')
PROC_UPTIME_PATH = Path('/proc/uptime')
PREFERRED_SENSORS = ('coretemp', 'k10temp', 'cpu_thermal', 'acpitz')


def _consume_result(future: asyncio.Future) -> None:
    # A read that outlived its timeout may still fail; nobody awaits it then
    if not future.cancelled():
        future.exception()


class Sampler[T](ABC):
    """
    One independent host probe.

    `read()` does the blocking host query and may raise. `sample()` runs it in
    a worker thread bounded by the sampler timeout and converts any failure to
    `default()`, so callers never see an exception.

    A timed-out read keeps its worker thread until the host call returns. At
    most one read per sampler is in flight; while it is, `sample()` reports
    `default()` without starting another.
    """
    name: str = "sampler"

    def __init__(self, timeout_s: float = 5.0):
        self._timeout_s = timeout_s
        self._inflight: asyncio.Future | None = None

    @property
    def busy(self) -> bool:
        """Check if a previous read is still running in its worker thread"""
        return self._inflight is not None and not self._inflight.done()

    @abstractmethod
    def default(self) -> T:
        """Documented reading used when the host query fails"""
        ...

    @abstractmethod
    def read(self) -> T:
        """Query host state"""
        ...

    async def sample(self) -> T:
        """Take one reading, never raising"""
        if self.busy:
            logger.warning(f"{self.name} sampler still waiting on a previous read")
            return self.default()

        self._inflight = asyncio.get_running_loop().run_in_executor(None, self.read)
        self._inflight.add_done_callback(_consume_result)
        try:
            return await asyncio.wait_for(asyncio.shield(self._inflight), timeout=self._timeout_s)
        except TimeoutError:
            logger.warning(f"{self.name} sampler timed out after {self._timeout_s}s")
        except Exception as e:
            logger.debug(f"{self.name} sampler failed: {e}")
        return self.default()


class CpuSampler(Sampler[float]):
    """Percent busy since the previous call, across all cores"""
    name = "cpu"

    def default(self) -> float:
        return 0.0

    def read(self) -> float:
        return round(min(100.0, max(0.0, float(psutil.cpu_percent(interval=None)))), 1)


class MemorySampler(Sampler[MemoryReading]):
    name = "memory"

    def default(self) -> MemoryReading:
        return MemoryReading()

    def read(self) -> MemoryReading:
        vm = psutil.virtual_memory()
        total_mb = int(vm.total // BYTES_PER_MB)
        used_mb = int((vm.total - vm.available) // BYTES_PER_MB)
        percent = round(used_mb / total_mb * 100, 1) if total_mb > 0 else 0.0
        return MemoryReading(used_mb=used_mb, total_mb=total_mb, percent=percent)


def format_human(num_bytes: float) -> str:
    """
    Format a byte count the way `df -h` does.

    Binary units, one decimal below 10, always rounded up.

    Examples:
        - 512 → '512B'
        - 1.5 GiB → '1.5G'
        - 12.2 GiB → '13G'
    """
    value = float(max(0, num_bytes))
    if value < 1024:
        return f"{int(value)}B"

    units = ("K", "M", "G", "T", "P", "E")
    index = 0
    value /= 1024
    # Rounding up may reach 1024 of a unit; carry to the next one
    while math.ceil(value) >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    unit = units[index]

    if value < 10:
        shown = math.ceil(value * 10) / 10
        if shown < 10:
            return f"{shown:.1f}{unit}"
    return f"{math.ceil(value)}{unit}"


class DiskSampler(Sampler[DiskReading]):
    """Usage of one fixed mount point"""
    name = "disk"

    def __init__(self, mount: str = "/", timeout_s: float = 5.0):
        super().__init__(timeout_s)
        self._mount = mount

    def default(self) -> DiskReading:
        return DiskReading()

    def read(self) -> DiskReading:
        du = psutil.disk_usage(self._mount)
        return DiskReading(
            used_human=format_human(du.used),
            total_human=format_human(du.total),
            percent=round(float(du.percent), 1)
        )


@dataclass(frozen=True)
class NetworkCounterState:
    """Cumulative byte counters at one instant (monotonic seconds)"""
    rx_bytes: int
    tx_bytes: int
    sampled_at: float


def compute_throughput(previous: NetworkCounterState | None,
                       current: NetworkCounterState) -> NetworkReading:
    """
    Throughput between two counter readings in MiB/s.

    No previous state or a non-positive interval yields zero. Counter resets
    (current below previous) clamp to zero instead of going negative.
    """
    if previous is None:
        return NetworkReading()

    elapsed = current.sampled_at - previous.sampled_at
    if elapsed <= 0:
        return NetworkReading()

    rx_delta = max(0, current.rx_bytes - previous.rx_bytes)
    tx_delta = max(0, current.tx_bytes - previous.tx_bytes)
    return NetworkReading(
        download_mbps=round(rx_delta / elapsed / BYTES_PER_MB, 2),
        upload_mbps=round(tx_delta / elapsed / BYTES_PER_MB, 2)
    )


class NetworkSampler(Sampler[NetworkReading]):
    """
    Download/upload rate across non-loopback interfaces.

    Stateful: keeps the previous counters of this instance only. The first
    successful read stores the baseline and reports zero.
    """
    name = "network"

    def __init__(self, timeout_s: float = 5.0):
        super().__init__(timeout_s)
        self._previous: NetworkCounterState | None = None

    @property
    def previous(self) -> NetworkCounterState | None:
        return self._previous

    def default(self) -> NetworkReading:
        return NetworkReading()

    def read_counters(self) -> tuple[int, int]:
        """Sum rx/tx bytes over every non-loopback interface"""
        per_nic = psutil.net_io_counters(pernic=True) or {}
        rx = tx = 0
        found = False
        for nic, counters in per_nic.items():
            if nic.lower().startswith('lo'):
                continue
            rx += counters.bytes_recv
            tx += counters.bytes_sent
            found = True

        if not found:
            totals = psutil.net_io_counters()
            if totals is None:
                raise SamplerError("No network counters available")
            return totals.bytes_recv, totals.bytes_sent
        return rx, tx

    def read(self) -> NetworkReading:
        rx, tx = self.read_counters()
        current = NetworkCounterState(rx_bytes=rx, tx_bytes=tx, sampled_at=monotonic())
        reading = compute_throughput(self._previous, current)
        self._previous = current
        return reading


class TemperatureSampler(Sampler[TemperatureReading]):
    """CPU temperature from psutil sensors, falling back to the thermal zone file"""
    name = "temperature"

    def __init__(self, thermal_zone: Path = THERMAL_ZONE_PATH, timeout_s: float = 5.0):
        super().__init__(timeout_s)
        self._thermal_zone = thermal_zone

    def default(self) -> TemperatureReading:
        return TemperatureReading(celsius=0.0, available=False)

    def _from_sensors(self) -> float | None:
        sensors = getattr(psutil, 'sensors_temperatures', None)
        if sensors is None:
            return None
        try:
            temps = sensors()
        except Exception as e:
            logger.debug(f"psutil sensors unavailable: {e}")
            return None
        if not temps:
            return None

        for name in PREFERRED_SENSORS:
            entries = temps.get(name)
            if entries and entries[0].current is not None:
                return float(entries[0].current)

        for entries in temps.values():
            if entries and entries[0].current is not None:
                return float(entries[0].current)
        return None

    def _from_thermal_zone(self) -> float | None:
        try:
            raw = self._thermal_zone.read_text(encoding='utf-8').strip()
            return int(raw) / 1000
        except (OSError, ValueError) as e:
            logger.debug(f"Thermal zone unavailable: {e}")
            return None

    def read(self) -> TemperatureReading:
        celsius = self._from_sensors()
        if celsius is None:
            celsius = self._from_thermal_zone()
        if celsius is None:
            return self.default()
        return TemperatureReading(celsius=round(celsius, 1), available=True)


class UptimeSampler(Sampler[float]):
    """Seconds since boot"""
    name = "uptime"

    def __init__(self, proc_uptime: Path = PROC_UPTIME_PATH, timeout_s: float = 5.0):
        super().__init__(timeout_s)
        self._proc_uptime = proc_uptime

    def default(self) -> float:
        return 0.0

    def read(self) -> float:
        try:
            return round(max(0.0, time.time() - psutil.boot_time()), 1)
        except Exception as e:
            logger.debug(f"psutil boot time unavailable, trying {self._proc_uptime}: {e}")
        return round(float(self._proc_uptime.read_text(encoding='utf-8').split()[0]), 1)


class ProcessSampler(Sampler[list[ProcessInfo]]):
    """Top processes by CPU percent, descending; ties keep listing order"""
    name = "processes"

    def __init__(self, limit: int = 5, timeout_s: float = 5.0):
        super().__init__(timeout_s)
        self._limit = limit

    def default(self) -> list[ProcessInfo]:
        return []

    def read(self) -> list[ProcessInfo]:
        entries: list[ProcessInfo] = []
        for proc in psutil.process_iter(['pid', 'name', 'cpu_percent', 'memory_percent']):
            info = proc.info
            entries.append(ProcessInfo(
                name=info.get('name') or '',
                cpu_percent=round(info.get('cpu_percent') or 0.0, 1),
                memory_percent=round(info.get('memory_percent') or 0.0, 1),
                pid=info.get('pid') or 0
            ))
        return top_processes(entries, self._limit)


def top_processes(entries: list[ProcessInfo], limit: int) -> list[ProcessInfo]:
    """Stable sort by CPU percent descending, truncated to `limit`"""
    return sorted(entries, key=lambda p: p.cpu_percent, reverse=True)[:limit]


@dataclass
class SamplerSet:
    """The probes one collector runs on every tick"""
    cpu: Sampler[float]
    memory: Sampler[MemoryReading]
    disk: Sampler[DiskReading]
    network: Sampler[NetworkReading]
    temperature: Sampler[TemperatureReading]
    uptime: Sampler[float]
    processes: Sampler[list[ProcessInfo]]

    @classmethod
    def create(cls, config: CollectorConfig) -> 'SamplerSet':
        """Build the host samplers for one collector"""
        timeout = config.sampler_timeout_s
        return cls(
            cpu=CpuSampler(timeout_s=timeout),
            memory=MemorySampler(timeout_s=timeout),
            disk=DiskSampler(mount=config.disk_mount, timeout_s=timeout),
            network=NetworkSampler(timeout_s=timeout),
            temperature=TemperatureSampler(timeout_s=timeout),
            uptime=UptimeSampler(timeout_s=timeout),
            processes=ProcessSampler(limit=config.process_limit, timeout_s=timeout)
        )
