"""Request counters and process runtime metrics."""
from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from typing import Dict, List

import psutil


@dataclass
class Counter:
    name: str
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


class MetricsRegistry:
    def __init__(self) -> None:
        self.counters: Dict[str, Counter] = {}

    def counter(self, name: str) -> Counter:
        if name not in self.counters:
            self.counters[name] = Counter(name=name)
        return self.counters[name]

    def snapshot(self) -> Dict[str, int]:
        """Return the current counter values as a plain dictionary."""

        return {name: counter.value for name, counter in sorted(self.counters.items())}


@dataclass(frozen=True)
class ThreadInfo:
    name: str
    id: int
    cpu_time_nanos: int


class RuntimeMetrics:
    """Reads uptime, core count and per-thread CPU time of the current process.

    Thread names come from :func:`threading.enumerate`; OS threads that the
    interpreter does not know about are reported as ``thread-<tid>``.
    """

    def __init__(self, pid: int | None = None) -> None:
        self.process = psutil.Process(pid or os.getpid())
        # Separate handle: cpu_percent measures since the previous call on the
        # same Process object.
        self.performance_process = psutil.Process(self.process.pid)
        for process in (self.process, self.performance_process):
            # The first cpu_percent call always returns 0.0
            process.cpu_percent(interval=None)
        # Wall-clock time is read once; uptime then follows the monotonic clock.
        self._started_millis = (time.time() - self.process.create_time()) * 1000
        self._monotonic_base = time.monotonic()

    def uptime_millis(self) -> float:
        return self._started_millis + (time.monotonic() - self._monotonic_base) * 1000

    def cpu_count(self) -> int:
        return psutil.cpu_count() or 1

    def list_threads(self) -> List[ThreadInfo]:
        names = {thread.native_id: thread.name for thread in threading.enumerate() if thread.native_id is not None}
        threads = []
        for pthread in self.process.threads():
            cpu_time_nanos = int((pthread.user_time + pthread.system_time) * 1_000_000_000)
            threads.append(
                ThreadInfo(
                    name=names.get(pthread.id, f"thread-{pthread.id}"),
                    id=pthread.id,
                    cpu_time_nanos=cpu_time_nanos,
                )
            )
        return threads

    def process_cpu_usage(self) -> float:
        """Return CPU usage since the previous call as a fraction of all cores.

        Only the performance logger calls this; snapshots measure on their own
        handle.
        """

        return self.performance_process.cpu_percent(interval=None) / (100 * self.cpu_count())

    def memory_used(self) -> float:
        return float(self.process.memory_info().rss)

    def snapshot(self) -> Dict[str, float]:
        return {
            "process.cpu.usage": self.process.cpu_percent(interval=None) / (100 * self.cpu_count()),
            "process.memory.used": self.memory_used(),
            "process.threads": float(self.process.num_threads()),
            "process.uptime": self.uptime_millis() / 1000,
            "system.cpu.count": float(self.cpu_count()),
        }


def format_sample(name: str, value: float) -> str:
    """Render a metric value for humans: memory in MB, CPU as a percentage."""

    if value == 0:
        return "0"
    suffix = ""
    if "memory" in name:
        value = value / (1024 * 1024)
        suffix = "MB"
    if "cpu.usage" in name:
        return f"{100 * value:.0f}%"
    if value % 1 == 0:
        return f"{value:,.0f}{suffix}"
    return f"{value:,.2f}{suffix}"
