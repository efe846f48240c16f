"""Periodic per-thread CPU usage sampling.

Every tick reads the cumulative CPU time of all live threads, turns the
difference to the previous tick into a usage value and keeps the resulting
record in a bounded history that the chart endpoint reads from.
"""
from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from diag_services.ops.metrics import RuntimeMetrics, format_sample

logger = logging.getLogger("diag_services.sampler")
performance_logger = logging.getLogger("diag_services.performance")

MAX_USAGE = 99


@dataclass(frozen=True)
class ThreadCpuUsage:
    thread_name: str
    cpu_usage: int

    def asdict(self) -> dict:
        return {"threadName": self.thread_name, "cpuUsage": self.cpu_usage}


@dataclass(frozen=True)
class TimeAndThreadCpuUsages:
    time: datetime
    thread_cpu_usages: Tuple[ThreadCpuUsage, ...] = field(default_factory=tuple)

    def asdict(self) -> dict:
        return {
            "time": self.time.isoformat(),
            "threadCpuUsages": [usage.asdict() for usage in self.thread_cpu_usages],
        }


class HistoryBuffer:
    """FIFO of the most recent records, never longer than ``capacity``."""

    def __init__(self, capacity: int = 50) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._records: List[TimeAndThreadCpuUsages] = []
        self._lock = threading.Lock()

    def push(self, record: TimeAndThreadCpuUsages) -> None:
        with self._lock:
            if len(self._records) >= self.capacity:
                self._records.pop(0)
            self._records.append(record)

    def snapshot(self) -> List[TimeAndThreadCpuUsages]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def compute_usage(delta_cpu_nanos: int, elapsed_millis: float, cpu_count: int) -> int:
    """Return the usage of one thread over one interval, truncated to [0, 99]."""

    raw = delta_cpu_nanos / (elapsed_millis * 1000 * cpu_count)
    return int(max(0.0, min(float(MAX_USAGE), raw)))


class CpuUsageSampler:
    """Owns the history buffer and the last seen CPU time of every thread.

    Only the sampling thread (or a direct :meth:`tick` call) writes state;
    readers go through :meth:`history`, which hands out a copy.
    """

    def __init__(
        self,
        runtime: RuntimeMetrics,
        interval_seconds: float = 5,
        history_size: int = 50,
        usage_log_threshold: int = 5,
        prune_stale_threads: bool = False,
        performance_logging: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.runtime = runtime
        self.interval_seconds = interval_seconds
        self.usage_log_threshold = usage_log_threshold
        self.prune_stale_threads = prune_stale_threads
        self.performance_logging = performance_logging
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._buffer = HistoryBuffer(history_size)
        self.last_thread_cpu_times: Dict[str, int] = {}
        self.previous_uptime = runtime.uptime_millis()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._tick_lock = threading.Lock()

    def tick(self) -> TimeAndThreadCpuUsages | None:
        """Take one sample and return the stored record.

        Returns ``None`` when the runtime could not be read; nothing is
        changed in that case.
        """

        with self._tick_lock:
            now = self._clock()
            try:
                uptime = self.runtime.uptime_millis()
                cpu_count = self.runtime.cpu_count()
                threads = self.runtime.list_threads()
            except Exception:
                logger.exception("Unable to read runtime metrics, skipping CPU sample")
                return None
            if cpu_count < 1:
                logger.error("Invalid CPU count %s, skipping CPU sample", cpu_count)
                return None

            elapsed = uptime - self.previous_uptime
            seen: Dict[str, int] = {}
            usages: List[ThreadCpuUsage] = []
            for info in threads:
                last_cpu_time = self.last_thread_cpu_times.get(info.name)
                if last_cpu_time is None:
                    seen[info.name] = info.cpu_time_nanos
                    continue

                delta = info.cpu_time_nanos - last_cpu_time
                if delta < 0:
                    # Seen for threads whose name was reused by a newer thread
                    continue

                if elapsed > 0:
                    usage = compute_usage(delta, elapsed, cpu_count)
                    if usage > self.usage_log_threshold:
                        performance_logger.debug("CPU usage of thread %s: %s", info.name, usage)
                    usages.append(ThreadCpuUsage(info.name, usage))
                seen[info.name] = info.cpu_time_nanos

            self.last_thread_cpu_times.update(seen)
            if self.prune_stale_threads:
                live = {info.name for info in threads}
                for name in list(self.last_thread_cpu_times):
                    if name not in live:
                        del self.last_thread_cpu_times[name]

            record = TimeAndThreadCpuUsages(now, tuple(usages))
            self._buffer.push(record)
            self.previous_uptime = uptime
            return record

    def log_performance(self) -> None:
        try:
            value = self.runtime.process_cpu_usage()
            performance_logger.debug("Process CPU usage: %s", format_sample("process.cpu.usage", value))
        except Exception:
            performance_logger.debug("Error while logging CPU usage", exc_info=True)
        try:
            value = self.runtime.memory_used()
            performance_logger.debug("Process memory usage: %s", format_sample("process.memory.used", value))
        except Exception:
            performance_logger.debug("Error while logging memory usage", exc_info=True)

    def history(self) -> List[TimeAndThreadCpuUsages]:
        return self._buffer.snapshot()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> None:
        """Start sampling in a background thread; the first tick runs immediately."""

        if self.running:
            logger.debug("CPU sampler already running")
            return

        if self.performance_logging:
            performance_logger.debug("Will log performance metrics every %s seconds", self.interval_seconds)
        # Each loop owns its stop event; ticks of an old and a new loop are
        # serialized by the tick lock.
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(self._stop,), name="cpu-usage-sampler", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if not self._thread.is_alive():
                self._thread = None

    def _run(self, stop: threading.Event) -> None:
        while not stop.is_set():
            if self.performance_logging:
                self.log_performance()
            try:
                self.tick()
            except Exception:
                logger.exception("CPU sample failed")
            stop.wait(self.interval_seconds)
