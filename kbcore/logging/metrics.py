# ==============================
# Metrics (In-Memory)
# ==============================
"""
Thread-safe in-memory counters and timers for the knowledge service.

Counters used by the service:
- search.requests, search.no_results
- ingest.created, ingest.merged, ingest.rejected
- reindex.keyword, reindex.vector, reindex.failed_records

Timers keep a bounded window of recent samples per name.

No exporters (Prometheus/OpenTelemetry).
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict

MAX_TIMER_SAMPLES = 500


@dataclass
class Timer:
    name: str
    started: float


class Metrics:
    def __init__(self, *, max_samples: int = MAX_TIMER_SAMPLES) -> None:
        self._lock = threading.Lock()
        self._max_samples = max_samples
        self._counters: Dict[str, int] = {}
        self._timers_ms: Dict[str, Deque[float]] = {}

    def inc(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + value

    def counter(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def start_timer(self, name: str) -> Timer:
        return Timer(name=name, started=time.perf_counter())

    def stop_timer(self, timer: Timer) -> float:
        elapsed_ms = (time.perf_counter() - timer.started) * 1000.0
        self.observe_ms(timer.name, elapsed_ms)
        return elapsed_ms

    def observe_ms(self, name: str, value_ms: float) -> None:
        with self._lock:
            samples = self._timers_ms.get(name)
            if samples is None:
                samples = deque(maxlen=self._max_samples)
                self._timers_ms[name] = samples
            samples.append(value_ms)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            timers = {}
            for k, v in self._timers_ms.items():
                values = list(v)
                timers[k] = {
                    "count": len(values),
                    "avg_ms": round(sum(values) / len(values), 3) if values else 0.0,
                    "max_ms": round(max(values), 3) if values else 0.0,
                }
            return {
                "counters": dict(self._counters),
                "timers_ms": timers,
            }
