"""Lightweight timing instrumentation.

A PerformanceLogger is constructed once by the application and handed to
the components that should be measured. It keeps a bounded in-memory
buffer of measurements and can summarise them per operation category.

Example:
    >>> perf = PerformanceLogger()
    >>> with perf.measure(OperationCategory.OCR):
    ...     recognizer.recognize_text(image)
    >>> perf.stats(OperationCategory.OCR).count
    1
"""

import logging
import threading
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Deque, List, Optional

logger = logging.getLogger(__name__)


class OperationCategory(str, Enum):
    CAPTURE_PIPELINE = "capture_pipeline"
    SCREENSHOT = "screenshot"
    METADATA = "metadata"
    OCR = "ocr"
    DB_READ = "db_read"
    DB_WRITE = "db_write"
    DB_SEARCH = "db_search"
    SUMMARIZATION = "summarization"
    RETENTION = "retention"


@dataclass
class Measurement:
    category: OperationCategory
    label: str
    duration: float
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class CategoryStats:
    category: OperationCategory
    count: int
    total_duration: float
    average_duration: float
    min_duration: float
    max_duration: float
    p95_duration: float


class PerformanceLogger:
    """Thread-safe ring buffer of timing measurements.

    Attributes:
        max_buffer_size: Oldest measurements are dropped beyond this many
        slow_threshold: Measurements longer than this (seconds) are logged
            at warning level
    """

    def __init__(self, max_buffer_size: int = 1000, slow_threshold: float = 2.0):
        self.max_buffer_size = max_buffer_size
        self.slow_threshold = slow_threshold
        self._measurements: Deque[Measurement] = deque(maxlen=max_buffer_size)
        self._lock = threading.Lock()

    @contextmanager
    def measure(self, category: OperationCategory, label: str = ""):
        """Time the wrapped block and record it, even if the block raises."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record(category, time.perf_counter() - start, label)

    def record(self, category: OperationCategory, duration: float, label: str = "") -> Measurement:
        measurement = Measurement(category=category, label=label or category.value, duration=duration)
        with self._lock:
            self._measurements.append(measurement)
        if duration > self.slow_threshold:
            logger.warning(f"Slow operation {measurement.label}: {duration:.2f}s")
        return measurement

    def measurements(self, category: Optional[OperationCategory] = None) -> List[Measurement]:
        with self._lock:
            items = list(self._measurements)
        if category is None:
            return items
        return [m for m in items if m.category == category]

    def stats(self, category: OperationCategory) -> Optional[CategoryStats]:
        """Aggregate statistics for one category, None if nothing was recorded."""
        durations = sorted(m.duration for m in self.measurements(category))
        if not durations:
            return None
        count = len(durations)
        total = sum(durations)
        p95_index = min(int(count * 0.95), count - 1)
        return CategoryStats(
            category=category,
            count=count,
            total_duration=total,
            average_duration=total / count,
            min_duration=durations[0],
            max_duration=durations[-1],
            p95_duration=durations[p95_index],
        )

    def all_stats(self) -> List[CategoryStats]:
        return [s for s in (self.stats(c) for c in OperationCategory) if s is not None]

    def report(self) -> str:
        """Human-readable table of per-category timings in milliseconds."""
        lines = ["Performance report", "-" * 18]
        for s in self.all_stats():
            lines.append(
                f"{s.category.value:<18} n={s.count:<5} avg={s.average_duration * 1000:.1f}ms "
                f"p95={s.p95_duration * 1000:.1f}ms max={s.max_duration * 1000:.1f}ms"
            )
        if len(lines) == 2:
            lines.append("no measurements")
        return "\n".join(lines)

    def reset(self) -> None:
        with self._lock:
            self._measurements.clear()
