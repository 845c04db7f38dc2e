"""Aggregation pipeline: raw samples to activity entries and daily summaries.

Runs on its own interval (independent of capture), on demand through
``trigger`` (or synchronously through ``run_now``), and after captures
through a :class:`Debouncer`. One pass:

1. Fetch samples newer than the watermark (or since midnight).
2. With at least ``min_samples`` of them, split into runs of consecutive
   same-app samples, classify and narrate each run, and commit all
   entries plus their app-usage increments in one transaction.
3. Advance the watermark, but only after step 2 committed.
4. Regardless of step 2, rebuild today's DailySummary from all of today's
   entries and usage rows.

A failed read or write abandons the pass and leaves the watermark in
place, so the next pass retries the same samples without double counting.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, List, Optional, Sequence, TYPE_CHECKING

from .classifier import ActivityClassifier
from .config import AggregationConfig
from .models import ActivityEntry, DailySummary, RawSample
from .narrator import HeuristicNarrator
from .perf import OperationCategory, PerformanceLogger
from .storage import StorageError

if TYPE_CHECKING:
    from .artifacts import CaptureArtifactStore
    from .storage import ActivityStorage

logger = logging.getLogger(__name__)

ENTRY_TITLE_MAX = 80


@dataclass
class PipelineRunResult:
    """Outcome of one aggregation pass."""
    samples_fetched: int = 0
    entries_created: int = 0
    summary_written: bool = False
    images_deleted: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def group_runs(samples: Sequence[RawSample]) -> List[List[RawSample]]:
    """Split samples into maximal runs of consecutive same-app samples.

    Samples are ordered by timestamp first, so input order does not matter.
    """
    runs: List[List[RawSample]] = []
    for sample in sorted(samples, key=lambda s: s.timestamp):
        if runs and runs[-1][0].app_name == sample.app_name:
            runs[-1].append(sample)
        else:
            runs.append([sample])
    return runs


def representative(run: Sequence[RawSample]) -> RawSample:
    """The sample with the longest OCR text; the earliest wins ties."""
    best = run[0]
    for sample in run[1:]:
        if len(sample.ocr_text or "") > len(best.ocr_text or ""):
            best = sample
    return best


def run_duration(run: Sequence[RawSample], nominal_tick: float) -> float:
    """Elapsed time of a run, floored at ``len(run) * nominal_tick``."""
    elapsed = (run[-1].timestamp - run[0].timestamp).total_seconds()
    return max(elapsed, len(run) * nominal_tick)


def _truncate(title: str, max_len: int = ENTRY_TITLE_MAX) -> str:
    cleaned = title.strip()
    return cleaned if len(cleaned) <= max_len else cleaned[:max_len] + "..."


class AggregationPipeline:
    """Periodic and on-demand aggregation of raw samples.

    Attributes:
        storage: Sample store read from and written to
        artifacts: Image store, used when images are deleted after summarizing
        classifier: Category, icon and productivity rules
        narrator: Sentence templates
        config: Interval, thresholds and image-deletion flag
        last_processed: Watermark; samples at or before it are never re-read

    Example:
        >>> pipeline = AggregationPipeline(storage, artifacts)
        >>> result = pipeline.run_now()
        >>> result.entries_created
        1
    """

    def __init__(self, storage: "ActivityStorage", artifacts: "CaptureArtifactStore",
                 classifier: Optional[ActivityClassifier] = None,
                 narrator: Optional[HeuristicNarrator] = None,
                 config: Optional[AggregationConfig] = None,
                 perf: Optional[PerformanceLogger] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.storage = storage
        self.artifacts = artifacts
        self.classifier = classifier or ActivityClassifier()
        self.narrator = narrator or HeuristicNarrator()
        self.config = config or AggregationConfig()
        self.perf = perf if perf is not None else PerformanceLogger()
        self.clock = clock
        self.last_processed: Optional[datetime] = None

        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the periodic background loop. The first pass runs immediately."""
        if self.is_running:
            logger.warning("AggregationPipeline already running")
            return
        self._stop_event.clear()
        self._wake_event.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True, name="aggregation")
        self._thread.start()
        logger.info(f"AggregationPipeline started (every {self.config.interval_minutes} min)")

    def stop(self) -> None:
        """Stop the loop. A pass already in progress completes."""
        if self._thread is None:
            return
        self._stop_event.set()
        self._wake_event.set()
        self._thread.join(timeout=5)
        self._thread = None
        logger.info("AggregationPipeline stopped")

    def trigger(self) -> None:
        """Request a pass off the calling thread and return immediately.

        With the loop running the request wakes it early; otherwise a
        one-shot worker thread runs the pass.
        """
        if self.is_running:
            self._wake_event.set()
            return
        threading.Thread(target=self._run_logged, daemon=True, name="aggregation-once").start()

    def _run_logged(self) -> None:
        try:
            self.run_now()
        except Exception as e:
            logger.error(f"Aggregation pass error: {e}", exc_info=True)

    def _run_loop(self) -> None:
        interval = self.config.interval_minutes * 60
        while not self._stop_event.is_set():
            self._run_logged()
            self._wake_event.wait(interval)
            self._wake_event.clear()

    def run_now(self) -> PipelineRunResult:
        """Run one aggregation pass synchronously on the calling thread.

        Concurrent callers are serialised; each sees the watermark left by
        the previous pass.
        """
        with self._run_lock:
            with self.perf.measure(OperationCategory.SUMMARIZATION, "aggregation_pass"):
                return self._run_pass()

    def _fetch_new_samples(self, now: datetime) -> List[RawSample]:
        start_of_day = datetime.combine(now.date(), time.min)
        since = max(self.last_processed, start_of_day) if self.last_processed else start_of_day
        samples = self.storage.get_captures(since, now)
        if self.last_processed is not None:
            samples = [s for s in samples if s.timestamp > self.last_processed]
        return samples

    def _run_pass(self) -> PipelineRunResult:
        result = PipelineRunResult()
        now = self.clock()
        today = now.date()

        try:
            samples = self._fetch_new_samples(now)
        except StorageError as e:
            logger.error(f"Aggregation read failed, will retry next pass: {e}")
            result.error = str(e)
            return result
        result.samples_fetched = len(samples)

        if len(samples) >= self.config.min_samples:
            runs = group_runs(samples)
            entries = [self._build_entry(run) for run in runs]
            try:
                self.storage.record_activities(entries, today)
            except StorageError as e:
                logger.error(f"Aggregation write failed, will retry next pass: {e}")
                result.error = str(e)
                return result
            result.entries_created = len(entries)
            self.last_processed = now
            logger.info(f"Created {len(entries)} activity entries from {len(samples)} samples")

            if self.config.delete_images_after_summarize:
                result.images_deleted = self._delete_images(samples)
        else:
            logger.debug(f"Only {len(samples)} new samples (< {self.config.min_samples}), "
                         f"skipping entry creation")

        try:
            result.summary_written = self.regenerate_summary(today) is not None
        except StorageError as e:
            logger.error(f"Daily summary regeneration failed: {e}")
            result.error = str(e)
        return result

    def _build_entry(self, run: List[RawSample]) -> ActivityEntry:
        first = run[0]
        rep = representative(run)
        app_name = first.app_name
        category = self.classifier.classify(app_name, rep.bundle_identifier,
                                            rep.window_title, rep.ocr_text)
        duration = run_duration(run, self.config.nominal_tick_seconds)
        return ActivityEntry(
            timestamp=first.timestamp,
            app_name=app_name,
            app_icon=self.classifier.icon_for_app(app_name),
            title=_truncate(rep.window_title) if rep.window_title.strip() else app_name,
            summary=self.narrator.summarize_activity(app_name, rep.window_title, rep.ocr_text,
                                                     category, duration),
            category=category,
            duration=duration,
        )

    def _delete_images(self, samples: Sequence[RawSample]) -> int:
        deleted = 0
        for sample in samples:
            if not sample.image_path:
                continue
            try:
                if self.artifacts.delete_image(sample.image_path):
                    deleted += 1
            except OSError as e:
                logger.warning(f"Failed to delete capture image {sample.image_path}: {e}")
        return deleted

    def regenerate_summary(self, day: date) -> Optional[DailySummary]:
        """Rebuild and upsert the DailySummary for ``day`` from stored entries.

        Returns:
            The stored summary, or None when the day has no entries
        """
        entries = self.storage.get_activity_entries_for_day(day)
        if not entries:
            return None

        total = self.storage.get_total_screen_time(day)
        usage = self.storage.get_app_usage_for_day(day)
        score = self.classifier.productivity_score((e.category, e.duration) for e in entries)
        narrative = self.narrator.summarize_day(entries, total, usage, score)

        return self.storage.upsert_daily_summary(DailySummary(
            day=day,
            total_screen_time=total,
            narrative=narrative,
            activity_count=len(entries),
            productivity_score=score,
        ))


class Debouncer:
    """Coalesces bursts of triggers into one delayed call.

    Each ``trigger`` cancels the pending timer and schedules a new one, so
    ``action`` runs once, ``delay`` seconds after the last trigger.
    """

    def __init__(self, delay: float, action: Callable[[], object]):
        self.delay = delay
        self.action = action
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._lock = threading.Lock()

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._generation += 1
            self._timer = threading.Timer(self.delay, self._fire, args=(self._generation,))
            self._timer.daemon = True
            self._timer.start()

    def cancel(self) -> None:
        with self._lock:
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    def _fire(self, generation: int) -> None:
        with self._lock:
            # superseded by a later trigger or cancel
            if generation != self._generation:
                return
            self._timer = None
        try:
            self.action()
        except Exception as e:
            logger.error(f"Debounced action failed: {e}", exc_info=True)
