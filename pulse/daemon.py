"""Activity Pulse daemon.

Wires the capture scheduler, sample store, aggregation pipeline and
retention service together and runs them until interrupted:

- Captures are paced by the scheduler and written to the store.
- Every persisted capture triggers a debounced aggregation pass; the
  pipeline also runs on its own interval.
- Retention and the storage budget are enforced on a background thread.
- Revoked screen access stops capture.

Example:
    # Run in the foreground until Ctrl+C
    $ activity-pulse

    # One capture and one aggregation pass, then exit
    $ activity-pulse --once

    # Search everything recorded so far
    $ activity-pulse --search "pull request"
"""

import argparse
import logging
import signal
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .artifacts import CaptureFileStore
from .capture import (DisplayPermissionGate, ScreenCapture, TesseractRecognizer,
                      X11MetadataSource)
from .classifier import ActivityClassifier
from .config import Config, ConfigManager
from .models import RawSample
from .narrator import HeuristicNarrator
from .perf import PerformanceLogger
from .pipeline import AggregationPipeline, Debouncer
from .retention import RetentionPolicy, RetentionService
from .scheduler import CaptureScheduler
from .storage import ActivityStorage, StorageError

logger = logging.getLogger(__name__)

SEARCH_ACTIVITY_LIMIT = 50
SEARCH_SUMMARY_LIMIT = 20
SEARCH_CAPTURE_LIMIT = 30


@dataclass
class SearchResult:
    """One hit from the unified search.

    Attributes:
        source: "activity", "summary" or "capture"
        date: Timestamp of the hit (midnight for summaries)
        title: Entry title, summary day or window title
        snippet: Text the hit came from, shortened
        matched_field: Which field the snippet was taken from
    """
    source: str
    date: datetime
    title: str
    snippet: str
    matched_field: str
    app_name: Optional[str] = None
    category: Optional[str] = None


@dataclass
class PurgeResult:
    """Outcome of ``clear_all_data``; ``failures`` names each step that failed."""
    rows_deleted: int = 0
    bytes_freed: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return not self.failures


def _snippet(text: Optional[str], max_len: int = 160) -> str:
    cleaned = " ".join((text or "").split())
    return cleaned if len(cleaned) <= max_len else cleaned[:max_len] + "..."


class PulseDaemon:
    """Builds and runs every Activity Pulse component from a Config.

    Collaborators default to the X11/tesseract implementations; tests pass
    the static in-memory ones instead.

    Example:
        >>> daemon = PulseDaemon(ConfigManager().config)
        >>> daemon.run()  # blocks until SIGTERM/SIGINT
    """

    def __init__(self, config: Optional[Config] = None, screen=None, metadata=None,
                 recognizer=None, gate=None, artifacts=None, storage=None,
                 clock: Callable[[], datetime] = datetime.now):
        self.config = config or Config()
        self.clock = clock
        self.perf = PerformanceLogger()
        data_dir = self.config.storage.path

        self.storage = storage or ActivityStorage(str(data_dir / "activity.db"), perf=self.perf)
        self.artifacts = artifacts or CaptureFileStore(data_dir)
        self.gate = gate or DisplayPermissionGate()

        self.pipeline = AggregationPipeline(
            self.storage, self.artifacts,
            classifier=ActivityClassifier(),
            narrator=HeuristicNarrator(),
            config=self.config.aggregation,
            perf=self.perf,
            clock=clock,
        )
        self.debouncer = Debouncer(self.config.aggregation.debounce_seconds, self.pipeline.trigger)

        self.scheduler = CaptureScheduler(
            screen or ScreenCapture(),
            metadata or X11MetadataSource(),
            recognizer or TesseractRecognizer(min_confidence=self.config.capture.ocr_min_confidence),
            self.artifacts,
            self.storage,
            self.gate,
            interval=self.config.capture.interval_seconds,
            excluded_apps=self.config.privacy.excluded_apps,
            ocr_enabled=self.config.capture.ocr_enabled,
            perf=self.perf,
            clock=clock,
        )
        self.scheduler.on_capture = self._handle_capture

        self.retention = RetentionService(
            self.storage, self.artifacts,
            policy=RetentionPolicy.from_config(self.config),
            perf=self.perf,
            clock=clock,
        )

        self.running = False
        self._stop_event = threading.Event()
        self._retention_thread: Optional[threading.Thread] = None

    def _handle_capture(self, sample: RawSample, handle: str) -> None:
        self.debouncer.trigger()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start capture, the pipeline loop, retention and permission rechecks."""
        logger.info("Activity Pulse starting...")
        self.running = True
        self._stop_event.clear()
        self.scheduler.start()
        self.gate.start_periodic_recheck()
        self.pipeline.start()
        self._retention_thread = threading.Thread(target=self._retention_loop,
                                                  daemon=True, name="retention")
        self._retention_thread.start()

    def stop(self) -> None:
        """Stop every background component. Safe to call more than once."""
        if not self.running:
            return
        logger.info("Shutting down...")
        self.running = False
        self._stop_event.set()
        self.debouncer.cancel()
        self.scheduler.shutdown()
        self.gate.stop_periodic_recheck()
        self.pipeline.stop()
        if self._retention_thread is not None:
            self._retention_thread.join(timeout=5)
            self._retention_thread = None
        logger.info(f"Performance summary:\n{self.perf.report()}")
        logger.info("Activity Pulse stopped")

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self._stop_event.set()

    def run(self) -> None:
        """Run until SIGTERM or SIGINT."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)
        self.start()
        try:
            while not self._stop_event.wait(1):
                pass
        finally:
            self.stop()

    def run_once(self):
        """Take one capture and run one aggregation pass on this thread.

        Returns:
            The PipelineRunResult of the pass
        """
        # the pass below replaces the debounced one
        self.scheduler.on_capture = None
        try:
            self.scheduler.capture_now()
        finally:
            self.scheduler.on_capture = self._handle_capture
        return self.pipeline.run_now()

    def _retention_loop(self) -> None:
        interval = self.config.retention.check_interval_minutes * 60
        while not self._stop_event.is_set():
            self.run_retention()
            if self._stop_event.wait(interval):
                break

    def run_retention(self) -> None:
        """One retention pass followed by storage-budget enforcement."""
        try:
            self.retention.apply_retention()
            self.retention.enforce_storage_limit()
        except StorageError as e:
            logger.error(f"Retention pass failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected retention error: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Search and purge
    # ------------------------------------------------------------------

    def search(self, query: str) -> List[SearchResult]:
        """Search activity entries, daily summaries and captures at once.

        Returns:
            Hits from all three sources, newest first. Empty for a blank query.
        """
        if not query or not query.strip():
            return []

        results: List[SearchResult] = []
        for entry in self.storage.search_activity_entries(query, SEARCH_ACTIVITY_LIMIT):
            results.append(SearchResult(
                source="activity",
                date=entry.timestamp,
                title=entry.title,
                snippet=_snippet(entry.summary),
                matched_field="summary",
                app_name=entry.app_name,
                category=entry.category.value,
            ))
        for summary in self.storage.search_daily_summaries(query, SEARCH_SUMMARY_LIMIT):
            results.append(SearchResult(
                source="summary",
                date=datetime.combine(summary.day, datetime.min.time()),
                title=summary.day.strftime("%A, %B %d"),
                snippet=_snippet(summary.narrative),
                matched_field="narrative",
            ))
        for sample in self.storage.search_captures(query, SEARCH_CAPTURE_LIMIT):
            matched_in_text = bool(sample.ocr_text) and \
                query.lower() in sample.ocr_text.lower()
            results.append(SearchResult(
                source="capture",
                date=sample.timestamp,
                title=sample.window_title or sample.app_name,
                snippet=_snippet(sample.ocr_text if matched_in_text else sample.window_title),
                matched_field="ocr_text" if matched_in_text else "window_title",
                app_name=sample.app_name,
            ))

        results.sort(key=lambda r: r.date, reverse=True)
        return results

    def clear_all_data(self) -> PurgeResult:
        """Delete every record and capture image, then compact the database.

        Capture and aggregation are stopped first so nothing is written
        mid-purge. Each step runs even if an earlier one failed.
        """
        result = PurgeResult()
        self.debouncer.cancel()
        self.scheduler.stop()
        self.pipeline.stop()

        try:
            result.rows_deleted = self.storage.total_row_count()
            self.storage.delete_all_data()
        except StorageError as e:
            logger.error(f"Failed to delete database records: {e}")
            result.failures.append(f"Database records: {e}")
        try:
            result.bytes_freed = self.artifacts.delete_all()
        except OSError as e:
            logger.error(f"Failed to delete capture files: {e}")
            result.failures.append(f"Capture files: {e}")
        try:
            self.storage.vacuum()
        except StorageError as e:
            logger.error(f"Failed to compact database: {e}")
            result.failures.append(f"Database compaction: {e}")

        self.pipeline.last_processed = None
        if result.is_complete:
            logger.info(f"Purged {result.rows_deleted} rows and {result.bytes_freed} bytes of captures")
        else:
            logger.warning(f"Purge incomplete: {'; '.join(result.failures)}")
        return result

    def today_summary(self):
        return self.storage.get_daily_summary(self.clock().date())


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Activity Pulse capture and summarization daemon")
    parser.add_argument("--config", help="Path to config.yaml (default: ~/.config/activity-pulse/config.yaml)")
    parser.add_argument("--data-dir", help="Override storage.data_dir")
    parser.add_argument("--interval", type=int, help="Capture interval in seconds (5-120)")
    parser.add_argument("--no-ocr", action="store_true", help="Disable text recognition")
    parser.add_argument("--once", action="store_true",
                        help="Capture once, run one aggregation pass and exit")
    parser.add_argument("--purge", action="store_true", help="Delete all recorded data and exit")
    parser.add_argument("--search", metavar="QUERY", help="Search recorded activity and exit")
    parser.add_argument("--init-config", action="store_true",
                        help="Write a default config file if none exists and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config_manager = ConfigManager(args.config)
    if args.init_config:
        config_manager.create_default_file()
        print(f"Configuration at {config_manager.path}")
        return 0

    config = config_manager.config
    if args.data_dir:
        config.storage.data_dir = args.data_dir
    if args.interval is not None:
        config.capture.interval_seconds = args.interval
    if args.no_ocr:
        config.capture.ocr_enabled = False

    daemon = PulseDaemon(config)

    if args.search is not None:
        for hit in daemon.search(args.search):
            print(f"{hit.date:%Y-%m-%d %H:%M}  [{hit.source}] {hit.title}")
            if hit.snippet:
                print(f"    {hit.snippet}")
        return 0

    if args.purge:
        result = daemon.clear_all_data()
        if not result.is_complete:
            print("Purge incomplete: " + "; ".join(result.failures), file=sys.stderr)
            return 1
        print(f"Deleted {result.rows_deleted} records and {result.bytes_freed} bytes of captures")
        return 0

    if args.once:
        result = daemon.run_once()
        summary = daemon.today_summary()
        print(f"Processed {result.samples_fetched} samples into {result.entries_created} entries")
        if summary:
            print(summary.narrative)
        return 0 if result.ok else 1

    daemon.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
