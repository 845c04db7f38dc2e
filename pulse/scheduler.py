"""Capture scheduler: paces sampling and runs each capture tick.

The scheduler owns a cancellable periodic timer and a single worker
thread. The timer only enqueues tick requests; the worker performs the
OS-facing work (window metadata, screenshot, OCR) and persistence, so
neither the caller nor the timer thread ever blocks on capture.

States::

    idle -> capturing <-> paused
      ^         |
      +--stop---+        start() may also land in permission_denied;
                         a failed write lands in error(message)

A tick reads window metadata first. When the app name or identifier is
excluded, the tick ends there: no screenshot, no OCR, no write and no
callback. Otherwise the image is saved to the artifact store, the
RawSample is written to the sample store and ``on_capture`` fires.
"""

import logging
import queue
import threading
from datetime import datetime
from typing import Callable, Iterable, Optional, Protocol, TYPE_CHECKING

from .artifacts import StorageUnavailableError
from .capture import ScreenCaptureError
from .config import clamp_interval
from .models import (CAPTURING, IDLE, PAUSED, PERMISSION_DENIED, CaptureResult,
                     CaptureState, CaptureStatus, RawSample)
from .perf import OperationCategory, PerformanceLogger
from .storage import StorageError

if TYPE_CHECKING:
    from .artifacts import CaptureArtifactStore
    from .capture import MetadataSource, PermissionGate, ScreenSource, TextRecognizer

logger = logging.getLogger(__name__)


class SampleSink(Protocol):
    def insert_capture(self, sample: RawSample) -> None: ...


class CaptureScheduler:
    """Drives periodic capture ticks.

    Attributes:
        interval (float): Seconds between ticks, clamped to 5-120
        excluded_apps (set): Lower-cased app names/identifiers never captured
        ocr_enabled (bool): Run text recognition on captured images
        on_capture: Called with (RawSample, storage handle) after each
            successfully persisted sample
        on_status_change: Called with the new CaptureStatus on every change

    Example:
        >>> scheduler = CaptureScheduler(screen, metadata, recognizer,
        ...                              artifacts, storage, gate)
        >>> scheduler.on_capture = lambda sample, path: pipeline_debouncer.trigger()
        >>> scheduler.start()
    """

    def __init__(self, screen: "ScreenSource", metadata: "MetadataSource",
                 recognizer: "TextRecognizer", artifacts: "CaptureArtifactStore",
                 sink: SampleSink, gate: "PermissionGate", interval: float = 30,
                 excluded_apps: Iterable[str] = (), ocr_enabled: bool = True,
                 perf: Optional[PerformanceLogger] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.screen = screen
        self.metadata = metadata
        self.recognizer = recognizer
        self.artifacts = artifacts
        self.sink = sink
        self.gate = gate
        self.interval = clamp_interval(interval)
        self.excluded_apps = {a.lower() for a in excluded_apps}
        self.ocr_enabled = ocr_enabled
        self.perf = perf if perf is not None else PerformanceLogger()
        self.clock = clock

        self.on_capture: Optional[Callable[[RawSample, str], None]] = None
        self.on_status_change: Optional[Callable[[CaptureStatus], None]] = None

        self._status = IDLE
        self._capture_count = 0
        self._last_capture: Optional[datetime] = None
        self._lock = threading.RLock()
        self._tick_lock = threading.Lock()
        self._timer_stop: Optional[threading.Event] = None
        self._queue: queue.Queue = queue.Queue(maxsize=1)
        self._worker: Optional[threading.Thread] = None

        if self.gate.on_revoked is None:
            self.gate.on_revoked = self.handle_permission_revoked

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> CaptureStatus:
        return self._status

    @property
    def is_capturing(self) -> bool:
        return self._status.state == CaptureState.CAPTURING

    @property
    def capture_count(self) -> int:
        return self._capture_count

    @property
    def last_capture(self) -> Optional[datetime]:
        return self._last_capture

    def _set_status(self, status: CaptureStatus) -> None:
        if status == self._status:
            return
        logger.info(f"Capture status: {self._status.label} -> {status.label}")
        self._status = status
        if self.on_status_change:
            try:
                self.on_status_change(status)
            except Exception as e:
                logger.error(f"Status change callback error: {e}")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin capturing if permitted. A tick fires immediately."""
        with self._lock:
            if self.is_capturing:
                return
            if not self.gate.check():
                self._cancel_timer()
                self._set_status(PERMISSION_DENIED)
                self.gate.request()
                return
            self._set_status(CAPTURING)
            self._schedule()

    def capture_now(self) -> Optional[RawSample]:
        """Run a single tick on the calling thread without starting the timer.

        Returns:
            The persisted sample, or None if denied, excluded or failed
        """
        with self._lock:
            if self.is_capturing:
                return None
            if not self.gate.check():
                self._set_status(PERMISSION_DENIED)
                self.gate.request()
                return None
            self._set_status(CAPTURING)
        try:
            return self.run_tick()
        finally:
            with self._lock:
                if self.is_capturing:
                    self._set_status(IDLE)

    def pause(self) -> None:
        with self._lock:
            if not self.is_capturing:
                return
            self._cancel_timer()
            self._set_status(PAUSED)

    def resume(self) -> None:
        with self._lock:
            if self._status.state != CaptureState.PAUSED:
                return
            self._set_status(CAPTURING)
            self._schedule()

    def toggle(self) -> None:
        with self._lock:
            state = self._status.state
            if state == CaptureState.CAPTURING:
                self.pause()
            elif state == CaptureState.PAUSED:
                self.resume()
            else:
                self.start()

    def stop(self) -> None:
        """Cancel the timer and return to idle. An in-flight tick may finish."""
        with self._lock:
            self._cancel_timer()
            self._set_status(IDLE)

    def shutdown(self, timeout: float = 5) -> None:
        """Stop capturing and join the worker thread."""
        self.stop()
        worker = self._worker
        if worker is None:
            return
        self._queue.put(None)
        worker.join(timeout=timeout)
        self._worker = None

    def handle_permission_revoked(self, permission_name: str) -> None:
        logger.warning(f"{permission_name} permission revoked, stopping capture")
        with self._lock:
            self._cancel_timer()
            self._set_status(PERMISSION_DENIED)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    def update_interval(self, seconds: float) -> None:
        """Change the interval. While capturing, the timer restarts with an immediate tick."""
        with self._lock:
            self.interval = clamp_interval(seconds)
            if self.is_capturing:
                self._schedule()

    def update_exclusions(self, app_names: Iterable[str]) -> None:
        self.excluded_apps = {a.lower() for a in app_names}

    def update_ocr_enabled(self, enabled: bool) -> None:
        self.ocr_enabled = enabled

    def is_excluded(self, app_name: str, bundle_identifier: str) -> bool:
        return (app_name or "").lower() in self.excluded_apps or \
            (bundle_identifier or "").lower() in self.excluded_apps

    # ------------------------------------------------------------------
    # Timer and worker
    # ------------------------------------------------------------------

    def _schedule(self) -> None:
        self._cancel_timer()
        self._ensure_worker()
        stop_event = threading.Event()
        self._timer_stop = stop_event
        threading.Thread(target=self._timer_loop, args=(stop_event, self.interval),
                         daemon=True, name="capture-timer").start()

    def _cancel_timer(self) -> None:
        if self._timer_stop is not None:
            self._timer_stop.set()
            self._timer_stop = None

    def _timer_loop(self, stop_event: threading.Event, interval: float) -> None:
        while not stop_event.is_set():
            try:
                self._queue.put_nowait("tick")
            except queue.Full:
                logger.debug("Previous capture tick still pending, skipping")
            if stop_event.wait(interval):
                break

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._worker_loop, daemon=True, name="capture-worker")
        self._worker.start()

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            if item is None:
                break
            try:
                self.run_tick()
            except Exception as e:
                logger.error(f"Unexpected error in capture tick: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def run_tick(self) -> Optional[RawSample]:
        """Perform one capture tick on the calling thread.

        Does nothing unless the scheduler is capturing.

        Returns:
            The persisted sample, or None if the tick was skipped or failed
        """
        with self._tick_lock:
            if not self.is_capturing:
                return None
            with self.perf.measure(OperationCategory.CAPTURE_PIPELINE, "capture_tick"):
                return self._perform_capture()

    def _perform_capture(self) -> Optional[RawSample]:
        with self.perf.measure(OperationCategory.METADATA):
            try:
                metadata = self.metadata.read_frontmost_window()
            except Exception as e:
                logger.warning(f"Failed to read window metadata, skipping tick: {e}")
                return None

        if self.is_excluded(metadata.app_name, metadata.bundle_identifier):
            logger.debug(f"Skipping excluded app {metadata.app_name}")
            return None

        with self.perf.measure(OperationCategory.SCREENSHOT):
            try:
                image = self.screen.capture_active_window()
            except ScreenCaptureError as e:
                logger.warning(f"Screenshot failed, skipping tick: {e}")
                return None
        if not image:
            logger.debug("No screenshot available, skipping tick")
            return None

        ocr = None
        if self.ocr_enabled:
            with self.perf.measure(OperationCategory.OCR):
                try:
                    ocr = self.recognizer.recognize_text(image)
                except Exception as e:
                    logger.warning(f"Text recognition failed: {e}")

        result = CaptureResult(metadata=metadata, image_bytes=image,
                               timestamp=self.clock(), ocr=ocr)
        handle = None
        try:
            handle = self.artifacts.save(result)
            sample = RawSample.from_capture(result, handle)
            self.sink.insert_capture(sample)
        except (StorageUnavailableError, StorageError, OSError) as e:
            logger.error(f"Failed to persist capture: {e}")
            if handle:
                self._discard_artifact(handle)
            with self._lock:
                self._cancel_timer()
                self._set_status(CaptureStatus.error(str(e)))
            return None

        self._capture_count += 1
        self._last_capture = result.timestamp
        logger.debug(f"Captured {sample.app_name}: {sample.window_title[:50]}")

        if self.on_capture:
            try:
                self.on_capture(sample, handle)
            except Exception as e:
                logger.error(f"Capture callback error: {e}", exc_info=True)
        return sample

    def _discard_artifact(self, handle: str) -> None:
        # image saved but its row never landed
        try:
            self.artifacts.delete_image(handle)
        except OSError as e:
            logger.warning(f"Failed to remove orphaned capture {handle}: {e}")
