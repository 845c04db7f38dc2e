"""Data retention and storage-budget enforcement.

Two operations, both triggered by the caller:

- ``apply_retention``: delete each record kind older than its own window,
  plus the images of deleted raw samples.
- ``enforce_storage_limit``: when database + images exceed the budget,
  walk a cutoff forward a week at a time deleting raw samples until under
  budget, then do the same for entries, summaries and usage.

Cutoffs are exclusive: a record exactly at the cutoff is kept, anything
strictly older is deleted. Day-keyed kinds (summaries, usage) compare on
the cutoff's day.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, TYPE_CHECKING

from .config import GIB, Config
from .perf import OperationCategory, PerformanceLogger
from .storage import StorageError

if TYPE_CHECKING:
    from .artifacts import CaptureArtifactStore
    from .storage import ActivityStorage

logger = logging.getLogger(__name__)

EVICTION_STEP_DAYS = 7
EVICTION_FLOOR_DAYS = 7


@dataclass
class RetentionPolicy:
    """Retention windows in days and total storage budget in bytes (0 = unlimited)."""
    capture_retention_days: int = 30
    activity_retention_days: int = 90
    summary_retention_days: int = 365
    storage_limit_bytes: int = 5 * GIB

    @classmethod
    def from_config(cls, config: Config) -> "RetentionPolicy":
        return cls(
            capture_retention_days=config.retention.capture_days,
            activity_retention_days=config.retention.activity_days,
            summary_retention_days=config.retention.summary_days,
            storage_limit_bytes=config.storage.storage_limit_bytes,
        )


@dataclass
class RetentionResult:
    """Counts of deleted rows and files, plus any sub-operations that failed."""
    captures_deleted: int = 0
    activity_entries_deleted: int = 0
    summaries_deleted: int = 0
    app_usage_deleted: int = 0
    files_deleted: int = 0
    failures: List[str] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return (self.captures_deleted + self.activity_entries_deleted
                + self.summaries_deleted + self.app_usage_deleted)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)


class RetentionService:
    """Applies a RetentionPolicy to the sample store and capture images.

    Example:
        >>> service = RetentionService(storage, artifacts, RetentionPolicy())
        >>> result = service.apply_retention()
        >>> if result.is_partial:
        ...     print("Purge incomplete:", "; ".join(result.failures))
    """

    def __init__(self, storage: "ActivityStorage", artifacts: "CaptureArtifactStore",
                 policy: Optional[RetentionPolicy] = None,
                 perf: Optional[PerformanceLogger] = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.storage = storage
        self.artifacts = artifacts
        self.policy = policy or RetentionPolicy()
        self.perf = perf if perf is not None else PerformanceLogger()
        self.clock = clock

    def total_storage_bytes(self) -> int:
        """Database files plus all capture images."""
        return self.storage.database_size_bytes() + self.artifacts.total_bytes()

    def _cutoff(self, days: int) -> datetime:
        return self.clock() - timedelta(days=days)

    def _delete_captures(self, cutoff: datetime, result: RetentionResult) -> None:
        """Delete samples before ``cutoff`` and then their images."""
        try:
            paths = self.storage.get_capture_paths_older_than(cutoff)
            result.captures_deleted += self.storage.delete_captures_older_than(cutoff)
        except StorageError as e:
            logger.error(f"Failed to delete captures older than {cutoff}: {e}")
            result.failures.append(f"Captures: {e}")
            return

        failed = 0
        for path in paths:
            try:
                if self.artifacts.delete_image(path):
                    result.files_deleted += 1
            except OSError as e:
                failed += 1
                logger.warning(f"Failed to delete capture image {path}: {e}")
        try:
            result.files_deleted += self.artifacts.delete_captures_older_than(cutoff)
        except OSError as e:
            failed += 1
            logger.warning(f"Failed to sweep capture directories before {cutoff:%Y-%m-%d}: {e}")
        if failed:
            result.failures.append(f"Capture files: {failed} could not be deleted")

    def _delete_derived(self, activity_cutoff: Optional[datetime],
                        summary_cutoff: Optional[datetime], result: RetentionResult) -> None:
        if activity_cutoff is not None:
            try:
                result.activity_entries_deleted += \
                    self.storage.delete_activity_entries_older_than(activity_cutoff)
            except StorageError as e:
                logger.error(f"Failed to delete activity entries: {e}")
                result.failures.append(f"Activity entries: {e}")
        if summary_cutoff is not None:
            try:
                result.summaries_deleted += self.storage.delete_daily_summaries_older_than(summary_cutoff)
            except StorageError as e:
                logger.error(f"Failed to delete daily summaries: {e}")
                result.failures.append(f"Daily summaries: {e}")
            try:
                result.app_usage_deleted += self.storage.delete_app_usage_older_than(summary_cutoff)
            except StorageError as e:
                logger.error(f"Failed to delete app usage: {e}")
                result.failures.append(f"App usage: {e}")

    def apply_retention(self) -> RetentionResult:
        """Delete every record kind older than its retention window.

        A failing sub-operation is recorded in ``failures`` and does not
        stop the others.

        Returns:
            RetentionResult with per-kind counts
        """
        policy = self.policy
        result = RetentionResult()
        with self.perf.measure(OperationCategory.RETENTION, "apply_retention"):
            if policy.capture_retention_days > 0:
                self._delete_captures(self._cutoff(policy.capture_retention_days), result)
            self._delete_derived(
                self._cutoff(policy.activity_retention_days) if policy.activity_retention_days > 0 else None,
                self._cutoff(policy.summary_retention_days) if policy.summary_retention_days > 0 else None,
                result,
            )

        if result.total_deleted or result.files_deleted:
            logger.info(f"Retention deleted {result.total_deleted} rows and {result.files_deleted} files")
        if result.is_partial:
            logger.warning(f"Retention incomplete: {'; '.join(result.failures)}")
        return result

    def enforce_storage_limit(self) -> int:
        """Evict oldest data until total storage fits the budget.

        Raw samples go first: a cutoff starts at the longest retention
        window and moves a week closer each step, and stops at one week
        back. If still over budget, the same walk runs over entries,
        summaries and usage. Any step that deleted rows compacts the
        database before re-measuring so its shrinkage is seen.

        Returns:
            Bytes freed, 0 when no limit is set or usage is within it
        """
        limit = self.policy.storage_limit_bytes
        if limit <= 0:
            return 0
        initial = self.total_storage_bytes()
        if initial <= limit:
            return 0

        logger.warning(f"Storage {initial} bytes exceeds limit {limit}, evicting old data")
        result = RetentionResult()
        usage = initial
        with self.perf.measure(OperationCategory.RETENTION, "enforce_storage_limit"):
            days_back = max(self.policy.capture_retention_days, self.policy.summary_retention_days)
            while usage > limit and days_back > EVICTION_FLOOR_DAYS:
                days_back = max(days_back - EVICTION_STEP_DAYS, EVICTION_FLOOR_DAYS)
                before = result.captures_deleted
                self._delete_captures(self._cutoff(days_back), result)
                if result.captures_deleted > before:
                    self.storage.vacuum()
                usage = self.total_storage_bytes()

            if usage > limit:
                days_back = max(self.policy.activity_retention_days, self.policy.summary_retention_days)
                while usage > limit and days_back > EVICTION_FLOOR_DAYS:
                    days_back = max(days_back - EVICTION_STEP_DAYS, EVICTION_FLOOR_DAYS)
                    cutoff = self._cutoff(days_back)
                    before = result.total_deleted
                    self._delete_derived(cutoff, cutoff, result)
                    if result.total_deleted > before:
                        self.storage.vacuum()
                    usage = self.total_storage_bytes()

        freed = max(initial - usage, 0)
        if result.is_partial:
            logger.warning(f"Storage eviction incomplete: {'; '.join(result.failures)}")
        logger.info(f"Storage eviction freed {freed} bytes, now at {usage} bytes")
        return freed
