"""Tests for retention windows and storage-budget eviction."""

from datetime import date, timedelta

import pytest

from pulse.config import Config
from pulse.models import ActivityEntry, AppUsage, Category, DailySummary
from pulse.retention import RetentionPolicy, RetentionService

from conftest import make_sample

MB = 1024 * 1024


def _entry(ts):
    return ActivityEntry(timestamp=ts, app_name="Xcode", app_icon="hammer", title="t",
                         summary="s", category=Category.DEVELOPMENT, duration=60)


def _summary(day):
    return DailySummary(day=day, total_screen_time=60, narrative="n",
                        activity_count=1, productivity_score=0.9)


def _capture_with_image(storage, artifacts, ts, size=10):
    path = f"Captures/{ts.date().isoformat()}/{ts.timestamp()}.png"
    artifacts.images[path] = (ts.date(), b"x" * size)
    storage.insert_capture(make_sample(ts, image_path=path))
    return path


@pytest.fixture
def service(storage, artifacts, clock):
    return RetentionService(storage, artifacts, RetentionPolicy(), clock=clock)


class TestPolicy:

    def test_from_config(self):
        config = Config()
        config.retention.capture_days = 7
        config.storage.storage_limit_gb = 1

        policy = RetentionPolicy.from_config(config)

        assert policy.capture_retention_days == 7
        assert policy.activity_retention_days == 90
        assert policy.storage_limit_bytes == 1024 ** 3


class TestApplyRetention:

    def test_cutoffs_are_exclusive(self, service, storage, artifacts, clock):
        now = clock()
        capture_cutoff = now - timedelta(days=30)
        kept_path = _capture_with_image(storage, artifacts, capture_cutoff)
        old_path = _capture_with_image(storage, artifacts, capture_cutoff - timedelta(seconds=1))

        activity_cutoff = now - timedelta(days=90)
        storage.insert_activity_entry(_entry(activity_cutoff))
        storage.insert_activity_entry(_entry(activity_cutoff - timedelta(seconds=1)))

        summary_cutoff_day = (now - timedelta(days=365)).date()
        for day in (summary_cutoff_day, summary_cutoff_day - timedelta(days=1)):
            storage.upsert_daily_summary(_summary(day))
            storage.upsert_app_usage(AppUsage(day, "Xcode", "hammer", 60, Category.DEVELOPMENT))

        result = service.apply_retention()

        assert not result.is_partial
        assert result.captures_deleted == 1
        assert result.activity_entries_deleted == 1
        assert result.summaries_deleted == 1
        assert result.app_usage_deleted == 1
        assert result.total_deleted == 4
        assert result.files_deleted == 1
        assert kept_path in artifacts.images
        assert old_path not in artifacts.images
        assert storage.get_capture_count() == 1
        assert storage.get_daily_summary(summary_cutoff_day) is not None

    def test_zero_days_keeps_everything(self, storage, artifacts, clock):
        policy = RetentionPolicy(capture_retention_days=0, activity_retention_days=0,
                                 summary_retention_days=0)
        service = RetentionService(storage, artifacts, policy, clock=clock)
        _capture_with_image(storage, artifacts, clock() - timedelta(days=1000))
        storage.insert_activity_entry(_entry(clock() - timedelta(days=1000)))

        result = service.apply_retention()

        assert result.total_deleted == 0
        assert storage.get_capture_count() == 1
        assert len(artifacts.images) == 1

    def test_file_failures_are_reported_not_fatal(self, service, storage, artifacts, clock):
        _capture_with_image(storage, artifacts, clock() - timedelta(days=40))
        storage.insert_activity_entry(_entry(clock() - timedelta(days=200)))
        artifacts.fail_deletes = True

        result = service.apply_retention()

        assert result.is_partial
        assert any("Capture files" in f for f in result.failures)
        assert result.captures_deleted == 1
        assert result.activity_entries_deleted == 1

    def test_nothing_to_delete(self, service):
        result = service.apply_retention()
        assert result.total_deleted == 0
        assert not result.is_partial


class TestStorageLimit:

    def test_unlimited(self, storage, artifacts, clock):
        service = RetentionService(storage, artifacts, RetentionPolicy(storage_limit_bytes=0), clock=clock)
        _capture_with_image(storage, artifacts, clock() - timedelta(days=100), size=MB)
        assert service.enforce_storage_limit() == 0
        assert storage.get_capture_count() == 1

    def test_under_limit(self, service, storage, artifacts, clock):
        _capture_with_image(storage, artifacts, clock() - timedelta(days=100))
        assert service.enforce_storage_limit() == 0
        assert storage.get_capture_count() == 1

    def test_evicts_oldest_captures_first(self, storage, artifacts, clock):
        for age in range(10, 101, 10):
            _capture_with_image(storage, artifacts, clock() - timedelta(days=age), size=5 * MB)
        storage.insert_activity_entry(_entry(clock() - timedelta(days=60)))
        limit = 17 * MB
        service = RetentionService(storage, artifacts, RetentionPolicy(storage_limit_bytes=limit),
                                   clock=clock)
        assert service.total_storage_bytes() > limit

        freed = service.enforce_storage_limit()

        assert freed > 0
        assert service.total_storage_bytes() <= limit
        assert storage.get_capture_count() == 3
        assert len(artifacts.images) == 3
        # derived records are untouched once captures bring usage under budget
        assert len(storage.get_activity_entries(clock() - timedelta(days=365), clock())) == 1

    def test_database_heavy_captures_evicted_one_step_at_a_time(self, storage, artifacts, clock):
        text = "invoice " * 6000
        for age in range(10, 101, 10):
            storage.insert_capture(make_sample(clock() - timedelta(days=age), ocr_text=text))
        storage.vacuum()
        service = RetentionService(storage, artifacts, clock=clock)
        limit = service.total_storage_bytes() - len(text) // 2
        service.policy = RetentionPolicy(storage_limit_bytes=limit)

        freed = service.enforce_storage_limit()

        assert freed > 0
        assert service.total_storage_bytes() <= limit
        remaining = storage.get_captures(clock() - timedelta(days=365), clock())
        assert len(remaining) == 9
        assert min(s.timestamp for s in remaining) == clock() - timedelta(days=90)

    def test_never_evicts_the_last_week(self, storage, artifacts, clock):
        storage.insert_activity_entry(_entry(clock() - timedelta(days=100)))
        storage.insert_activity_entry(_entry(clock() - timedelta(days=3)))
        storage.upsert_daily_summary(_summary((clock() - timedelta(days=100)).date()))
        storage.upsert_daily_summary(_summary(date(2026, 3, 8)))
        service = RetentionService(storage, artifacts, RetentionPolicy(storage_limit_bytes=1),
                                   clock=clock)

        service.enforce_storage_limit()

        entries = storage.get_activity_entries(clock() - timedelta(days=365), clock())
        assert [e.timestamp for e in entries] == [clock() - timedelta(days=3)]
        assert [s.day for s in storage.get_all_daily_summaries()] == [date(2026, 3, 8)]
