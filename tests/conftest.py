"""Shared fixtures: a throwaway database, in-memory collaborators and a manual clock."""

import time
from datetime import datetime, timedelta

import pytest

from pulse.artifacts import InMemoryCaptureStore
from pulse.models import RawSample
from pulse.storage import ActivityStorage


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def wait_for(predicate, timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is truthy or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


def make_sample(ts: datetime, app_name: str = "Xcode", window_title: str = "App.swift — MyApp",
                ocr_text=None, bundle_identifier: str = "", image_path: str = "") -> RawSample:
    return RawSample(
        timestamp=ts,
        app_name=app_name,
        bundle_identifier=bundle_identifier,
        window_title=window_title,
        image_path=image_path,
        ocr_text=ocr_text,
    )


@pytest.fixture
def storage(tmp_path):
    return ActivityStorage(str(tmp_path / "activity.db"))


@pytest.fixture
def artifacts():
    return InMemoryCaptureStore()


@pytest.fixture
def clock():
    # mid-afternoon so "since midnight" windows have room on both sides
    return ManualClock(datetime(2026, 3, 10, 14, 0, 0))
