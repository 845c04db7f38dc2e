"""Tests for the capture scheduler state machine and capture ticks."""

import pytest

from pulse.capture import (StaticMetadataSource, StaticPermissionGate, StaticScreenSource,
                           StaticTextRecognizer)
from pulse.models import CaptureState, WindowMetadata
from pulse.scheduler import CaptureScheduler
from pulse.storage import StorageError

from conftest import wait_for


class Harness:
    """A scheduler wired to in-memory collaborators."""

    def __init__(self, storage, artifacts, clock, **kwargs):
        self.screen = StaticScreenSource()
        self.metadata = StaticMetadataSource(
            WindowMetadata("Xcode", "com.apple.dt.xcode", "App.swift — MyApp"))
        self.recognizer = StaticTextRecognizer("import Foundation")
        self.gate = StaticPermissionGate()
        self.storage = storage
        self.artifacts = artifacts
        self.statuses = []
        self.captured = []
        self.scheduler = CaptureScheduler(
            self.screen, self.metadata, self.recognizer, artifacts, storage, self.gate,
            interval=kwargs.pop("interval", 120), clock=clock, **kwargs)
        self.scheduler.on_status_change = self.statuses.append
        self.scheduler.on_capture = lambda sample, handle: self.captured.append((sample, handle))


class FailingSink:

    def insert_capture(self, sample):
        raise StorageError("disk full")


@pytest.fixture
def harness(storage, artifacts, clock):
    h = Harness(storage, artifacts, clock, excluded_apps=["1Password"])
    yield h
    h.scheduler.shutdown()


class TestTick:

    def test_capture_persists_sample_and_image(self, harness):
        sample = harness.scheduler.capture_now()

        assert sample is not None
        assert sample.app_name == "Xcode"
        assert sample.ocr_text == "import Foundation"
        assert harness.storage.get_capture_count() == 1
        assert sample.image_path in harness.artifacts.images
        assert harness.captured == [(sample, sample.image_path)]
        assert harness.scheduler.capture_count == 1
        assert harness.scheduler.last_capture == sample.timestamp
        assert harness.scheduler.status.state == CaptureState.IDLE

    def test_tick_does_nothing_unless_capturing(self, harness):
        assert harness.scheduler.run_tick() is None
        assert harness.metadata.calls == 0

    def test_excluded_app_skips_everything(self, harness):
        harness.metadata.metadata = WindowMetadata("1password", "com.agilebits.onepassword")

        assert harness.scheduler.capture_now() is None

        assert harness.metadata.calls == 1
        assert harness.screen.calls == 0
        assert harness.recognizer.calls == 0
        assert harness.storage.get_capture_count() == 0
        assert harness.artifacts.images == {}
        assert harness.captured == []

    def test_exclusion_by_identifier(self, harness):
        harness.scheduler.update_exclusions(["com.agilebits.onepassword"])
        harness.metadata.metadata = WindowMetadata("Vault", "com.agilebits.onepassword")

        assert harness.scheduler.capture_now() is None
        assert harness.screen.calls == 0

    def test_no_screenshot_skips_write(self, harness):
        harness.screen.image_bytes = None

        assert harness.scheduler.capture_now() is None
        assert harness.storage.get_capture_count() == 0

    def test_ocr_disabled(self, harness):
        harness.scheduler.update_ocr_enabled(False)

        sample = harness.scheduler.capture_now()

        assert harness.recognizer.calls == 0
        assert sample.ocr_text is None

    def test_write_failure_sets_error_status(self, harness):
        harness.artifacts.fail_writes = True

        assert harness.scheduler.capture_now() is None

        status = harness.scheduler.status
        assert status.state == CaptureState.ERROR
        assert status.label.startswith("Error: ")
        assert harness.storage.get_capture_count() == 0
        assert harness.captured == []

    def test_insert_failure_removes_saved_image(self, artifacts, clock):
        h = Harness(FailingSink(), artifacts, clock)

        assert h.scheduler.capture_now() is None

        assert h.scheduler.status.state == CaptureState.ERROR
        assert h.scheduler.status.label == "Error: disk full"
        assert artifacts.images == {}
        assert h.captured == []
        h.scheduler.shutdown()

    def test_insert_failure_survives_undeletable_image(self, artifacts, clock):
        artifacts.fail_deletes = True
        h = Harness(FailingSink(), artifacts, clock)

        assert h.scheduler.capture_now() is None

        assert h.scheduler.status.state == CaptureState.ERROR
        h.scheduler.shutdown()

    def test_callback_errors_do_not_fail_the_tick(self, harness):
        def boom(sample, handle):
            raise RuntimeError("boom")

        harness.scheduler.on_capture = boom

        assert harness.scheduler.capture_now() is not None
        assert harness.storage.get_capture_count() == 1


class TestStateMachine:

    def test_start_ticks_immediately(self, harness):
        harness.scheduler.start()

        assert harness.scheduler.is_capturing
        assert wait_for(lambda: harness.storage.get_capture_count() == 1)

    def test_pause_resume_toggle_stop(self, harness):
        scheduler = harness.scheduler
        scheduler.start()
        wait_for(lambda: scheduler.capture_count == 1)

        scheduler.pause()
        assert scheduler.status.state == CaptureState.PAUSED
        assert scheduler.run_tick() is None

        scheduler.resume()
        assert scheduler.status.state == CaptureState.CAPTURING

        scheduler.toggle()
        assert scheduler.status.state == CaptureState.PAUSED
        scheduler.toggle()
        assert scheduler.status.state == CaptureState.CAPTURING

        scheduler.stop()
        assert scheduler.status.state == CaptureState.IDLE
        scheduler.toggle()
        assert scheduler.status.state == CaptureState.CAPTURING

    def test_status_callback_sees_each_change(self, harness):
        harness.scheduler.start()
        harness.scheduler.pause()
        harness.scheduler.stop()

        assert [s.label for s in harness.statuses] == ["Capturing", "Paused", "Idle"]

    def test_permission_denied_on_start(self, harness):
        harness.gate.allow = False

        harness.scheduler.start()

        assert harness.scheduler.status.state == CaptureState.PERMISSION_DENIED
        assert harness.scheduler.status.label == "No Permission"
        assert harness.gate.request_count == 1
        assert harness.screen.calls == 0

    def test_permission_revoked_while_capturing(self, harness):
        harness.scheduler.start()
        assert harness.gate.granted

        harness.gate.allow = False
        harness.gate.check()

        assert harness.scheduler.status.state == CaptureState.PERMISSION_DENIED

    def test_restart_after_error(self, harness):
        harness.artifacts.fail_writes = True
        harness.scheduler.start()
        assert wait_for(lambda: harness.scheduler.status.state == CaptureState.ERROR)

        harness.artifacts.fail_writes = False
        harness.scheduler.start()

        assert harness.scheduler.is_capturing
        assert wait_for(lambda: harness.storage.get_capture_count() == 1)

    def test_interval_change_reschedules_with_immediate_tick(self, harness):
        harness.scheduler.start()
        assert wait_for(lambda: harness.scheduler.capture_count == 1)

        harness.scheduler.update_interval(60)

        assert harness.scheduler.interval == 60
        assert wait_for(lambda: harness.scheduler.capture_count == 2)

    def test_interval_is_clamped(self, harness):
        harness.scheduler.update_interval(1)
        assert harness.scheduler.interval == 5
        harness.scheduler.update_interval(600)
        assert harness.scheduler.interval == 120
