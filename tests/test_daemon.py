"""End-to-end tests of the wired daemon with in-memory collaborators."""

from datetime import timedelta

import pytest

from pulse.artifacts import InMemoryCaptureStore
from pulse.capture import (StaticMetadataSource, StaticPermissionGate, StaticScreenSource,
                           StaticTextRecognizer)
from pulse.config import Config, ConfigManager
from pulse.daemon import PulseDaemon, main
from pulse.models import ActivityEntry, Category, WindowMetadata

from conftest import make_sample, wait_for


@pytest.fixture
def daemon(tmp_path, clock):
    config = Config()
    config.storage.data_dir = str(tmp_path)
    config.aggregation.debounce_seconds = 0.05
    d = PulseDaemon(
        config,
        screen=StaticScreenSource(),
        metadata=StaticMetadataSource(WindowMetadata("Xcode", "com.apple.dt.xcode", "App.swift — MyApp")),
        recognizer=StaticTextRecognizer("import Foundation"),
        gate=StaticPermissionGate(),
        artifacts=InMemoryCaptureStore(),
        clock=clock,
    )
    yield d
    d.debouncer.cancel()
    d.scheduler.shutdown()


def _seed_samples(daemon, clock, count=2):
    for i in range(count, 0, -1):
        daemon.storage.insert_capture(make_sample(clock() - timedelta(seconds=30 * i),
                                                  ocr_text="import Foundation"))


def test_builds_storage_under_data_dir(daemon, tmp_path):
    assert daemon.storage.db_path == str(tmp_path / "activity.db")


def test_run_once_captures_and_aggregates(daemon, clock):
    _seed_samples(daemon, clock)

    result = daemon.run_once()

    assert result.samples_fetched == 3
    assert result.entries_created == 1
    summary = daemon.today_summary()
    assert summary is not None
    assert summary.activity_count == 1


def test_capture_triggers_debounced_aggregation(daemon, clock):
    _seed_samples(daemon, clock)

    daemon.scheduler.capture_now()

    assert wait_for(lambda: daemon.today_summary() is not None)


def test_search_merges_sources_newest_first(daemon, clock):
    now = clock()
    daemon.storage.insert_capture(make_sample(now - timedelta(hours=2), ocr_text="quarterly invoice"))
    daemon.storage.insert_activity_entry(ActivityEntry(
        timestamp=now - timedelta(hours=1), app_name="Mail", app_icon="message.fill",
        title="Invoice", summary="Writing a message about the invoice",
        category=Category.COMMUNICATION, duration=60))

    results = daemon.search("invoice")

    assert [r.source for r in results] == ["activity", "capture"]
    assert results[0].category == "Communication"
    assert results[1].matched_field == "ocr_text"
    assert daemon.search("  ") == []


def test_clear_all_data(daemon, clock):
    _seed_samples(daemon, clock)
    daemon.run_once()
    assert daemon.storage.total_row_count() > 0

    result = daemon.clear_all_data()

    assert result.is_complete
    assert result.rows_deleted > 0
    assert daemon.storage.total_row_count() == 0
    assert daemon.artifacts.total_bytes() == 0
    assert daemon.search("foundation") == []


def test_run_retention_survives_failures(daemon, clock):
    daemon.storage.insert_capture(make_sample(clock() - timedelta(days=60), image_path="gone.png"))
    daemon.artifacts.fail_deletes = True

    daemon.run_retention()

    assert daemon.storage.get_capture_count() == 0


def test_start_and_stop(daemon):
    daemon.start()
    assert daemon.scheduler.is_capturing
    assert wait_for(lambda: daemon.scheduler.capture_count >= 1)

    daemon.stop()

    assert not daemon.running
    assert not daemon.scheduler.is_capturing
    assert not daemon.pipeline.is_running


def test_cli_search_and_purge(tmp_path, capsys):
    args = ["--config", str(tmp_path / "config.yaml"), "--data-dir", str(tmp_path / "data")]

    assert main(args + ["--search", "anything"]) == 0
    assert main(args + ["--purge"]) == 0
    assert "Deleted 0 records" in capsys.readouterr().out


def test_cli_init_config_writes_defaults(tmp_path):
    path = tmp_path / "config.yaml"

    assert main(["--config", str(path), "--init-config"]) == 0

    assert path.exists()
    assert main(["--config", str(path), "--init-config"]) == 0
    assert ConfigManager(path).config == Config()
