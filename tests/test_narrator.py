"""Tests for duration formatting and activity/day narration."""

from datetime import date, datetime

import pytest

from pulse.models import ActivityEntry, AppUsage, Category
from pulse.narrator import HeuristicNarrator, format_duration, truncate_title


def _entry(app, category, duration):
    return ActivityEntry(
        timestamp=datetime(2026, 3, 10, 9, 0),
        app_name=app,
        app_icon="app.fill",
        title=app,
        summary="",
        category=category,
        duration=duration,
    )


def _usage(app, category, duration):
    return AppUsage(day=date(2026, 3, 10), app_name=app, app_icon="app.fill",
                    duration=duration, category=category)


@pytest.mark.parametrize("seconds, expected", [
    (0, "0s"),
    (45, "45s"),
    (59.9, "59s"),
    (300, "5m"),
    (330, "5m 30s"),
    (7200, "2h"),
    (8100, "2h 15m"),
])
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


def test_truncate_title():
    assert truncate_title("  short  ") == "short"
    assert truncate_title("x" * 60) == "x" * 50 + "..."


class TestSummarizeActivity:

    def setup_method(self):
        self.narrator = HeuristicNarrator()

    def test_code_file(self):
        sentence = self.narrator.summarize_activity(
            "Xcode", "App.swift — MyApp", None, Category.DEVELOPMENT, 150)
        assert sentence == "Editing App.swift in Xcode for 2m 30s."

    def test_terminal_uses_last_prompt(self):
        sentence = self.narrator.summarize_activity(
            "Terminal", "bash", "ls\n$ make test\n$ git status", Category.DEVELOPMENT, 60)
        assert sentence == "Working in terminal ($ git status) for 1m."

    def test_browsing(self):
        sentence = self.narrator.summarize_activity("Safari", "Docs", None, Category.BROWSING, 30)
        assert sentence == 'Browsing "Docs" in Safari for 30s.'

    def test_email_inbox(self):
        sentence = self.narrator.summarize_activity("Mail", "Inbox (4)", None, Category.COMMUNICATION, 120)
        assert sentence == "Checking email in Mail for 2m."

    def test_empty_title_falls_back_to_generic(self):
        sentence = self.narrator.summarize_activity("Spotify", "", None, Category.ENTERTAINMENT, 90)
        assert sentence == "Using Spotify for leisure (1m 30s)."

    def test_other_category_is_generic(self):
        sentence = self.narrator.summarize_activity("Mystery", "Window", None, Category.OTHER, 10)
        assert sentence == "Using Mystery for 10s."


class TestSummarizeDay:

    def setup_method(self):
        self.narrator = HeuristicNarrator()

    def test_no_entries(self):
        assert self.narrator.summarize_day([], 0, [], 0.0) == "No activity recorded today."

    def test_full_narrative(self):
        entries = [_entry("Xcode", Category.DEVELOPMENT, 2400), _entry("Slack", Category.COMMUNICATION, 1200)]
        usage = [_usage("Xcode", Category.DEVELOPMENT, 2400), _usage("Slack", Category.COMMUNICATION, 1200)]

        narrative = self.narrator.summarize_day(entries, 3600, usage, 0.5)

        assert narrative == (
            "You spent 1h 0m on screen today across 2 activities. "
            "Most time was spent in Xcode and Slack. "
            "Development was your primary focus at 66% of total time. "
            "Productivity score: 50% — a balanced day of work and other activities. "
            "Development work totaled 40m. "
            "Communication took 20m."
        )

    def test_three_top_apps(self):
        entries = [_entry("Notes", Category.WRITING, 300)]
        usage = [_usage(name, Category.WRITING, 100) for name in ("Notes", "Pages", "Word", "Bear")]

        narrative = self.narrator.summarize_day(entries, 300, usage, 0.9)

        assert "You spent 5 minutes on screen today across 1 activities." in narrative
        assert "Top apps: Notes, Pages, and Word." in narrative
        assert "Bear" not in narrative
        assert "a highly focused day." in narrative

    def test_zero_total_reports_zero_percent(self):
        entries = [_entry("Mystery", Category.OTHER, 0)]

        narrative = self.narrator.summarize_day(entries, 0, [], 0.0)

        assert "Other was your primary focus at 0% of total time." in narrative
        assert "mostly leisure and non-work activities." in narrative
