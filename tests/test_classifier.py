"""Tests for rule-based classification, icon hints and productivity scoring."""

import pytest

from pulse.classifier import (ActivityClassifier, DEFAULT_ICON, classify, classify_by_bundle_id,
                              classify_by_text, icon_for_app, is_browser, productivity_score)
from pulse.models import Category


class TestIdentifierAndName:

    def test_bundle_identifier_wins(self):
        assert classify("Spotify", "com.spotify.client", "Now Playing") == Category.ENTERTAINMENT

    def test_app_name_without_identifier(self):
        assert classify("Xcode", "", "") == Category.DEVELOPMENT
        assert classify("Slack", "", "") == Category.COMMUNICATION
        assert classify("Figma", "", "") == Category.DESIGN

    def test_matching_is_case_insensitive(self):
        assert classify("XCODE", "COM.APPLE.DT.XCODE", "") == Category.DEVELOPMENT

    def test_browser_identifier_is_not_an_early_answer(self):
        assert classify_by_bundle_id("com.apple.safari") is None
        assert classify_by_bundle_id("com.apple.safari", allow_browser=True) == Category.BROWSING


class TestBrowsers:

    def test_browser_title_signal(self):
        category = classify("Safari", "com.apple.safari", "Pull Request #12 · acme/app")
        assert category == Category.DEVELOPMENT

    def test_browser_text_signal(self):
        text = "Inbox reply forward subject: quarterly planning thread"
        assert classify("Firefox", "org.mozilla.firefox", "Mozilla Firefox", text) == Category.COMMUNICATION

    def test_browser_without_signal(self):
        assert classify("Firefox", "org.mozilla.firefox", "Mozilla Firefox") == Category.BROWSING

    def test_is_browser(self):
        assert is_browser("Google Chrome", "")
        assert is_browser("Whatever", "com.brave.browser")
        assert not is_browser("Xcode", "com.apple.dt.xcode")


class TestTitleAndText:

    def test_window_title_keywords(self):
        assert classify("Mystery", "", "Inbox (3)") == Category.COMMUNICATION

    def test_text_density(self):
        text = "import Foundation class ViewController func viewDidLoad"
        assert classify_by_text(text) == Category.DEVELOPMENT
        assert classify("Mystery", "", "", text) == Category.DEVELOPMENT

    def test_short_text_is_ignored(self):
        assert classify_by_text("import class def") is None
        assert classify("Mystery", "", "", "import class def") == Category.OTHER

    def test_single_hit_is_not_enough(self):
        assert classify_by_text("the quick fox jumps over a lazy dog near the chart") is None

    def test_nothing_matches(self):
        assert classify("Mystery", "", "") == Category.OTHER
        assert classify("", "", "", None) == Category.OTHER


class TestIcons:

    def test_known_apps(self):
        assert icon_for_app("Safari") == "globe"
        assert icon_for_app("Xcode") == "chevron.left.forwardslash.chevron.right"
        assert icon_for_app("Spotify") == "play.circle.fill"

    def test_unknown_app(self):
        assert icon_for_app("Mystery") == DEFAULT_ICON


class TestProductivityScore:

    def test_empty(self):
        assert productivity_score([]) == 0.0
        assert productivity_score([(Category.DEVELOPMENT, 0)]) == 0.0

    def test_single_category(self):
        assert productivity_score([(Category.ENTERTAINMENT, 600)]) == pytest.approx(0.10)

    def test_duration_weighted(self):
        score = productivity_score([(Category.DEVELOPMENT, 300), (Category.ENTERTAINMENT, 100)])
        assert score == pytest.approx((0.95 * 300 + 0.10 * 100) / 400)

    def test_object_wrapper(self):
        classifier = ActivityClassifier()
        assert classifier.classify("Spotify", "com.spotify.client", "") == Category.ENTERTAINMENT
        assert classifier.productivity_score([(Category.WRITING, 10)]) == pytest.approx(0.90)
