"""Rule-based activity classification.

Maps a sample's app identifier, app name, window title and OCR text to one
of the fixed :class:`~pulse.models.Category` values, and derives icon
hints and a productivity score from categories.

Signals are tried from most to least specific and the first confident
match wins:

1. bundle/app identifier substrings (browsers excluded)
2. app name substrings (browsers excluded)
3. for browsers only: window title, then OCR text, ignoring a "browsing"
   answer from either
4. window title keywords
5. OCR keyword density (needs more than 3 words and at least 2 hits)
6. "Browsing" for browsers, otherwise "Other"

Every rule is a case-insensitive substring test, so the classifier is a
total, deterministic function of its inputs.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Category


@dataclass
class KeywordRule:
    """Substring patterns that map to a category."""
    category: Category
    patterns: List[str]

    def matches(self, text: str) -> bool:
        return any(p in text for p in self.patterns)

    def hits(self, text: str) -> int:
        return sum(1 for p in self.patterns if p in text)


# Identifier rules - order matters for priority
BUNDLE_RULES: List[KeywordRule] = [
    KeywordRule(Category.DEVELOPMENT, [
        "com.apple.dt.xcode", "com.microsoft.vscode", "com.jetbrains", "com.sublimetext",
        "com.github.atom", "dev.zed", "com.todesktop.cursor", "com.googlecode.iterm2",
        "com.apple.terminal", "net.kovidgoyal.kitty", "com.mitchellh.ghostty",
        "co.warp.warpterm",
    ]),
    KeywordRule(Category.COMMUNICATION, [
        "com.apple.mail", "com.microsoft.outlook", "com.tinyspeck.slackmacgap",
        "com.microsoft.teams", "us.zoom.xos", "com.apple.messages", "com.apple.facetime",
        "ru.keepcoder.telegram", "com.hnc.discord", "com.whatsapp",
    ]),
    KeywordRule(Category.BROWSING, [
        "com.apple.safari", "com.google.chrome", "org.mozilla.firefox",
        "company.thebrowser.browser", "com.microsoft.edgemac", "com.brave.browser",
        "com.vivaldi.vivaldi", "com.operasoftware.opera",
    ]),
    KeywordRule(Category.DESIGN, [
        "com.figma", "com.bohemiancoding.sketch", "com.adobe.photoshop",
        "com.adobe.illustrator", "com.adobe.xd", "com.pixelmatorteam",
        "com.apple.garageband", "com.adobe.indesign",
    ]),
    KeywordRule(Category.WRITING, [
        "com.apple.iwork.pages", "com.microsoft.word", "com.google.docs",
        "com.ulyssesapp", "md.obsidian", "com.apple.notes", "com.notion",
        "abnerworks.typora", "com.bear-writer",
    ]),
    KeywordRule(Category.PRODUCTIVITY, [
        "com.apple.iwork.keynote", "com.apple.iwork.numbers", "com.microsoft.excel",
        "com.microsoft.powerpoint", "com.apple.finder", "com.apple.preview",
        "com.apple.calculator", "com.apple.calendar", "com.apple.reminders",
        "com.todoist", "com.linear", "com.asana",
    ]),
    KeywordRule(Category.ENTERTAINMENT, [
        "com.apple.music", "com.spotify", "com.apple.tv", "com.netflix", "com.youtube",
        "com.apple.podcasts", "com.valvesoftware.steam",
    ]),
]

BROWSER_APPS = ["safari", "chrome", "firefox", "arc", "edge", "brave", "vivaldi", "opera"]
COMMUNICATION_APPS = ["mail", "outlook", "slack", "teams", "zoom", "messages", "facetime",
                      "telegram", "discord", "whatsapp", "signal"]
DEV_APPS = ["xcode", "visual studio code", "vscode", "terminal", "iterm", "kitty", "ghostty",
            "warp", "intellij", "webstorm", "pycharm", "cursor", "zed", "sublime text",
            "neovim", "vim"]
DESIGN_APPS = ["figma", "sketch", "photoshop", "illustrator", "pixelmator", "affinity",
               "canva", "garageband", "logic pro", "final cut"]
WRITING_APPS = ["pages", "word", "obsidian", "notion", "typora", "bear", "ulysses",
                "ia writer", "scrivener", "notes"]
PRODUCTIVITY_APPS = ["numbers", "excel", "keynote", "powerpoint", "finder", "preview",
                     "calendar", "reminders", "todoist", "linear", "asana", "jira", "trello"]
ENTERTAINMENT_APPS = ["music", "spotify", "tv", "netflix", "youtube", "podcasts", "steam",
                      "twitch"]
SYSTEM_APPS = ["system preferences", "system settings", "activity monitor", "disk utility",
               "console", "keychain"]

# App-name rules in priority order; the browser rule only applies when allowed
APP_NAME_RULES: List[KeywordRule] = [
    KeywordRule(Category.DEVELOPMENT, DEV_APPS),
    KeywordRule(Category.COMMUNICATION, COMMUNICATION_APPS),
    KeywordRule(Category.BROWSING, BROWSER_APPS),
    KeywordRule(Category.DESIGN, DESIGN_APPS),
    KeywordRule(Category.WRITING, WRITING_APPS),
    KeywordRule(Category.PRODUCTIVITY, PRODUCTIVITY_APPS),
    KeywordRule(Category.ENTERTAINMENT, ENTERTAINMENT_APPS),
]

TITLE_RULES: List[KeywordRule] = [
    KeywordRule(Category.DEVELOPMENT, [
        ".swift", ".py", ".ts", ".js", ".rs", ".go", ".java", ".c", ".cpp", ".rb", ".kt",
        ".cs", "debug", "build", "compile", "github.com", "gitlab.com",
        "stackoverflow.com", "localhost:", "pull request", "merge request",
    ]),
    KeywordRule(Category.COMMUNICATION, ["inbox", "compose", "new message", "chat", "meeting", "call"]),
    KeywordRule(Category.DESIGN, ["figma", "untitled design", "canvas", "artboard", "layer"]),
    KeywordRule(Category.WRITING, ["untitled document", "draft", "writing", "essay", "blog post"]),
    KeywordRule(Category.ENTERTAINMENT, ["youtube", "netflix", "twitch", "spotify", "now playing"]),
]

# Keyword-density groups; list order breaks ties between equal scores
TEXT_RULES: List[KeywordRule] = [
    KeywordRule(Category.DEVELOPMENT, [
        "func ", "class ", "import ", "return ", "var ", "let ", "def ", "const ",
        "function ", "struct ", "enum ", "protocol ", "interface ", "error", "debug",
        "build", "compile", "commit", "branch", "merge", "pull request", "console",
        "terminal", "npm", "git", "docker",
    ]),
    KeywordRule(Category.COMMUNICATION, [
        "inbox", "sent", "reply", "forward", "subject:", "from:", "to:", "message", "chat",
        "thread", "channel", "mention", "notification",
    ]),
    KeywordRule(Category.PRODUCTIVITY, [
        "spreadsheet", "formula", "cell", "row", "column", "chart", "presentation", "slide",
        "table", "total", "sum", "average", "task", "project", "deadline", "due date",
        "priority",
    ]),
    KeywordRule(Category.WRITING, [
        "paragraph", "heading", "bold", "italic", "font", "style", "document", "page",
        "chapter", "section", "outline", "draft",
    ]),
]

MIN_TEXT_WORDS = 4
MIN_TEXT_HITS = 2

PRODUCTIVITY_WEIGHTS: Dict[Category, float] = {
    Category.DEVELOPMENT: 0.95,
    Category.WRITING: 0.90,
    Category.DESIGN: 0.85,
    Category.PRODUCTIVITY: 0.80,
    Category.COMMUNICATION: 0.55,
    Category.BROWSING: 0.40,
    Category.OTHER: 0.30,
    Category.ENTERTAINMENT: 0.10,
}

# Icon hints, checked in this order
ICON_RULES: List[Tuple[List[str], str]] = [
    (BROWSER_APPS, "globe"),
    (COMMUNICATION_APPS, "message.fill"),
    (DEV_APPS, "chevron.left.forwardslash.chevron.right"),
    (DESIGN_APPS, "paintbrush.fill"),
    (WRITING_APPS, "doc.text.fill"),
    (PRODUCTIVITY_APPS, "chart.bar.fill"),
    (ENTERTAINMENT_APPS, "play.circle.fill"),
    (SYSTEM_APPS, "gearshape.fill"),
]
DEFAULT_ICON = "app.fill"


def classify_by_bundle_id(bundle_id: str, allow_browser: bool = False) -> Optional[Category]:
    lower = (bundle_id or "").lower()
    for rule in BUNDLE_RULES:
        if rule.matches(lower):
            if rule.category == Category.BROWSING and not allow_browser:
                return None
            return rule.category
    return None


def classify_by_app_name(app_name: str, allow_browser: bool = False) -> Optional[Category]:
    lower = (app_name or "").lower()
    for rule in APP_NAME_RULES:
        if rule.category == Category.BROWSING and not allow_browser:
            continue
        if rule.matches(lower):
            return rule.category
    return None


def classify_by_window_title(title: str) -> Optional[Category]:
    lower = (title or "").lower()
    for rule in TITLE_RULES:
        if rule.matches(lower):
            return rule.category
    return None


def classify_by_text(text: str) -> Optional[Category]:
    """Keyword-density classification of OCR text.

    Returns None for text with fewer than four words, or when no category
    reaches two keyword hits. Equal scores resolve in TEXT_RULES order.
    """
    lower = (text or "").lower()
    if len(lower.split()) < MIN_TEXT_WORDS:
        return None

    best: Optional[Category] = None
    best_hits = 0
    for rule in TEXT_RULES:
        hits = rule.hits(lower)
        if hits > best_hits:
            best, best_hits = rule.category, hits

    if best_hits >= MIN_TEXT_HITS:
        return best
    return None


def is_browser(app_name: str, bundle_id: str) -> bool:
    return (classify_by_bundle_id(bundle_id, allow_browser=True) == Category.BROWSING
            or classify_by_app_name(app_name, allow_browser=True) == Category.BROWSING)


def classify(app_name: str, bundle_id: str, window_title: str, text: Optional[str] = None) -> Category:
    """Classify one sample. Always returns a category.

    Args:
        app_name: Frontmost application name
        bundle_id: Application identifier (may be empty)
        window_title: Frontmost window title (may be empty)
        text: OCR text from the screenshot, if any

    Returns:
        The first confidently matched category, OTHER when nothing matches

    Example:
        >>> classify("Spotify", "com.spotify.client", "Now Playing")
        <Category.ENTERTAINMENT: 'Entertainment'>
    """
    category = classify_by_bundle_id(bundle_id)
    if category is not None:
        return category

    category = classify_by_app_name(app_name)
    if category is not None:
        return category

    browser = is_browser(app_name, bundle_id)

    # Browsers prefer a specific page signal over the generic browsing label
    if browser:
        category = classify_by_window_title(window_title)
        if category is not None and category != Category.BROWSING:
            return category
        if text:
            category = classify_by_text(text)
            if category is not None and category != Category.BROWSING:
                return category

    category = classify_by_window_title(window_title)
    if category is not None:
        return category

    if text:
        category = classify_by_text(text)
        if category is not None:
            return category

    if browser:
        return Category.BROWSING
    return Category.OTHER


def icon_for_app(app_name: str) -> str:
    """Symbol-name hint for an app, ``app.fill`` when unrecognized."""
    lower = (app_name or "").lower()
    for names, icon in ICON_RULES:
        if any(n in lower for n in names):
            return icon
    return DEFAULT_ICON


def productivity_score(activities: Iterable[Tuple[Category, float]]) -> float:
    """Duration-weighted average of category weights, clamped to [0, 1].

    Args:
        activities: (category, duration in seconds) pairs

    Returns:
        0.0 for empty input or zero total duration
    """
    total = 0.0
    weighted = 0.0
    for category, duration in activities:
        total += duration
        weighted += PRODUCTIVITY_WEIGHTS[Category.parse(category)] * duration
    if total <= 0:
        return 0.0
    return min(max(weighted / total, 0.0), 1.0)


class ActivityClassifier:
    """Object wrapper so a different rule set can be injected into the pipeline."""

    def classify(self, app_name: str, bundle_id: str, window_title: str,
                 text: Optional[str] = None) -> Category:
        return classify(app_name, bundle_id, window_title, text)

    def icon_for_app(self, app_name: str) -> str:
        return icon_for_app(app_name)

    def productivity_score(self, activities: Iterable[Tuple[Category, float]]) -> float:
        return productivity_score(activities)
