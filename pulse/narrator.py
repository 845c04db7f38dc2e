"""Template-based narration of activities and days.

Turns a classified run of samples into one readable sentence, and a day's
entries into a short narrative paragraph. Pure string work: no state and
no I/O, so any backend with the same two methods can replace it.
"""

from typing import Dict, Optional, Sequence

from .models import ActivityEntry, AppUsage, Category

CODE_EXTENSIONS = (".swift", ".py", ".ts", ".js", ".rs", ".go")
TERMINAL_PROMPT_CHARS = ("$", "%", ">")
TITLE_SEPARATOR = " — "

DEV_NOTABLE_MINUTES = 30
COMM_NOTABLE_MINUTES = 15


def format_duration(seconds: float) -> str:
    """Format seconds as ``45s``, ``5m``, ``5m 30s``, ``2h`` or ``2h 15m``."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m {secs}s" if secs else f"{minutes}m"
    hours, rem_minutes = divmod(minutes, 60)
    return f"{hours}h {rem_minutes}m" if rem_minutes else f"{hours}h"


def truncate_title(title: str, max_len: int = 50) -> str:
    cleaned = title.strip()
    if len(cleaned) <= max_len:
        return cleaned
    return cleaned[:max_len] + "..."


class HeuristicNarrator:
    """Rule-based narrator producing sentences from window titles and OCR text."""

    backend_name = "Heuristic Engine"
    is_ready = True

    def summarize_activity(self, app_name: str, window_title: str, text: Optional[str],
                           category: Category, duration: float) -> str:
        """Describe one activity run in a sentence.

        Uses the window title (and, for terminals, the last prompt line in
        the OCR text) when available, otherwise a generic per-category
        template.

        Example:
            >>> HeuristicNarrator().summarize_activity(
            ...     "Xcode", "App.swift — MyApp", None, Category.DEVELOPMENT, 150)
            'Editing App.swift in Xcode for 2m 30s.'
        """
        d = format_duration(duration)
        sentence = self._contextual(app_name, window_title, text, Category.parse(category), d)
        if sentence is not None:
            return sentence
        return self._generic(app_name, Category.parse(category), d)

    def summarize_day(self, entries: Sequence[ActivityEntry], total_duration: float,
                      top_apps: Sequence[AppUsage], productivity_score: float) -> str:
        """Compose the narrative for one day.

        Args:
            entries: All of the day's activity entries
            total_duration: Total screen time in seconds
            top_apps: Usage rows, longest first; only the first three are named
            productivity_score: Score in [0, 1]

        Returns:
            The narrative, or a fixed sentence when there are no entries
        """
        if not entries:
            return "No activity recorded today."

        parts = []
        total_int = int(total_duration)
        hours, minutes = total_int // 3600, (total_int % 3600) // 60
        if hours > 0:
            parts.append(f"You spent {hours}h {minutes}m on screen today")
        else:
            parts.append(f"You spent {minutes} minutes on screen today")
        parts.append(f"across {len(entries)} activities.")

        names = [u.app_name for u in top_apps[:3]]
        if len(names) == 1:
            parts.append(f"Most time was spent in {names[0]}.")
        elif len(names) == 2:
            parts.append(f"Most time was spent in {names[0]} and {names[1]}.")
        elif len(names) == 3:
            parts.append(f"Top apps: {names[0]}, {names[1]}, and {names[2]}.")

        by_category = self._category_durations(entries)
        top_category, top_seconds = max(by_category.items(), key=lambda kv: kv[1])
        pct = int(top_seconds / total_duration * 100) if total_duration > 0 else 0
        parts.append(f"{top_category.value} was your primary focus at {pct}% of total time.")

        parts.append(self._productivity_sentence(productivity_score))

        dev_time = by_category.get(Category.DEVELOPMENT, 0.0)
        if int(dev_time) // 60 >= DEV_NOTABLE_MINUTES:
            parts.append(f"Development work totaled {format_duration(dev_time)}.")
        comm_time = by_category.get(Category.COMMUNICATION, 0.0)
        if int(comm_time) // 60 >= COMM_NOTABLE_MINUTES:
            parts.append(f"Communication took {format_duration(comm_time)}.")

        return " ".join(parts)

    @staticmethod
    def _category_durations(entries: Sequence[ActivityEntry]) -> Dict[Category, float]:
        # insertion order breaks ties for the primary category
        totals: Dict[Category, float] = {}
        for entry in entries:
            category = Category.parse(entry.category)
            totals[category] = totals.get(category, 0.0) + entry.duration
        return totals

    @staticmethod
    def _productivity_sentence(score: float) -> str:
        pct = int(score * 100)
        if score >= 0.75:
            tail = "a highly focused day."
        elif score >= 0.50:
            tail = "a balanced day of work and other activities."
        elif score >= 0.25:
            tail = "a lighter work day."
        else:
            tail = "mostly leisure and non-work activities."
        return f"Productivity score: {pct}% — {tail}"

    def _contextual(self, app: str, window_title: str, text: Optional[str],
                    category: Category, d: str) -> Optional[str]:
        title = (window_title or "").strip()
        if not title:
            return None
        lower = title.lower()

        if category == Category.DEVELOPMENT:
            return self._development(app, title, text, d)
        if category == Category.COMMUNICATION:
            if "inbox" in lower:
                return f"Checking email in {app} for {d}."
            if "compose" in lower or "new message" in lower:
                return f"Writing a message in {app} for {d}."
            if "meeting" in lower or "call" in lower:
                return f"In a meeting/call via {app} for {d}."
            return f"Communicating via {app} ({truncate_title(title)}) for {d}."
        if category == Category.BROWSING:
            return f'Browsing "{truncate_title(title)}" in {app} for {d}.'
        if category == Category.WRITING:
            return f'Writing in {app} — "{truncate_title(title)}" for {d}.'
        if category == Category.DESIGN:
            return f'Designing in {app} — "{truncate_title(title)}" for {d}.'
        if category == Category.ENTERTAINMENT:
            return f'Watching/listening: "{truncate_title(title)}" in {app} for {d}.'
        if category == Category.PRODUCTIVITY:
            return f"Using {app} ({truncate_title(title)}) for {d}."
        return None

    @staticmethod
    def _development(app: str, title: str, text: Optional[str], d: str) -> str:
        first = title.split(TITLE_SEPARATOR)[0]
        if any(ext in first for ext in CODE_EXTENSIONS):
            return f"Editing {first} in {app} for {d}."

        lower, app_lower = title.lower(), app.lower()
        if "terminal" in lower or any(t in app_lower for t in ("terminal", "iterm", "warp")):
            lines = [line for line in (text or "").splitlines() if line]
            prompts = [line for line in lines if any(c in line for c in TERMINAL_PROMPT_CHARS)]
            if prompts:
                cmd = prompts[-1].strip()
                if len(cmd) > 60:
                    cmd = cmd[:60] + "..."
                return f"Working in terminal ({cmd}) for {d}."
            return f"Working in {app} for {d}."

        if "pull request" in lower or "merge request" in lower:
            return f"Reviewing a pull request in {app} for {d}."
        if "github.com" in lower or "gitlab.com" in lower:
            return f"Browsing code repositories for {d}."
        return f'Working in {app} on "{truncate_title(first)}" for {d}.'

    @staticmethod
    def _generic(app: str, category: Category, d: str) -> str:
        templates = {
            Category.DEVELOPMENT: "Working in {app} for {d}.",
            Category.COMMUNICATION: "Communicating via {app} for {d}.",
            Category.BROWSING: "Browsing in {app} for {d}.",
            Category.ENTERTAINMENT: "Using {app} for leisure ({d}).",
            Category.DESIGN: "Designing in {app} for {d}.",
            Category.WRITING: "Writing in {app} for {d}.",
            Category.PRODUCTIVITY: "Working in {app} for {d}.",
            Category.OTHER: "Using {app} for {d}.",
        }
        return templates[category].format(app=app, d=d)
