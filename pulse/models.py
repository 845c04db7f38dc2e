"""Record types shared by the capture, aggregation and retention layers.

The four persisted record kinds mirror the tables owned by
:class:`pulse.storage.ActivityStorage`:

- RawSample: one capture tick (window metadata, image handle, OCR text)
- ActivityEntry: a narrated run of consecutive same-app samples
- DailySummary: one narrative + metrics row per calendar day
- AppUsage: accumulated per-day, per-app duration

Timestamps are naive local datetimes. The store persists them as Unix
epoch seconds and days as ISO ``YYYY-MM-DD`` strings.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Tuple


def new_id() -> str:
    """Return a fresh opaque record id."""
    return str(uuid.uuid4())


class Category(str, Enum):
    """Closed set of activity categories. The value is what gets stored."""
    PRODUCTIVITY = "Productivity"
    COMMUNICATION = "Communication"
    BROWSING = "Browsing"
    ENTERTAINMENT = "Entertainment"
    DEVELOPMENT = "Development"
    DESIGN = "Design"
    WRITING = "Writing"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Category":
        """Map a stored string back to a category, unknown values become OTHER."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass
class WindowMetadata:
    """Frontmost window information read at the start of a capture tick."""
    app_name: str
    bundle_identifier: str = ""
    window_title: str = ""
    browser_url: Optional[str] = None

    @classmethod
    def empty(cls) -> "WindowMetadata":
        return cls(app_name="Unknown")


@dataclass
class TextObservation:
    """A single recognized text region.

    Attributes:
        text: Recognized text for the region
        confidence: Recognizer confidence 0.0 - 1.0
        bounding_box: Normalized (x, y, width, height), each in 0..1
    """
    text: str
    confidence: float
    bounding_box: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)


@dataclass
class OCRResult:
    """Result of running text recognition over one screenshot."""
    full_text: str = ""
    observations: List[TextObservation] = field(default_factory=list)
    detected_language: Optional[str] = None
    processing_time: float = 0.0

    @property
    def is_empty(self) -> bool:
        return not self.full_text

    @property
    def average_confidence(self) -> float:
        if not self.observations:
            return 0.0
        return sum(o.confidence for o in self.observations) / len(self.observations)


@dataclass
class CaptureResult:
    """In-memory product of one capture tick, before it is persisted."""
    metadata: WindowMetadata
    image_bytes: bytes
    timestamp: datetime = field(default_factory=datetime.now)
    ocr: Optional[OCRResult] = None
    id: str = field(default_factory=new_id)


@dataclass
class RawSample:
    """One persisted capture tick. Immutable once written."""
    timestamp: datetime
    app_name: str
    bundle_identifier: str = ""
    window_title: str = ""
    browser_url: Optional[str] = None
    image_path: str = ""
    ocr_text: Optional[str] = None
    ocr_confidence: Optional[float] = None
    id: str = field(default_factory=new_id)

    @classmethod
    def from_capture(cls, result: CaptureResult, image_path: str) -> "RawSample":
        ocr_text = None
        ocr_confidence = None
        if result.ocr is not None and not result.ocr.is_empty:
            ocr_text = result.ocr.full_text
            ocr_confidence = result.ocr.average_confidence
        return cls(
            id=result.id,
            timestamp=result.timestamp,
            app_name=result.metadata.app_name,
            bundle_identifier=result.metadata.bundle_identifier,
            window_title=result.metadata.window_title,
            browser_url=result.metadata.browser_url,
            image_path=image_path,
            ocr_text=ocr_text,
            ocr_confidence=ocr_confidence,
        )

    @classmethod
    def from_row(cls, row) -> "RawSample":
        return cls(
            id=row["id"],
            timestamp=datetime.fromtimestamp(row["timestamp"]),
            app_name=row["app_name"],
            bundle_identifier=row["bundle_identifier"] or "",
            window_title=row["window_title"] or "",
            browser_url=row["browser_url"],
            image_path=row["image_path"] or "",
            ocr_text=row["ocr_text"],
            ocr_confidence=row["ocr_confidence"],
        )


@dataclass
class ActivityEntry:
    """A narrated run of consecutive same-app samples."""
    timestamp: datetime
    app_name: str
    app_icon: str
    title: str
    summary: str
    category: Category
    duration: float
    id: str = field(default_factory=new_id)

    @classmethod
    def from_row(cls, row) -> "ActivityEntry":
        return cls(
            id=row["id"],
            timestamp=datetime.fromtimestamp(row["timestamp"]),
            app_name=row["app_name"],
            app_icon=row["app_icon"],
            title=row["title"],
            summary=row["summary"],
            category=Category.parse(row["category"]),
            duration=row["duration"],
        )


@dataclass
class DailySummary:
    """Aggregate narrative and metrics for one calendar day."""
    day: date
    total_screen_time: float
    narrative: str
    activity_count: int
    productivity_score: float
    id: str = field(default_factory=new_id)

    @classmethod
    def from_row(cls, row) -> "DailySummary":
        return cls(
            id=row["id"],
            day=date.fromisoformat(row["day"]),
            total_screen_time=row["total_screen_time"],
            narrative=row["narrative"],
            activity_count=row["activity_count"],
            productivity_score=row["productivity_score"],
        )


@dataclass
class AppUsage:
    """Accumulated usage of one app on one day."""
    day: date
    app_name: str
    app_icon: str
    duration: float
    category: Category
    id: str = field(default_factory=new_id)

    @classmethod
    def from_row(cls, row) -> "AppUsage":
        return cls(
            id=row["id"],
            day=date.fromisoformat(row["day"]),
            app_name=row["app_name"],
            app_icon=row["app_icon"],
            duration=row["duration"],
            category=Category.parse(row["category"]),
        )


class CaptureState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    PAUSED = "paused"
    PERMISSION_DENIED = "permission_denied"
    ERROR = "error"


@dataclass(frozen=True)
class CaptureStatus:
    """Scheduler status. ``message`` is only set for the error state."""
    state: CaptureState = CaptureState.IDLE
    message: Optional[str] = None

    @classmethod
    def error(cls, message: str) -> "CaptureStatus":
        return cls(CaptureState.ERROR, message)

    @property
    def label(self) -> str:
        labels = {
            CaptureState.IDLE: "Idle",
            CaptureState.CAPTURING: "Capturing",
            CaptureState.PAUSED: "Paused",
            CaptureState.PERMISSION_DENIED: "No Permission",
        }
        if self.state == CaptureState.ERROR:
            return f"Error: {self.message}"
        return labels[self.state]

    @property
    def is_active(self) -> bool:
        return self.state == CaptureState.CAPTURING


IDLE = CaptureStatus(CaptureState.IDLE)
CAPTURING = CaptureStatus(CaptureState.CAPTURING)
PAUSED = CaptureStatus(CaptureState.PAUSED)
PERMISSION_DENIED = CaptureStatus(CaptureState.PERMISSION_DENIED)
