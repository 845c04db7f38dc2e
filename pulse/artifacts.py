"""Storage for captured screenshot images.

Images live outside the database. Each capture is written as
``Captures/YYYY-MM-DD/<id>.png`` with a ``<id>.json`` metadata sidecar,
and the path relative to the data directory is the handle stored on the
RawSample. An in-memory implementation with the same interface backs the
tests.
"""

import json
import logging
import shutil
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Dict, List, Protocol, Tuple

from .models import CaptureResult

logger = logging.getLogger(__name__)

CAPTURES_DIRNAME = "Captures"


class StorageUnavailableError(Exception):
    """Raised when a capture cannot be written (missing directory, disk full)."""


class CaptureArtifactStore(Protocol):
    def save(self, result: CaptureResult) -> str: ...

    def delete_image(self, relative_path: str) -> bool: ...

    def delete_captures_older_than(self, cutoff: datetime) -> int: ...

    def delete_all(self) -> int: ...

    def total_bytes(self) -> int: ...

    def list_captures(self, day: date) -> List[str]: ...


class CaptureFileStore:
    """Writes capture images and metadata sidecars under a base directory.

    Attributes:
        base_dir (Path): Data directory the returned handles are relative to
        captures_dir (Path): ``base_dir / "Captures"``
    """

    def __init__(self, base_dir):
        self.base_dir = Path(base_dir).expanduser()
        self.captures_dir = self.base_dir / CAPTURES_DIRNAME

    def _ensure_dir(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot create capture directory {path}: {e}") from e

    def save(self, result: CaptureResult) -> str:
        """Persist one capture's image and metadata.

        Args:
            result: Capture produced by a scheduler tick

        Returns:
            Image path relative to ``base_dir``

        Raises:
            StorageUnavailableError: If the directory or files cannot be written
        """
        day_dir = self.captures_dir / result.timestamp.strftime("%Y-%m-%d")
        self._ensure_dir(day_dir)

        image_path = day_dir / f"{result.id}.png"
        sidecar = {
            "id": result.id,
            "timestamp": result.timestamp.isoformat(),
            "app_name": result.metadata.app_name,
            "bundle_identifier": result.metadata.bundle_identifier,
            "window_title": result.metadata.window_title,
            "browser_url": result.metadata.browser_url,
            "ocr_text": result.ocr.full_text if result.ocr else None,
        }
        try:
            image_path.write_bytes(result.image_bytes)
            with open(day_dir / f"{result.id}.json", "w") as f:
                json.dump(sidecar, f, indent=2)
        except OSError as e:
            raise StorageUnavailableError(f"Failed to write capture {image_path}: {e}") from e

        return str(image_path.relative_to(self.base_dir))

    def delete_image(self, relative_path: str) -> bool:
        """Remove one image and its sidecar.

        Returns:
            True if the image existed and was removed

        Raises:
            OSError: If an existing file cannot be removed
        """
        image = self.base_dir / relative_path
        existed = image.exists()
        image.unlink(missing_ok=True)
        image.with_suffix(".json").unlink(missing_ok=True)
        return existed

    def delete_captures_older_than(self, cutoff: datetime) -> int:
        """Remove whole day directories dated before the cutoff's day.

        Returns:
            Number of image files removed
        """
        if not self.captures_dir.exists():
            return 0
        cutoff_name = cutoff.strftime("%Y-%m-%d")
        removed = 0
        for day_dir in sorted(self.captures_dir.iterdir()):
            if not day_dir.is_dir() or day_dir.name >= cutoff_name:
                continue
            removed += sum(1 for _ in day_dir.glob("*.png"))
            shutil.rmtree(day_dir)
            logger.debug(f"Removed capture directory {day_dir}")
        return removed

    def delete_all(self) -> int:
        """Remove every capture. Returns bytes freed."""
        freed = self.total_bytes()
        if self.captures_dir.exists():
            shutil.rmtree(self.captures_dir)
        return freed

    def total_bytes(self) -> int:
        if not self.captures_dir.exists():
            return 0
        return sum(p.stat().st_size for p in self.captures_dir.rglob("*") if p.is_file())

    def list_captures(self, day: date) -> List[str]:
        day_dir = self.captures_dir / day.isoformat()
        if not day_dir.exists():
            return []
        return [str(p.relative_to(self.base_dir)) for p in sorted(day_dir.glob("*.png"))]


class InMemoryCaptureStore:
    """Dict-backed capture store.

    Attributes:
        fail_writes: When True, ``save`` raises StorageUnavailableError
        fail_deletes: When True, ``delete_image`` raises OSError
    """

    def __init__(self):
        self.images: Dict[str, Tuple[date, bytes]] = {}
        self.fail_writes = False
        self.fail_deletes = False
        self._lock = threading.Lock()

    def save(self, result: CaptureResult) -> str:
        if self.fail_writes:
            raise StorageUnavailableError("Capture directory not available")
        day = result.timestamp.date()
        path = f"{CAPTURES_DIRNAME}/{day.isoformat()}/{result.id}.png"
        with self._lock:
            self.images[path] = (day, result.image_bytes)
        return path

    def delete_image(self, relative_path: str) -> bool:
        if self.fail_deletes:
            raise OSError(f"Cannot delete {relative_path}")
        with self._lock:
            return self.images.pop(relative_path, None) is not None

    def delete_captures_older_than(self, cutoff: datetime) -> int:
        with self._lock:
            old = [p for p, (day, _) in self.images.items() if day < cutoff.date()]
            for path in old:
                del self.images[path]
        return len(old)

    def delete_all(self) -> int:
        with self._lock:
            freed = sum(len(data) for _, data in self.images.values())
            self.images.clear()
        return freed

    def total_bytes(self) -> int:
        with self._lock:
            return sum(len(data) for _, data in self.images.values())

    def list_captures(self, day: date) -> List[str]:
        with self._lock:
            return sorted(p for p, (d, _) in self.images.items() if d == day)
