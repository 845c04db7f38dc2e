"""Acquisition collaborators: screenshots, window metadata, OCR, permission.

Each collaborator is a small interface with a production implementation
for X11 desktops and a static in-memory implementation for tests and
headless runs:

==================  ========================  =======================
Interface           Production                In-memory
==================  ========================  =======================
ScreenSource        ScreenCapture (mss)       StaticScreenSource
MetadataSource      X11MetadataSource         StaticMetadataSource
TextRecognizer      TesseractRecognizer       StaticTextRecognizer
PermissionGate      DisplayPermissionGate     StaticPermissionGate
==================  ========================  =======================

Dependencies:
    - mss: Multi-platform screenshot library
    - PIL (Pillow): Image conversion, resizing and PNG encoding
    - xdotool / xprop: Active window title and WM_CLASS (subprocess)
    - tesseract: OCR engine CLI (subprocess)
"""

import io
import logging
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Protocol

import mss
from mss.exception import ScreenShotError
from PIL import Image

from .models import OCRResult, TextObservation, WindowMetadata

logger = logging.getLogger(__name__)


class ScreenCaptureError(Exception):
    """Raised when a screenshot cannot be taken.

    Typical causes are a missing display server, no detected monitors or an
    image encoding failure. The capture scheduler treats it as a skipped
    tick, never as a fatal error.
    """
    pass


class ScreenSource(Protocol):
    def capture_active_window(self) -> Optional[bytes]: ...


class MetadataSource(Protocol):
    def read_frontmost_window(self) -> WindowMetadata: ...


class TextRecognizer(Protocol):
    def recognize_text(self, image_bytes: bytes) -> OCRResult: ...


# ----------------------------------------------------------------------
# Screenshots
# ----------------------------------------------------------------------

class ScreenCapture:
    """Captures the primary monitor with mss and encodes it as PNG.

    Attributes:
        max_width (Optional[int]): Downscale wider screenshots to this width,
            preserving aspect ratio. None keeps native resolution.
    """

    def __init__(self, max_width: Optional[int] = None):
        self.max_width = max_width

    def capture_active_window(self) -> Optional[bytes]:
        """Grab the primary monitor.

        Returns:
            PNG bytes, or None when no monitor is available

        Raises:
            ScreenCaptureError: If the display cannot be read or encoded
        """
        try:
            with mss.mss() as sct:
                # monitors[0] is all monitors combined
                if len(sct.monitors) < 2:
                    logger.warning("No monitors detected")
                    return None
                shot = sct.grab(sct.monitors[1])
                img = Image.frombytes("RGB", shot.size, shot.rgb)

            if self.max_width and img.width > self.max_width:
                ratio = self.max_width / img.width
                img = img.resize((self.max_width, int(img.height * ratio)), Image.Resampling.LANCZOS)

            buf = io.BytesIO()
            img.save(buf, format="PNG", optimize=True)
            return buf.getvalue()
        except ScreenShotError as e:
            raise ScreenCaptureError(f"Screen capture failed: {e}") from e
        except OSError as e:
            raise ScreenCaptureError(f"Screenshot encoding failed: {e}") from e


class StaticScreenSource:
    """Returns fixed image bytes. ``image_bytes=None`` simulates no capture."""

    def __init__(self, image_bytes: Optional[bytes] = b"\x89PNG fake"):
        self.image_bytes = image_bytes
        self.calls = 0

    def capture_active_window(self) -> Optional[bytes]:
        self.calls += 1
        return self.image_bytes


# ----------------------------------------------------------------------
# Window metadata
# ----------------------------------------------------------------------

class X11MetadataSource:
    """Reads the focused window through xdotool and xprop.

    The WM_CLASS class name becomes the app name and the instance name the
    app identifier. Browser URLs are not available on X11 and stay None.
    """

    def __init__(self, timeout: float = 1.0):
        self.timeout = timeout

    def _run(self, *args: str) -> str:
        return subprocess.check_output(
            list(args), stderr=subprocess.DEVNULL, timeout=self.timeout
        ).decode(errors="replace").strip()

    def read_frontmost_window(self) -> WindowMetadata:
        """Return metadata for the focused window, ``WindowMetadata.empty()`` on failure."""
        try:
            window_id = self._run("xdotool", "getactivewindow")
            title = self._run("xdotool", "getwindowname", window_id)
            xprop_output = self._run("xprop", "-id", window_id, "WM_CLASS")
        except (subprocess.TimeoutExpired, subprocess.CalledProcessError, FileNotFoundError) as e:
            logger.debug(f"Failed to read active window: {e}")
            return WindowMetadata.empty()

        app_name = "Unknown"
        instance = ""
        # WM_CLASS(STRING) = "instance", "Class"
        if "=" in xprop_output:
            classes = [c.strip().strip('"') for c in xprop_output.split("=", 1)[1].split(",")]
            if len(classes) >= 2:
                instance, app_name = classes[0], classes[1]
            elif classes and classes[0]:
                app_name = classes[0]

        return WindowMetadata(app_name=app_name, bundle_identifier=instance, window_title=title)


class StaticMetadataSource:
    """Returns whatever ``metadata`` is currently set to."""

    def __init__(self, metadata: Optional[WindowMetadata] = None):
        self.metadata = metadata or WindowMetadata.empty()
        self.calls = 0

    def read_frontmost_window(self) -> WindowMetadata:
        self.calls += 1
        return self.metadata


# ----------------------------------------------------------------------
# OCR
# ----------------------------------------------------------------------

class TesseractRecognizer:
    """Runs the tesseract CLI locally and parses its TSV output.

    Images are capped at 1920x1080 before recognition. Words below
    ``min_confidence`` are dropped; the remaining words are grouped into
    lines, each line becoming one observation with a bounding box
    normalized to the (resized) image.

    Attributes:
        min_confidence: Threshold in 0..1 (default: 0.3)
        languages: Tesseract language codes joined with ``+``
    """

    MAX_WIDTH = 1920
    MAX_HEIGHT = 1080

    def __init__(self, min_confidence: float = 0.3, languages: Optional[List[str]] = None,
                 timeout: float = 30):
        self.min_confidence = min_confidence
        self.languages = languages or ["eng"]
        self.timeout = timeout

    def recognize_text(self, image_bytes: bytes) -> OCRResult:
        """Extract text from PNG/JPEG bytes. Returns an empty result on any failure."""
        start = time.perf_counter()
        tmp_path = None
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                img = img.convert("RGB")
                if img.width > self.MAX_WIDTH:
                    ratio = self.MAX_WIDTH / img.width
                    img = img.resize((self.MAX_WIDTH, int(img.height * ratio)), Image.Resampling.LANCZOS)
                if img.height > self.MAX_HEIGHT:
                    ratio = self.MAX_HEIGHT / img.height
                    img = img.resize((int(img.width * ratio), self.MAX_HEIGHT), Image.Resampling.LANCZOS)
                width, height = img.size
                with tempfile.NamedTemporaryFile(suffix=".png", delete=False) as tmp:
                    tmp_path = tmp.name
                img.save(tmp_path, "PNG")

            result = subprocess.run(
                ["tesseract", tmp_path, "stdout", "--psm", "3",
                 "-l", "+".join(self.languages), "tsv"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            if result.returncode != 0:
                logger.warning(f"Tesseract returned non-zero: {result.stderr}")
                return OCRResult(processing_time=time.perf_counter() - start)

            observations = self.parse_tsv(result.stdout, width, height)
            return OCRResult(
                full_text="\n".join(o.text for o in observations),
                observations=observations,
                processing_time=time.perf_counter() - start,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Tesseract timed out")
        except FileNotFoundError:
            logger.warning("Tesseract not installed or not in PATH")
        except OSError as e:
            logger.warning(f"OCR extraction failed: {e}")
        finally:
            if tmp_path:
                Path(tmp_path).unlink(missing_ok=True)
        return OCRResult(processing_time=time.perf_counter() - start)

    def parse_tsv(self, tsv: str, width: int, height: int) -> List[TextObservation]:
        """Group tesseract word rows into line observations, top to bottom."""
        lines = {}
        rows = tsv.splitlines()
        for row in rows[1:]:
            cols = row.split("\t")
            if len(cols) < 12 or cols[0] != "5":
                continue
            text = cols[11].strip()
            try:
                conf = float(cols[10]) / 100.0
                left, top, w, h = (int(c) for c in cols[6:10])
            except ValueError:
                continue
            if not text or conf < self.min_confidence:
                continue
            key = (int(cols[1]), int(cols[2]), int(cols[3]), int(cols[4]))
            lines.setdefault(key, []).append((text, conf, left, top, w, h))

        observations = []
        for key in sorted(lines, key=lambda k: min(word[3] for word in lines[k])):
            words = lines[key]
            x0 = min(w[2] for w in words)
            y0 = min(w[3] for w in words)
            x1 = max(w[2] + w[4] for w in words)
            y1 = max(w[3] + w[5] for w in words)
            observations.append(TextObservation(
                text=" ".join(w[0] for w in words),
                confidence=sum(w[1] for w in words) / len(words),
                bounding_box=(x0 / width, y0 / height, (x1 - x0) / width, (y1 - y0) / height),
            ))
        return observations


class StaticTextRecognizer:
    """Returns the configured text as a single full-confidence observation."""

    def __init__(self, text: str = ""):
        self.text = text
        self.calls = 0

    def recognize_text(self, image_bytes: bytes) -> OCRResult:
        self.calls += 1
        if not self.text:
            return OCRResult()
        return OCRResult(
            full_text=self.text,
            observations=[TextObservation(self.text, 1.0, (0.0, 0.0, 1.0, 1.0))],
        )


# ----------------------------------------------------------------------
# Permission
# ----------------------------------------------------------------------

class PermissionGate:
    """Tracks whether screen capture is permitted and reports revocation.

    Subclasses implement ``_test_access``. ``check`` records the latest
    answer; when a previously granted permission is found denied,
    ``on_revoked`` is called with the permission name.
    """

    PERMISSION_NAME = "Screen Recording"

    def __init__(self, recheck_interval: float = 10.0):
        self.recheck_interval = recheck_interval
        self.on_revoked: Optional[Callable[[str], None]] = None
        self.granted = False
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _test_access(self) -> bool:
        raise NotImplementedError

    def check(self) -> bool:
        was_granted = self.granted
        self.granted = self._test_access()
        if was_granted and not self.granted:
            logger.warning(f"{self.PERMISSION_NAME} permission revoked")
            if self.on_revoked:
                self.on_revoked(self.PERMISSION_NAME)
        return self.granted

    def request(self) -> None:
        logger.warning(f"{self.PERMISSION_NAME} permission is required to capture the screen")

    def start_periodic_recheck(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._recheck_loop, daemon=True)
        self._thread.start()

    def stop_periodic_recheck(self) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None

    def _recheck_loop(self) -> None:
        while not self._stop_event.wait(self.recheck_interval):
            try:
                self.check()
            except Exception as e:
                logger.error(f"Permission recheck failed: {e}", exc_info=True)


class DisplayPermissionGate(PermissionGate):
    """Granted when mss can enumerate at least one monitor on the display."""

    def _test_access(self) -> bool:
        try:
            with mss.mss() as sct:
                return len(sct.monitors) > 1
        except ScreenShotError as e:
            logger.debug(f"Display not accessible: {e}")
            return False

    def request(self) -> None:
        logger.warning("Cannot open the display; make sure DISPLAY is set and the X server "
                       "allows connections from this user")


class StaticPermissionGate(PermissionGate):
    """Permission answer controlled by the ``allow`` attribute."""

    def __init__(self, allow: bool = True):
        super().__init__()
        self.allow = allow
        self.request_count = 0

    def _test_access(self) -> bool:
        return self.allow

    def request(self) -> None:
        self.request_count += 1
