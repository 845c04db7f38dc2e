"""Configuration management for Activity Pulse.

Settings live in a YAML file and are loaded into Python dataclasses, one per
section. Missing keys fall back to the dataclass defaults and unknown keys
are ignored, so older and newer config files both load.

Configuration Sections:
- capture: sampling interval and OCR toggle
- privacy: apps excluded from capture
- aggregation: summarization pipeline cadence and thresholds
- retention: per-kind retention windows
- storage: data directory and total storage budget

Example:
    >>> from pulse.config import ConfigManager
    >>> config_mgr = ConfigManager()
    >>> print(config_mgr.config.capture.interval_seconds)
    30
    >>> config_mgr.update('capture', 'interval_seconds', 60)
"""

import dataclasses
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional
import yaml

logger = logging.getLogger(__name__)

MIN_CAPTURE_INTERVAL = 5
MAX_CAPTURE_INTERVAL = 120
GIB = 1024 ** 3


def clamp_interval(seconds: float) -> float:
    """Bound a capture interval to the supported 5s - 2min range."""
    bounded = min(max(seconds, MIN_CAPTURE_INTERVAL), MAX_CAPTURE_INTERVAL)
    if bounded != seconds:
        logger.warning(f"Capture interval {seconds}s out of range, using {bounded}s")
    return bounded


@dataclass
class CaptureConfig:
    """Screenshot capture configuration.

    Attributes:
        interval_seconds: Time between capture ticks, 5-120 (default: 30)
        ocr_enabled: Run text recognition on each capture (default: True)
        ocr_min_confidence: Drop recognized words below this (default: 0.3)
    """
    interval_seconds: int = 30
    ocr_enabled: bool = True
    ocr_min_confidence: float = 0.3


@dataclass
class PrivacyConfig:
    """Privacy controls.

    Attributes:
        excluded_apps: App names or identifiers that are never captured
    """
    excluded_apps: list[str] = field(default_factory=lambda: [
        "Keychain Access",
        "1Password",
        "System Preferences",
    ])


@dataclass
class AggregationConfig:
    """Summarization pipeline configuration.

    Attributes:
        interval_minutes: Time between scheduled pipeline runs (default: 15)
        min_samples: New samples required before entries are created (default: 3)
        nominal_tick_seconds: Per-sample duration floor for runs (default: 30)
        debounce_seconds: Delay after the last capture before a run (default: 5)
        delete_images_after_summarize: Remove screenshots once summarized (default: False)
    """
    interval_minutes: int = 15
    min_samples: int = 3
    nominal_tick_seconds: int = 30
    debounce_seconds: float = 5.0
    delete_images_after_summarize: bool = False


@dataclass
class RetentionConfig:
    """Retention windows in days (0 = keep forever).

    Attributes:
        capture_days: Raw samples and their images (default: 30)
        activity_days: Activity entries (default: 90)
        summary_days: Daily summaries and app usage (default: 365)
        check_interval_minutes: Time between background retention passes (default: 60)
    """
    capture_days: int = 30
    activity_days: int = 90
    summary_days: int = 365
    check_interval_minutes: int = 60


@dataclass
class StorageConfig:
    """Data storage configuration.

    Attributes:
        data_dir: Directory for the database and captures (default: ~/activity-pulse-data)
        storage_limit_gb: Total budget across database and captures (0 = unlimited, default: 5.0)
    """
    data_dir: str = "~/activity-pulse-data"
    storage_limit_gb: float = 5.0

    @property
    def path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def storage_limit_bytes(self) -> int:
        return int(self.storage_limit_gb * GIB)


@dataclass
class Config:
    """Top-level configuration container."""
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)
    aggregation: AggregationConfig = field(default_factory=AggregationConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)


SECTIONS = {
    'capture': CaptureConfig,
    'privacy': PrivacyConfig,
    'aggregation': AggregationConfig,
    'retention': RetentionConfig,
    'storage': StorageConfig,
}


class ConfigManager:
    """Loads, saves and updates the YAML configuration file.

    Attributes:
        DEFAULT_PATH: Default configuration file location
        path: Configuration file path in use
        config: Current configuration object

    Example:
        >>> config_mgr = ConfigManager()
        >>> config_mgr.config.capture.interval_seconds = 60
        >>> config_mgr.save()
    """

    DEFAULT_PATH = Path("~/.config/activity-pulse/config.yaml").expanduser()

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser() if path else self.DEFAULT_PATH
        self.config = self._load()

    def _load(self) -> Config:
        """Load configuration from the YAML file.

        Returns:
            Config with loaded values, or defaults when the file is missing
            or unreadable
        """
        if not self.path.exists():
            logger.info(f"No config file at {self.path}, using defaults")
            return Config()
        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {self.path}")
            return self._dict_to_config(data)
        except (yaml.YAMLError, OSError, TypeError) as e:
            logger.warning(f"Failed to load config from {self.path}: {e}")
            logger.info("Using default configuration")
            return Config()

    @staticmethod
    def _filter_known_fields(data_dict: dict, dataclass_type) -> dict:
        known = {f.name for f in dataclasses.fields(dataclass_type)}
        unknown = set(data_dict) - known
        if unknown:
            logger.debug(f"Ignoring unknown config fields: {unknown}")
        return {k: v for k, v in data_dict.items() if k in known}

    def _dict_to_config(self, data: dict) -> Config:
        sections = {}
        for name, section_type in SECTIONS.items():
            section_data = data.get(name) or {}
            sections[name] = section_type(**self._filter_known_fields(section_data, section_type))
        return Config(**sections)

    def save(self) -> None:
        """Write the current configuration to the YAML file.

        Raises:
            OSError: If the file cannot be written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, 'w') as f:
                yaml.dump(asdict(self.config), f, default_flow_style=False,
                          sort_keys=False, indent=2)
            logger.info(f"Saved configuration to {self.path}")
        except OSError as e:
            logger.error(f"Failed to save config to {self.path}: {e}")
            raise

    def update(self, section: str, key: str, value) -> bool:
        """Update a single value and save.

        Returns:
            True if the value changed, False if unchanged or the key is unknown

        Example:
            >>> config_mgr.update('retention', 'capture_days', 14)
            True
        """
        section_obj = getattr(self.config, section, None)
        if section not in SECTIONS or section_obj is None:
            logger.warning(f"Invalid config section: {section}")
            return False
        if not hasattr(section_obj, key):
            logger.warning(f"Invalid config key: {section}.{key}")
            return False

        old_value = getattr(section_obj, key)
        if old_value == value:
            logger.debug(f"No change for {section}.{key} (already {value})")
            return False

        setattr(section_obj, key, value)
        self.save()
        logger.info(f"Updated {section}.{key}: {old_value} -> {value}")
        return True

    def create_default_file(self) -> None:
        """Write a default config file unless one already exists."""
        if self.path.exists():
            logger.warning(f"Configuration file already exists at {self.path}")
            return
        self.save()
        logger.info(f"Created default configuration at {self.path}")
