"""
Configuration and path management for adfilter.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CACHE_MAX_ENTRIES = 1000
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass
class AdfilterConfig:
    """Main configuration."""

    # Filtering
    enabled: bool = True
    load_default_lists: bool = True
    filter_lists: list[str] = field(default_factory=list)  # Local file paths

    # Decision cache
    cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES

    # Logging
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def load(cls, path: Path | None = None) -> "AdfilterConfig":
        """Load configuration from file.

        A missing file yields the defaults. ``ADFILTER_DISABLED=1`` in the
        environment forces filtering off regardless of the file contents.
        """
        if path is None:
            path = get_config_dir() / "config.json"

        if path.exists():
            with open(path) as f:
                data = json.load(f)
        else:
            data = {}

        config = cls(
            enabled=data.get("enabled", True),
            load_default_lists=data.get("load_default_lists", True),
            filter_lists=list(data.get("filter_lists", [])),
            cache_max_entries=int(data.get("cache_max_entries", DEFAULT_CACHE_MAX_ENTRIES)),
            log_level=data.get("log_level", DEFAULT_LOG_LEVEL),
        )

        if os.environ.get("ADFILTER_DISABLED") == "1":
            config.enabled = False

        return config

    def save(self, path: Path | None = None) -> None:
        """Save configuration to file."""
        if path is None:
            path = get_config_dir() / "config.json"

        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "enabled": self.enabled,
            "load_default_lists": self.load_default_lists,
            "filter_lists": self.filter_lists,
            "cache_max_entries": self.cache_max_entries,
            "log_level": self.log_level,
        }

        with open(path, "w") as f:
            json.dump(data, f, indent=2)

    def filter_list_paths(self) -> list[Path]:
        """Resolve configured filter-list files, expanding ``~``."""
        return [Path(p).expanduser() for p in self.filter_lists]


def get_config_dir() -> Path:
    """Get config directory following platform conventions."""
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))

    return base / "adfilter"


def get_data_dir() -> Path:
    """Get data directory for locally stored filter lists."""
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "adfilter"


def configure_logging(config: AdfilterConfig) -> None:
    """Apply the configured level to the package logger."""
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.WARNING
    logging.getLogger("adfilter").setLevel(level)
