"""
config.py - Configuration loader for the display core.

Loads settings from config.yaml with sensible defaults so that no
display constant (LUT size, histogram bins, ruler thresholds, window
presets) is hard-coded inside a module.

Display preferences that affect every open image (for example "apply the
window to all views") are NOT kept as a mutable module global.  Callers
take an immutable ``DisplaySettings`` snapshot and pass it in; updates go
through a ``DisplaySettingsFeed`` which hands subscribers the new snapshot.
"""

import logging
import os
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Optional

import yaml

logger = logging.getLogger(__name__)

# Resolve the config file relative to the repo root, not the CWD,
# so imports work regardless of where the script is launched from.
_REPO_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
_CONFIG_PATH = os.path.join(_REPO_ROOT, "config.yaml")

_DEFAULTS: dict[str, Any] = {
    "paths": {
        "samples_folder": "data/samples",
        "reports_folder": "reports",
    },
    "display": {
        "lut_size": 256,
        "lut_cache_entries": 32,
        "inverse_lut": False,
        "apply_pixel_padding": True,
        "apply_to_all_views": False,
        "default_colormap": "gray",
    },
    "histogram": {
        "bins": 256,
    },
    "ruler": {
        "min_horizontal_length": 50.0,
        "min_vertical_length": 30.0,
        "minor_tick_spacing": 90.0,
    },
    # Per-modality presets appended after the ones found in the DICOM header.
    "window_presets": {
        "CT": [
            {"name": "Brain", "center": 40.0, "width": 80.0, "shape": "LINEAR"},
            {"name": "Bone", "center": 400.0, "width": 1800.0, "shape": "LINEAR"},
            {"name": "Lung", "center": -600.0, "width": 1500.0, "shape": "LINEAR"},
            {"name": "Soft tissue", "center": 50.0, "width": 400.0, "shape": "LINEAR"},
        ],
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base*, returning a new dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(config_path: str = _CONFIG_PATH) -> dict[str, Any]:
    """
    Load the YAML configuration file and merge it with built-in defaults.

    Parameters
    ----------
    config_path : str
        Path to config.yaml. Defaults to the repo-root config.yaml.

    Returns
    -------
    dict
        Merged configuration dictionary.
    """
    if os.path.exists(config_path):
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}
        logger.debug("Loaded configuration from %s", config_path)
    else:
        user_config = {}

    return _deep_merge(_DEFAULTS, user_config)


# Module-level singleton so callers can just do `from radiometry.config import CONFIG`
CONFIG = load_config()


@dataclass(frozen=True)
class DisplaySettings:
    """Read-only snapshot of the display preferences shared by all views."""
    lut_size: int = 256
    lut_cache_entries: int = 32
    inverse_lut: bool = False
    apply_pixel_padding: bool = True
    apply_to_all_views: bool = False
    default_colormap: str = "gray"
    histogram_bins: int = 256
    ruler_min_horizontal: float = 50.0
    ruler_min_vertical: float = 30.0
    ruler_minor_tick_spacing: float = 90.0

    @classmethod
    def from_config(cls, config: Optional[dict[str, Any]] = None) -> "DisplaySettings":
        config = config or CONFIG
        display = config["display"]
        ruler = config["ruler"]
        return cls(
            lut_size=int(display["lut_size"]),
            lut_cache_entries=int(display["lut_cache_entries"]),
            inverse_lut=bool(display["inverse_lut"]),
            apply_pixel_padding=bool(display["apply_pixel_padding"]),
            apply_to_all_views=bool(display["apply_to_all_views"]),
            default_colormap=str(display["default_colormap"]),
            histogram_bins=int(config["histogram"]["bins"]),
            ruler_min_horizontal=float(ruler["min_horizontal_length"]),
            ruler_min_vertical=float(ruler["min_vertical_length"]),
            ruler_minor_tick_spacing=float(ruler["minor_tick_spacing"]),
        )


class DisplaySettingsFeed:
    """
    Holds the current ``DisplaySettings`` and notifies subscribers on change.

    Each update builds a new frozen snapshot; readers that kept the old one
    keep a consistent view.
    """

    def __init__(self, settings: Optional[DisplaySettings] = None) -> None:
        self._settings = settings or DisplaySettings.from_config()
        self._subscribers: list[Callable[[DisplaySettings], None]] = []
        self._lock = threading.Lock()

    @property
    def current(self) -> DisplaySettings:
        return self._settings

    def subscribe(self, callback: Callable[[DisplaySettings], None]) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[DisplaySettings], None]) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def update(self, **changes: Any) -> DisplaySettings:
        """Publish a new snapshot with *changes* applied and return it."""
        with self._lock:
            new_settings = replace(self._settings, **changes)
            if new_settings == self._settings:
                return self._settings
            self._settings = new_settings
            subscribers = list(self._subscribers)

        logger.debug("Display settings updated: %s", changes)
        for callback in subscribers:
            callback(new_settings)
        return new_settings
