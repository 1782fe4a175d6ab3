"""
Configuration Management for GestOS

Loads and provides access to configuration from config.json.
Every tuning constant (timings, thresholds, model sources, resolution tiers)
lives here so it can be changed without touching the code.
Supports both old format (direct values) and new format ([value, description]).
"""

import copy
import json
from typing import Dict, Any, Optional, Tuple
from pathlib import Path


DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.json"


class Config:
    """
    Configuration manager that loads from config.json.

    Instances are created explicitly and handed to the components that need
    them, so independent applications (or tests) never share settings.
    """

    def __init__(self, config_path: Optional[str] = None, overrides: Optional[Dict] = None):
        """
        Initialize configuration from JSON file.

        Args:
            config_path: Path to config.json. If None, the packaged
                         config.json next to this module is used.
            overrides: Optional nested dict merged on top of the loaded values.
        """
        self._config_path = str(config_path) if config_path is not None else str(DEFAULT_CONFIG_PATH)
        self._config_data: Dict[str, Any] = {}
        self._overrides = overrides or {}
        self.reload()

    def reload(self):
        """Reload configuration from file."""
        try:
            with open(self._config_path, 'r', encoding='utf-8') as f:
                self._config_data = json.load(f)
            print(f"✓ Loaded configuration from {self._config_path}")
        except FileNotFoundError:
            print(f"⚠ Config file not found: {self._config_path}")
            print("  Using default values")
            self._config_data = self._get_defaults()
        except json.JSONDecodeError as e:
            print(f"⚠ Error parsing config file: {e}")
            print("  Using default values")
            self._config_data = self._get_defaults()

        if self._overrides:
            _deep_merge(self._config_data, self._overrides)

    def save(self):
        """Save current configuration back to file."""
        try:
            with open(self._config_path, 'w', encoding='utf-8') as f:
                json.dump(self._config_data, f, indent=2, ensure_ascii=False)
            print(f"✓ Saved configuration to {self._config_path}")
        except OSError as e:
            print(f"✗ Error saving config: {e}")

    def get(self, *keys, default=None) -> Any:
        """
        Get configuration value using dot notation.
        Handles both old format (direct values) and new format ([value, description]).

        Examples:
            config.get('camera', 'resolution')  # Returns '720p'
            config.get('games', 'simon_says', 'min_confidence')

        Args:
            keys: Path to value (e.g., 'games', 'simon_says', 'cooldown')
            default: Default value if path doesn't exist

        Returns:
            Configuration value or default
        """
        current = self._config_data
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return default

        return _unwrap(current)

    def get_list(self, *keys, default=None) -> list:
        """
        Get a list-valued setting.

        Accepts [[...], "description"] as well as a plain list, so a plain
        two-string list is never mistaken for [value, description].
        """
        current = self._config_data
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return list(default or [])

        if _is_described(current) and isinstance(current[0], list):
            return list(current[0])
        if isinstance(current, list):
            return list(current)
        if current is None:
            return list(default or [])
        return [current]

    def get_with_description(self, *keys, default=None) -> Tuple[Any, str]:
        """
        Get configuration value AND description.

        Returns:
            Tuple of (value, description) or (default, "")
        """
        current = self._config_data
        for key in keys:
            if isinstance(current, dict) and key in current:
                current = current[key]
            else:
                return (default, "")

        if _is_described(current):
            return (current[0], current[1])
        return (current, "")

    def set(self, *keys, value):
        """
        Set configuration value using dot notation.
        Keeps the description when the existing entry uses [value, description].

        Example:
            config.set('camera', 'resolution', value='1080p')
        """
        if len(keys) == 0:
            return

        current = self._config_data
        for key in keys[:-1]:
            if key not in current or not isinstance(current[key], dict):
                current[key] = {}
            current = current[key]

        existing = current.get(keys[-1])
        if _is_described(existing):
            current[keys[-1]] = [value, existing[1]]
        else:
            current[keys[-1]] = value

    def _get_defaults(self) -> Dict:
        """Return default configuration values."""
        return {
            "camera": {
                "index": 0,
                "resolution": "720p",
                "resolution_tiers": {
                    "480p": [640, 480],
                    "720p": [1280, 720],
                    "1080p": [1920, 1080]
                },
                "facing_mode": "user",
                "flip_horizontal": True,
                "probe_limit": 4,
                "read_retry_delay": 0.01,
                "dimension_poll_interval": 0.1,
                "dimension_wait_timeout": 5.0,
                "settle_delay": 0.5
            },
            "model": {
                "remote_url": "https://storage.googleapis.com/mediapipe-models/gesture_recognizer/gesture_recognizer/float16/1/gesture_recognizer.task",
                "local_path": "models/gesture_recognizer.task",
                "cache_dir": "~/.cache/gestos",
                "init_timeout": 30.0,
                "download_timeout": 15.0,
                "delegate": "CPU",
                "num_hands": 1,
                "min_hand_detection_confidence": 0.5,
                "min_tracking_confidence": 0.5,
                "benign_error_patterns": [
                    "timestamp must be monotonically increasing",
                    "Packet timestamp mismatch",
                    "Graph has errors"
                ]
            },
            "session": {
                "frame_rate": 60
            },
            "consumers": {
                "activation_budget": 45.0
            },
            "games": {
                "rock_paper_scissors": {
                    "countdown_seconds": 3,
                    "countdown_interval": 1.0,
                    "play_window": 3.0
                },
                "simon_says": {
                    "base_length": 2,
                    "min_confidence": 75,
                    "show_lead_in": 1.0,
                    "reveal_duration": 1.5,
                    "reveal_gap": 0.5,
                    "countdown_seconds": 3,
                    "countdown_interval": 1.0,
                    "confirm_delay": 0.5,
                    "cooldown": 0.8,
                    "success_delay": 2.5,
                    "allow_adjacent_repeats": False
                }
            },
            "visual_feedback": {
                "show_landmarks": True,
                "connector_color": [0, 255, 0],
                "landmark_color": [0, 0, 255],
                "connector_thickness": 3,
                "landmark_radius": 4
            },
            "display": {
                "window_width": 1280,
                "window_height": 800,
                "refresh_interval_ms": 33
            },
            "processes": {
                "executables_dir": "executables",
                "executables": {
                    "gestos-volumen": "GestOS Volumen.exe",
                    "gestos-aplicaciones": "GestOS App.exe",
                    "gestos-multimedia": "GestOS Multimedia.exe",
                    "gestos-sistema": "GestOS Sistema.exe",
                    "gestos-atajos": "GestOS Atajos.exe",
                    "gestos-mouse": "GestOS Mouse.exe",
                    "gestos-navegacion": "GestOS Navegacion.exe"
                }
            }
        }

    @property
    def path(self) -> str:
        """Path of the config file backing this instance."""
        return self._config_path

    @property
    def data(self) -> Dict:
        """Get entire configuration dictionary."""
        return self._config_data


def _is_described(value) -> bool:
    # [640, 480] is a plain value, [640, "Camera width"] is a described one.
    # List values are always written as [[...], "description"] in config.json.
    return isinstance(value, list) and len(value) == 2 and isinstance(value[1], str)


def _unwrap(value):
    """Strip the description part of [value, description] entries."""
    if _is_described(value):
        return value[0]
    return value


def _deep_merge(target: Dict, source: Dict):
    for key, value in source.items():
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            _deep_merge(existing, value)
        elif _is_described(existing) and not isinstance(value, dict):
            # Keep the [value, description] shape so list values stay unambiguous
            target[key] = [copy.deepcopy(value), existing[1]]
        else:
            target[key] = copy.deepcopy(value)


def load_config(config_path: Optional[str] = None, **overrides) -> Config:
    """Convenience constructor used by the CLI entry point."""
    return Config(config_path, overrides=overrides or None)
