"""
Application configuration manager.
Stores settings in a JSON file under Application Support.
"""

import json
import logging
from pathlib import Path

from clipdownloader.core.constants import (
    CONFIG_PATH, DEFAULT_OUTPUT_ROOT, DEFAULT_FILENAME_TEMPLATE,
    DEFAULT_VIDEO_ENCODER, DEFAULT_AUDIO_ENCODER,
    SOCKET_TIMEOUT_SEC, DOWNLOAD_RETRIES, GRACE_PERIOD_SEC, LOG_HISTORY,
)

logger = logging.getLogger(__name__)

# Validation bounds: key -> (type, minimum, maximum, default)
_NUMERIC_BOUNDS = {
    'socket_timeout_sec': (int, 5, 300, SOCKET_TIMEOUT_SEC),
    'retries': (int, 0, 10, DOWNLOAD_RETRIES),
    'grace_period_sec': (float, 0.1, 30.0, GRACE_PERIOD_SEC),
    'log_history': (int, 10, 1000, LOG_HISTORY),
}

_DEFAULTS = {
    'ytdlp_path': "",
    'ffmpeg_path': "",
    'output_root': str(DEFAULT_OUTPUT_ROOT),
    'filename_template': DEFAULT_FILENAME_TEMPLATE,
    'video_encoder': DEFAULT_VIDEO_ENCODER,
    'audio_encoder': DEFAULT_AUDIO_ENCODER,
    'socket_timeout_sec': SOCKET_TIMEOUT_SEC,
    'retries': DOWNLOAD_RETRIES,
    'grace_period_sec': GRACE_PERIOD_SEC,
    'log_history': LOG_HISTORY,
    'keep_temp_on_failure': False,
}


def default_config() -> dict:
    return dict(_DEFAULTS)


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except Exception as e:
                logger.warning("Failed to load config: %s", e)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _NUMERIC_BOUNDS:
            kind, low, high, default = _NUMERIC_BOUNDS[key]
            try:
                value = kind(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return default
            return max(low, min(high, value))

        if key in ('ytdlp_path', 'ffmpeg_path'):
            return str(value or "")

        if key in ('video_encoder', 'audio_encoder', 'filename_template'):
            if not isinstance(value, str) or not value.strip():
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]

        if key == 'keep_temp_on_failure':
            return bool(value)

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def output_root(self) -> str:
        return self._data.get('output_root', str(DEFAULT_OUTPUT_ROOT))

    @output_root.setter
    def output_root(self, value: str):
        self._data['output_root'] = value
        self.save()

    @property
    def filename_template(self) -> str:
        return self._data.get('filename_template', DEFAULT_FILENAME_TEMPLATE)

    @filename_template.setter
    def filename_template(self, value: str):
        self.set('filename_template', value)

    @property
    def keep_temp_on_failure(self) -> bool:
        return self._data.get('keep_temp_on_failure', False)

    @keep_temp_on_failure.setter
    def keep_temp_on_failure(self, value: bool):
        self._data['keep_temp_on_failure'] = bool(value)
        self.save()
