"""
Application configuration manager.
Stores settings in a JSON file under the user config directory.
"""

import json
import logging
from pathlib import Path

from subchunker.core.constants import (
    CONFIG_PATH, DEFAULT_OUTPUT_ROOT, DEFAULT_BASE_URL, DEFAULT_MODEL, DEFAULT_TARGET_LANG,
    DEFAULT_CHUNK_SECONDS, DEFAULT_OVERLAP_CUES, DEFAULT_CONCURRENCY, DEFAULT_TEMPERATURE,
    TRANSCRIPTION_CHUNK_SECONDS, TRANSCRIPTION_OVERLAP_SECONDS,
    MIN_CHUNK_SECONDS, MAX_CHUNK_SECONDS, MAX_CONCURRENCY,
    RATE_LIMIT_MAX_ATTEMPTS, TRANSIENT_MAX_ATTEMPTS,
)
from subchunker.core.retry_policy import RetryPolicy

# Validation bounds
_OVERLAP_CUES_MAX = 20
_TEMPERATURE_MAX = 2.0
_ATTEMPTS_MAX = 10

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'output_root': str(DEFAULT_OUTPUT_ROOT),
    'base_url': DEFAULT_BASE_URL,
    'model_name': DEFAULT_MODEL,
    'target_lang': DEFAULT_TARGET_LANG,
    'chunk_seconds': DEFAULT_CHUNK_SECONDS,
    'overlap_cues': DEFAULT_OVERLAP_CUES,
    'transcription_chunk_seconds': TRANSCRIPTION_CHUNK_SECONDS,
    'transcription_overlap_seconds': TRANSCRIPTION_OVERLAP_SECONDS,
    'concurrency': DEFAULT_CONCURRENCY,
    'temperature': DEFAULT_TEMPERATURE,
    'rate_limit_attempts': RATE_LIMIT_MAX_ATTEMPTS,
    'transient_attempts': TRANSIENT_MAX_ATTEMPTS,
}


def _clamp_number(key: str, value, cast, low, high):
    try:
        value = cast(value)
    except (TypeError, ValueError):
        logger.warning("Invalid %s %r, using default", key, value)
        return _DEFAULTS[key]
    return max(low, min(high, value))


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging validated values over the defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to load config: %s", e)
                return
            for key, value in saved.items():
                self._data[key] = self._validate(key, value)
            self._check_overlap()

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
        self._check_overlap()
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in ('chunk_seconds', 'transcription_chunk_seconds'):
            return _clamp_number(key, value, float, MIN_CHUNK_SECONDS, MAX_CHUNK_SECONDS)

        if key == 'transcription_overlap_seconds':
            return _clamp_number(key, value, float, 0.0, MAX_CHUNK_SECONDS)

        if key == 'overlap_cues':
            return _clamp_number(key, value, int, 0, _OVERLAP_CUES_MAX)

        if key == 'concurrency':
            return _clamp_number(key, value, int, 1, MAX_CONCURRENCY)

        if key == 'temperature':
            return _clamp_number(key, value, float, 0.0, _TEMPERATURE_MAX)

        if key in ('rate_limit_attempts', 'transient_attempts'):
            return _clamp_number(key, value, int, 1, _ATTEMPTS_MAX)

        if key in ('base_url', 'model_name', 'target_lang', 'output_root'):
            if not isinstance(value, str) or not value.strip():
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return value.strip()

        return value

    def _check_overlap(self):
        # transcription windows must advance
        if self._data['transcription_overlap_seconds'] >= self._data['transcription_chunk_seconds']:
            logger.warning("transcription_overlap_seconds must be below transcription_chunk_seconds, using default")
            self._data['transcription_overlap_seconds'] = min(
                TRANSCRIPTION_OVERLAP_SECONDS, self._data['transcription_chunk_seconds'] / 2,
            )

    def as_dict(self) -> dict:
        return dict(self._data)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            rate_limit_attempts=self._data['rate_limit_attempts'],
            transient_attempts=self._data['transient_attempts'],
        )

    @property
    def output_root(self) -> str:
        return self._data.get('output_root', str(DEFAULT_OUTPUT_ROOT))

    @output_root.setter
    def output_root(self, value: str):
        self.set('output_root', value)

    @property
    def concurrency(self) -> int:
        return self._data.get('concurrency', DEFAULT_CONCURRENCY)

    @concurrency.setter
    def concurrency(self, value: int):
        self.set('concurrency', value)

    @property
    def chunk_seconds(self) -> float:
        return self._data.get('chunk_seconds', DEFAULT_CHUNK_SECONDS)

    @property
    def overlap_cues(self) -> int:
        return self._data.get('overlap_cues', DEFAULT_OVERLAP_CUES)

    @property
    def target_lang(self) -> str:
        return self._data.get('target_lang', DEFAULT_TARGET_LANG)
