"""Configuration management for MyCoach.

Values come from the environment (a local ``.env`` file is loaded first).

ENVIRONMENT:
- GEMINI_API_KEY / GOOGLE_API_KEY: Gemini key from https://aistudio.google.com/app/apikey
- GEMINI_MODEL (optional): model id, defaults to gemini-2.5-flash
- STORAGE_DATA_DIR (optional): directory for the local state file
- MYCOACH_STORAGE_KEY (optional): name of the state slot
- UPSTASH_REDIS_URL / REDIS_URL (optional): keep state in Redis instead of a file
- UPSTASH_REDIS_REST_URL + UPSTASH_REDIS_REST_TOKEN (optional): Upstash REST backend
- MYCOACH_TIMEZONE (optional): timezone used to decide what "today" is
- MYCOACH_LOG_LEVEL (optional): root log level
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

STORAGE_KEY = 'mycoach_data_v2'
DEFAULT_MODEL = 'gemini-2.5-flash'
DEFAULT_DATA_DIR = '~/.mycoach'

# Number of prior messages sent to the model with each turn.
HISTORY_WINDOW = 10

_ENV_KEY_PRIORITY = (
    'GEMINI_API_KEY',
    'GOOGLE_API_KEY',
    'MYCOACH_GEMINI_API_KEY',
)


def _get_env_value(*names: str) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def _bool_from_env(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in {'1', 'true', 'yes', 'on'}


def _int_from_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning('Ignoring non-integer %s=%r', name, value)
        return default


@dataclass
class StorageConfig:
    """Where the state document lives."""
    data_dir: Path
    key: str = STORAGE_KEY
    redis_url: Optional[str] = None
    upstash_rest_url: Optional[str] = None
    upstash_rest_token: Optional[str] = None


@dataclass
class GeminiConfig:
    """Google Gemini API configuration."""
    api_key: Optional[str]
    model: str = DEFAULT_MODEL

    @property
    def is_valid(self) -> bool:
        """Check if config has real credentials."""
        return bool(self.api_key) and not self.api_key.startswith('your_')


@dataclass
class AppConfig:
    """Main application configuration."""
    storage: StorageConfig
    gemini: GeminiConfig
    timezone: str = 'UTC'
    history_window: int = HISTORY_WINDOW
    log_level: str = 'INFO'
    debug: bool = False


def load_config() -> AppConfig:
    """Load configuration from the environment."""

    load_dotenv()

    data_dir = Path(os.getenv('STORAGE_DATA_DIR', DEFAULT_DATA_DIR)).expanduser()
    storage = StorageConfig(
        data_dir=data_dir,
        key=os.getenv('MYCOACH_STORAGE_KEY', STORAGE_KEY),
        redis_url=_get_env_value('UPSTASH_REDIS_URL', 'REDIS_URL'),
        upstash_rest_url=os.getenv('UPSTASH_REDIS_REST_URL'),
        upstash_rest_token=os.getenv('UPSTASH_REDIS_REST_TOKEN'),
    )

    gemini = GeminiConfig(
        api_key=_get_env_value(*_ENV_KEY_PRIORITY),
        model=os.getenv('GEMINI_MODEL', DEFAULT_MODEL),
    )
    if not gemini.is_valid:
        logger.info('Gemini API key not found in environment; coach replies will fall back.')

    return AppConfig(
        storage=storage,
        gemini=gemini,
        timezone=os.getenv('MYCOACH_TIMEZONE', 'UTC'),
        history_window=_int_from_env('MYCOACH_HISTORY_WINDOW', HISTORY_WINDOW),
        log_level=os.getenv('MYCOACH_LOG_LEVEL', 'INFO'),
        debug=_bool_from_env('FLASK_DEBUG', False),
    )
