"""Durable key-value slots that hold the serialized state document."""

from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import redis
from upstash_redis import Redis as UpstashRedis

from ..config import StorageConfig

logger = logging.getLogger(__name__)


class StorageUnavailableError(RuntimeError):
    """The storage medium itself cannot be reached."""


class StateSlot(ABC):
    """A single named slot holding one serialized document."""

    @abstractmethod
    def read(self) -> Optional[str]:
        """Return the stored payload, or ``None`` when the slot is empty."""

    @abstractmethod
    def write(self, payload: str) -> None:
        """Replace the stored payload."""

    @abstractmethod
    def delete(self) -> None:
        """Remove the payload; deleting an empty slot is not an error."""


class FileStateSlot(StateSlot):
    """
    Slot backed by a JSON file inside the data directory.

    Writes are atomic: content is flushed to a temp file in the same
    directory and then moved into place via ``os.replace``.
    """

    def __init__(self, data_dir: str | Path, key: str):
        data_dir = Path(data_dir).expanduser()
        try:
            data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageUnavailableError(f'Cannot create data directory {data_dir}') from exc
        self._path = data_dir.resolve() / f'{key}.json'

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> Optional[str]:
        if not self._path.is_file():
            return None
        try:
            return self._path.read_text(encoding='utf-8')
        except OSError as exc:
            raise StorageUnavailableError(f'Cannot read {self._path}') from exc

    def write(self, payload: str) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._path.parent),
            prefix='.state_',
            suffix='.tmp',
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, str(self._path))
        except Exception:
            # Clean up temp file on failure
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete(self) -> None:
        self._path.unlink(missing_ok=True)


class RedisStateSlot(StateSlot):
    """Slot stored under one Redis key, with an optional filesystem fallback.

    Works with both ``redis.Redis`` and the Upstash REST client, which share
    the ``get``/``set``/``delete`` surface.
    """

    def __init__(self, client: Any, key: str, fallback: Optional[StateSlot] = None):
        self._client = client
        self._key = f'mycoach:{key}'
        self._fallback = fallback

    @property
    def key(self) -> str:
        return self._key

    def read(self) -> Optional[str]:
        try:
            raw = self._client.get(self._key)
        except Exception:
            logger.warning('Redis read failed; using filesystem fallback', exc_info=True)
            return self._fallback.read() if self._fallback else None

        if raw is None:
            # Redis miss should check filesystem fallback
            return self._fallback.read() if self._fallback else None
        if isinstance(raw, bytes):
            raw = raw.decode('utf-8')
        return raw

    def write(self, payload: str) -> None:
        try:
            self._client.set(self._key, payload)
            return
        except Exception:
            if self._fallback is None:
                raise
            logger.warning('Redis write failed; using filesystem fallback', exc_info=True)
        self._fallback.write(payload)

    def delete(self) -> None:
        try:
            self._client.delete(self._key)
        except Exception:
            logger.warning('Redis delete failed', exc_info=True)
            if self._fallback is None:
                raise
        if self._fallback is not None:
            self._fallback.delete()


def _init_redis(config: StorageConfig) -> Optional[Any]:
    """Initialise a Redis client when Redis or Upstash credentials are available."""

    if config.redis_url:
        try:
            return redis.from_url(config.redis_url, decode_responses=True)
        except Exception:  # pragma: no cover - network dependent
            logger.warning('Redis init failed', exc_info=True)

    if config.upstash_rest_url and config.upstash_rest_token:
        try:
            return UpstashRedis(url=config.upstash_rest_url, token=config.upstash_rest_token)
        except Exception:  # pragma: no cover - network dependent
            logger.warning('Upstash REST client init failed', exc_info=True)

    return None


def build_slot(config: StorageConfig) -> StateSlot:
    """Return the slot described by ``config``; the file slot is always the base."""

    file_slot = FileStateSlot(config.data_dir, config.key)
    client = _init_redis(config)
    if client is None:
        logger.info('Storing state in %s', file_slot.path)
        return file_slot
    logger.info('Storing state in Redis with filesystem fallback at %s', file_slot.path)
    return RedisStateSlot(client, config.key, fallback=file_slot)
