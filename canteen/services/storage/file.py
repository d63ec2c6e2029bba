"""
File Key-Value Store with Concurrency Control

Each key is stored as its own file inside the data directory:

    data/<key>.json        stored text
    data/<key>.json.lock   FileLock guarding reads and writes

Writes go to a temporary file in the same directory and are moved into
place with os.replace, so a reader sees either the old or the new text,
never a partial write. Blocking file work runs in a worker thread.

Version: 1.0.0
"""

import asyncio
import hashlib
import logging
import os
import re
import tempfile
import time
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout

from canteen.core.config import get_settings
from canteen.core.exceptions import PersistenceError
from canteen.services.storage.base import BaseKeyValueStore, StorageResult

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


class FileKeyValueStore(BaseKeyValueStore):
    """Thread-safe file-per-key store."""

    def __init__(self, directory: Optional[str] = None, lock_timeout: Optional[int] = None):
        settings = get_settings()
        self.directory = Path(directory or settings.data_directory)
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.storage_lock_timeout

        logger.info(f"FileKeyValueStore initialized (directory={self.directory})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "file"

    def _ensure_data_dir(self) -> None:
        """Create data directory if needed."""
        if not self.directory.exists():
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.directory}")

    def path_for(self, key: str) -> Path:
        """
        File holding a key.

        Keys with characters unsafe in file names are sanitized and get a
        short hash suffix so two different keys never share a file.
        """
        name = _UNSAFE.sub("_", key)
        if name != key or not name:
            digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
            name = f"{name}-{digest}"
        return self.directory / f"{name}.json"

    def _lock_for(self, path: Path) -> FileLock:
        return FileLock(str(path) + ".lock", timeout=self.lock_timeout)

    # =========================================================================
    # BLOCKING OPERATIONS (run in a worker thread)
    # =========================================================================

    def _read(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None

        with self._lock_for(path):
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")

    def _write(self, key: str, value: str) -> None:
        self._ensure_data_dir()
        path = self.path_for(key)

        with self._lock_for(path):
            logger.debug(f"Lock acquired for {path.name}")
            fd, tmp_name = tempfile.mkstemp(dir=str(self.directory), prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        logger.debug(f"Lock released for {path.name}")

    def _delete(self, key: str) -> None:
        path = self.path_for(key)
        if not path.exists():
            return

        with self._lock_for(path):
            if path.exists():
                path.unlink()

    # =========================================================================
    # INTERFACE
    # =========================================================================

    async def get(self, key: str) -> Optional[str]:
        try:
            return await asyncio.to_thread(self._read, key)
        except Timeout:
            logger.error(f"Lock timeout reading {key!r}")
            raise PersistenceError(f"Lock timeout ({self.lock_timeout}s)", key=key, operation="get")
        except OSError as e:
            logger.error(f"Error reading {key!r}: {e}")
            raise PersistenceError(str(e), key=key, operation="get") from e

    async def set(self, key: str, value: str) -> StorageResult:
        start = time.perf_counter()
        try:
            await asyncio.to_thread(self._write, key, value)
        except Timeout:
            logger.error(f"Lock timeout writing {key!r}")
            return StorageResult(
                success=False,
                key=key,
                error_message=f"Lock timeout ({self.lock_timeout}s)",
                response_time_ms=(time.perf_counter() - start) * 1000,
            )
        except OSError as e:
            logger.exception(f"Error writing {key!r}")
            return StorageResult(
                success=False,
                key=key,
                error_message=str(e),
                response_time_ms=(time.perf_counter() - start) * 1000,
            )

        return StorageResult(
            success=True,
            key=key,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def remove(self, key: str) -> StorageResult:
        start = time.perf_counter()
        try:
            await asyncio.to_thread(self._delete, key)
        except Timeout:
            logger.error(f"Lock timeout removing {key!r}")
            return StorageResult(
                success=False,
                key=key,
                error_message=f"Lock timeout ({self.lock_timeout}s)",
            )
        except OSError as e:
            logger.error(f"Error removing {key!r}: {e}")
            return StorageResult(success=False, key=key, error_message=str(e))

        return StorageResult(
            success=True,
            key=key,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    async def health_check(self) -> bool:
        """Healthy when the data directory exists (or can be made) and is writable."""
        try:
            await asyncio.to_thread(self._ensure_data_dir)
        except OSError as e:
            logger.error(f"File store health check failed: {e}")
            return False
        return os.access(self.directory, os.W_OK)
