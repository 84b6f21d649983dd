"""Concurrency-safe JSON persistence.

All state files (config, known marketplaces, marketplace manifests and the
shared settings file) go through a JsonStore. Operations on the same path
are serialized by a KeyedMutex; writes are committed with an atomic rename.

Locks are per-process only: two separate claude-plugins processes editing the
same file can still race (last writer wins).
"""

import asyncio
import json
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union
from uuid import uuid4

import aiofiles
import aiofiles.os
import structlog

log = structlog.get_logger()

PathLike = Union[str, Path]


class KeyedMutex:
    """A set of asyncio locks addressed by string key.

    Waiters on one key are served in arrival order. A key's lock is dropped
    once nobody holds or waits on it, so the mutex does not grow with the
    number of files ever touched.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


def _lock_key(path: PathLike) -> str:
    return str(Path(path).expanduser().absolute())


class JsonStore:
    """Reads and writes JSON documents with per-path mutual exclusion."""

    def __init__(self, mutex: Optional[KeyedMutex] = None):
        self.mutex = mutex or KeyedMutex()

    async def read_json(self, path: PathLike) -> Optional[Any]:
        """Read and parse a JSON file.

        Returns None if the file does not exist, is blank, or is not valid
        JSON. A parse failure is logged, never raised.
        """
        async with self.mutex.hold(_lock_key(path)):
            return await self._read(Path(path))

    async def write_json(self, path: PathLike, data: Any) -> None:
        """Serialize data with 2-space indentation and commit it atomically."""
        async with self.mutex.hold(_lock_key(path)):
            await self._write(Path(path), data)

    async def update_json(
        self,
        path: PathLike,
        mutate: Callable[[Any], Any],
        default: Callable[[], Any] = dict,
    ) -> Any:
        """Read-modify-write a JSON file while holding its lock.

        `mutate` receives the current document (or `default()` when the file
        is missing or unreadable) and returns the document to write. The
        written document is returned.
        """
        path = Path(path)
        async with self.mutex.hold(_lock_key(path)):
            current = await self._read(path)
            if current is None:
                current = default()
            updated = mutate(current)
            await self._write(path, updated)
            return updated

    async def ensure_directories(self, *dirs: PathLike) -> None:
        for d in dirs:
            await aiofiles.os.makedirs(d, exist_ok=True)

    async def _read(self, path: Path) -> Optional[Any]:
        if not await aiofiles.os.path.exists(path):
            return None

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()

        if not content.strip():
            return None

        try:
            return json.loads(content)
        except json.JSONDecodeError as e:
            log.warning("json_parse_failed", path=str(path), error=str(e))
            return None

    async def _write(self, path: Path, data: Any) -> None:
        content = json.dumps(data, indent=2, ensure_ascii=False)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)

        # Same directory as the target so os.replace never crosses devices
        temp_path = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        try:
            async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                await f.write(content)
                await f.flush()
                os.fsync(f.fileno())
            await aiofiles.os.replace(temp_path, path)
        except BaseException:
            if await aiofiles.os.path.exists(temp_path):
                await aiofiles.os.remove(temp_path)
            raise
