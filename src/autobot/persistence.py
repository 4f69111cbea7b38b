"""JSON document persistence.

Each store owns one JSON document on disk (scheduler state, task records,
budget ledger, cost ledger). Reads and writes run in a worker thread so the
event loop never blocks on disk I/O, and writes are atomic so a reader never
observes a partially written document.
"""

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PersistenceError(RuntimeError):
    """A document could not be written to disk."""

    def __init__(self, path: Path, cause: Exception) -> None:
        super().__init__(f"Failed to persist {path}: {cause}")
        self.path = path
        self.cause = cause


def _read_json(path: Path) -> Any:
    """Read a JSON document synchronously (runs in thread)."""
    if not path.exists():
        return None
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.warning(
            "store_document_corrupt",
            extra={"store.path": str(path), "error.message": str(e)},
        )
        return None


def _write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON atomically via tempfile + fsync + os.replace()."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        try:
            Path(tmp).unlink()
        except OSError:
            pass
        raise


class JsonStore(Generic[T]):
    """Transactional load/save of a single JSON document.

    Missing or unreadable documents load as ``default_factory()``. A failed
    write is retried once; a second failure raises ``PersistenceError`` so the
    caller sees that memory and disk have diverged.
    """

    def __init__(self, path: Path, default_factory: Callable[[], T]) -> None:
        self._path = path
        self._default_factory = default_factory
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load_sync(self) -> T:
        """Read the document without an event loop (CLI readers)."""
        data = _read_json(self._path)
        if data is None:
            return self._default_factory()
        return data

    async def load(self) -> T:
        data = await asyncio.to_thread(_read_json, self._path)
        if data is None:
            return self._default_factory()
        return data

    async def save(self, data: T) -> None:
        async with self._lock:
            await self._save_unlocked(data)

    async def mutate(
        self, fn: Callable[[T], T | None] | Callable[[T], Awaitable[T | None]]
    ) -> T:
        """Read-modify-write under the store lock.

        ``fn`` may mutate the document in place (returning None) or return a
        replacement document.
        """
        async with self._lock:
            data = await self.load()
            result = fn(data)
            if asyncio.iscoroutine(result):
                result = await result
            if result is not None:
                data = result
            await self._save_unlocked(data)
            return data

    async def _save_unlocked(self, data: T) -> None:
        try:
            await asyncio.to_thread(_write_json_atomic, self._path, data)
        except OSError as first:
            logger.warning(
                "store_write_retry",
                extra={"store.path": str(self._path), "error.message": str(first)},
            )
            try:
                await asyncio.to_thread(_write_json_atomic, self._path, data)
            except OSError as e:
                logger.error(
                    "store_write_failed",
                    extra={"store.path": str(self._path), "error.message": str(e)},
                )
                raise PersistenceError(self._path, e) from e
