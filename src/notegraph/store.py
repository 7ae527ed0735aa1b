"""Filesystem access for a vault.

ContentStore is the only component that touches the disk. Reads go through
the content cache; every write, delete or rename drops the affected cache
entries and notifies invalidation listeners (the link graph and the query
cache subscribe here).
"""

from __future__ import annotations

import asyncio
import fnmatch
import hashlib
import logging
import posixpath
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator

from .cache import BoundedCache, content_byte_size
from .config import HASH_CHUNK_SIZE, LARGE_FILE_THRESHOLD, NOTE_GLOB, SYSTEM_DIRECTORIES
from .errors import InvalidPathError, IOFailureError, NoteExistsError, NoteNotFoundError
from .models import NoteStat

log = logging.getLogger(__name__)

InvalidationListener = Callable[[list[str]], None]


def walk_files(root: Path) -> Iterator[Path]:
    """Yield every regular file under ``root``.

    Dot-prefixed entries and system directories are skipped, as are symlinked
    directories. Unreadable directories are logged and skipped.
    """
    pending = [root]
    while pending:
        directory = pending.pop()
        try:
            entries = sorted(directory.iterdir())
        except OSError as e:
            log.warning("Cannot list %s: %s", directory, e)
            continue

        for entry in entries:
            if entry.name.startswith(".") or entry.name in SYSTEM_DIRECTORIES:
                continue
            if entry.is_dir():
                if not entry.is_symlink():
                    pending.append(entry)
            elif entry.is_file():
                yield entry


def _matches_pattern(rel_path: str, pattern: str) -> bool:
    if fnmatch.fnmatchcase(rel_path, pattern):
        return True
    # "**/" also matches zero directories
    return pattern.startswith("**/") and _matches_pattern(rel_path, pattern[3:])


class ContentStore:
    """Cache-backed read/write access to the notes under ``root``."""

    def __init__(
        self,
        root: Path,
        cache: BoundedCache[str] | None = None,
        large_file_threshold: int = LARGE_FILE_THRESHOLD,
    ) -> None:
        self.root = Path(root)
        self.cache = cache
        self.large_file_threshold = large_file_threshold
        self._listeners: list[InvalidationListener] = []
        # Per-note mutation counters; a read only caches what it saw if the
        # counter has not moved since the read began
        self._versions: dict[str, int] = {}

    # ─────────────────────────────────────────────────────────────────────
    # Paths
    # ─────────────────────────────────────────────────────────────────────

    def normalize(self, path: str) -> str:
        """Normalise to a vault-relative POSIX path.

        Raises:
            InvalidPathError: If the path is empty or escapes the vault root.
        """
        cleaned = path.strip().replace("\\", "/").lstrip("/")
        if not cleaned:
            raise InvalidPathError(path, "empty path")
        normalized = posixpath.normpath(cleaned)
        if normalized in (".", "..") or normalized.startswith("../"):
            raise InvalidPathError(path, "path escapes the vault root")
        return normalized

    def ensure_md(self, path: str) -> str:
        normalized = self.normalize(path)
        return normalized if normalized.endswith(".md") else f"{normalized}.md"

    def to_absolute(self, path: str) -> Path:
        return self.root / self.normalize(path)

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────

    def exists(self, path: str) -> bool:
        return self.to_absolute(path).is_file()

    def stat(self, path: str) -> NoteStat:
        key = self.normalize(path)
        try:
            st = (self.root / key).stat()
        except FileNotFoundError as e:
            raise NoteNotFoundError(key) from e
        except OSError as e:
            raise IOFailureError(key, "stat", e) from e
        created = getattr(st, "st_birthtime", st.st_ctime)
        return NoteStat(
            size=st.st_size,
            created=datetime.fromtimestamp(created, tz=UTC),
            modified=datetime.fromtimestamp(st.st_mtime, tz=UTC),
        )

    def _read_disk(self, key: str) -> str:
        abs_path = self.root / key
        if not abs_path.is_file():
            raise NoteNotFoundError(key)
        try:
            return abs_path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise NoteNotFoundError(key) from e
        except (OSError, UnicodeDecodeError) as e:
            raise IOFailureError(key, "read", e) from e

    def _remember(self, key: str, content: str) -> None:
        if self.cache is None:
            return
        size = content_byte_size(content)
        if size < self.large_file_threshold:
            self.cache.set(key, content, size)

    def read(self, path: str) -> str:
        """Return a note's text, from the content cache when possible.

        Raises:
            NoteNotFoundError: If the file does not exist.
            IOFailureError: On any other read or decode failure.
        """
        key = self.normalize(path)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        content = self._read_disk(key)
        self._remember(key, content)
        return content

    async def read_async(self, path: str) -> str:
        """Same as :meth:`read` with the disk read in a worker thread."""
        key = self.normalize(path)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        version = self._versions.get(key, 0)
        content = await asyncio.to_thread(self._read_disk, key)
        if self._versions.get(key, 0) == version:
            self._remember(key, content)
        else:
            log.debug("Not caching %s: changed while it was being read", key)
        return content

    def iter_lines(self, path: str) -> Iterator[str]:
        """Yield a note's lines without buffering the whole file."""
        key = self.normalize(path)
        try:
            with (self.root / key).open(encoding="utf-8") as f:
                for line in f:
                    yield line.rstrip("\r\n")
        except FileNotFoundError as e:
            raise NoteNotFoundError(key) from e
        except (OSError, UnicodeDecodeError) as e:
            raise IOFailureError(key, "read", e) from e

    def file_hash(self, path: str) -> str:
        """Streaming SHA-256 of a file's bytes."""
        key = self.normalize(path)
        digest = hashlib.sha256()
        try:
            with (self.root / key).open("rb") as f:
                for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
                    digest.update(chunk)
        except FileNotFoundError as e:
            raise NoteNotFoundError(key) from e
        except OSError as e:
            raise IOFailureError(key, "hash", e) from e
        return digest.hexdigest()

    def list(self, pattern: str = NOTE_GLOB) -> list[str]:
        """Sorted vault-relative paths matching ``pattern``.

        ``*`` matches across directories; ``**/`` also matches the root.
        """
        if not self.root.is_dir():
            return []
        paths = []
        for file_path in walk_files(self.root):
            rel = file_path.relative_to(self.root).as_posix()
            if _matches_pattern(rel, pattern):
                paths.append(rel)
        return sorted(paths)

    # ─────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────

    def add_invalidation_listener(self, listener: InvalidationListener) -> None:
        self._listeners.append(listener)

    def _invalidate(self, keys: list[str]) -> None:
        for key in keys:
            self._versions[key] = self._versions.get(key, 0) + 1
        if self.cache is not None:
            for key in keys:
                self.cache.delete(key)
        for listener in self._listeners:
            listener(keys)

    def write(self, path: str, content: str) -> None:
        """Write a note, creating parent directories as needed."""
        key = self.normalize(path)
        abs_path = self.root / key
        try:
            abs_path.parent.mkdir(parents=True, exist_ok=True)
            abs_path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise IOFailureError(key, "write", e) from e
        finally:
            self._invalidate([key])
        log.debug("Wrote %s (%d bytes)", key, content_byte_size(content))

    def delete(self, path: str) -> None:
        key = self.normalize(path)
        abs_path = self.root / key
        if not abs_path.is_file():
            raise NoteNotFoundError(key)
        try:
            abs_path.unlink()
        except FileNotFoundError as e:
            raise NoteNotFoundError(key) from e
        except OSError as e:
            raise IOFailureError(key, "delete", e) from e
        finally:
            self._invalidate([key])
        log.debug("Deleted %s", key)

    def rename(self, old_path: str, new_path: str) -> None:
        """Move a note. The target must not exist.

        Raises:
            NoteNotFoundError: If ``old_path`` does not exist.
            NoteExistsError: If ``new_path`` already exists.
        """
        old_key = self.normalize(old_path)
        new_key = self.normalize(new_path)
        old_abs = self.root / old_key
        new_abs = self.root / new_key
        if not old_abs.is_file():
            raise NoteNotFoundError(old_key)
        if new_abs.exists():
            raise NoteExistsError(new_key)
        try:
            new_abs.parent.mkdir(parents=True, exist_ok=True)
            old_abs.rename(new_abs)
        except OSError as e:
            raise IOFailureError(old_key, "rename", e) from e
        finally:
            self._invalidate([old_key, new_key])
        log.debug("Renamed %s -> %s", old_key, new_key)
