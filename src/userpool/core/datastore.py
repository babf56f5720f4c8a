"""
File-backed JSON document store.

A ``DataStore`` is one JSON object persisted as ``<directory>/<name>.json``.
Callers read the whole document or a single entry addressed by a path, and
every write replaces the whole file atomically.

Manifesto:
    - **One file, one document:** no per-record files, no engine
    - **Disk is the truth:** every read deserializes the file again
    - **Atomic replace:** writes go to a sibling temp file which is fsynced
      and ``os.replace``d into place, so readers see the old or the new
      document, never half of one; the file keeps its permission bits
    - **Serialized writers:** each read-modify-write runs under a lock shared
      by every handle on the same file in this process
    - **Fail loudly:** unwritable directories and unparseable files raise
      typed errors; a corrupt file is never reset to the defaults

Architecture:
    ::

        create_data_store("local", defaults, directory)
                │
                ▼
        ┌────────────────────────────────────────────────────┐
        │ DataStore(name="local", path=directory/local.json) │
        ├────────────────────────────────────────────────────┤
        │ get_root()         → whole document (fresh read)   │
        │ get(path)          → entry or None                 │
        │ set(path, value)   → read, modify, atomic write    │
        │ set_root(document) → atomic write                  │
        │ update(path, fn)   → locked read-modify-write      │
        │ delete(path)       → remove entry, atomic write    │
        └────────────────────────────────────────────────────┘

    Paths are either dotted strings (``"Options.UsernameAttributes"``) or
    sequences of segments (``["Users", "a.b@example.com"]``). Use the sequence
    form whenever a segment may itself contain a dot.

Examples:
    >>> store = create_data_store("local", {"Users": {}}, "/tmp/db")
    >>> store.set(["Users", "1"], {"Username": "1"})
    >>> store.get("Users.1")
    {'Username': '1'}
    >>> store.get("Users.2") is None
    True

Guardrails:
    ❌ DON'T: assume a handle caches the document
    ✅ DO: call ``get_root()`` again after another handle writes

    ❌ DON'T: share one file between processes that both write
    ✅ DO: keep a single writing process per store file

Tags:
    storage, json, atomic-write, document-store, userpool
"""

from __future__ import annotations

import copy
import json
import os
import stat
import tempfile
import threading
import weakref
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any, Protocol

from .errors import CorruptDataError, StorageError, StoreNotFoundError, ValidationError
from .logging import get_logger

logger = get_logger(__name__)

StorePath = str | Sequence[str]

# One lock per backing file, shared by every live handle in the process.
# An entry disappears once the last handle holding it is collected.
_file_locks: weakref.WeakValueDictionary[Path, Any] = weakref.WeakValueDictionary()
_file_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    with _file_locks_guard:
        lock = _file_locks.get(path)
        if lock is None:
            lock = _file_locks[path] = threading.RLock()
        return lock


def _split_path(path: StorePath) -> list[str]:
    if isinstance(path, str):
        segments = path.split(".") if path else []
    else:
        segments = [str(s) for s in path]
    if any(s == "" for s in segments):
        raise ValueError(f"Invalid store path: {path!r}")
    return segments


class DataStore:
    """
    Handle on one JSON document file.

    Construct through :meth:`open` (or :func:`create_data_store`), which
    creates the file from the defaults when it does not exist yet.
    """

    def __init__(self, name: str, path: Path):
        self.name = name
        self.path = path
        self._lock = _lock_for(path)

    @classmethod
    def open(
        cls,
        name: str,
        defaults: dict[str, Any] | None,
        directory: str | Path,
    ) -> DataStore:
        """Open ``<directory>/<name>.json``, creating it from ``defaults`` if absent.

        Existing content is never overwritten, but it is parsed so a corrupt
        file is reported here rather than on first use.

        Raises:
            StoreNotFoundError: directory cannot be created or is not writable
            CorruptDataError: existing file is not a JSON object
        """
        if not name or "/" in name or os.sep in name:
            raise ValueError(f"Invalid store name: {name!r}")

        base = Path(directory).expanduser()
        try:
            base.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreNotFoundError(
                f"Cannot create data directory {base}", cause=exc
            ).with_context(store=name, path=str(base), operation="open") from exc
        if not base.is_dir() or not os.access(base, os.W_OK):
            raise StoreNotFoundError(f"Data directory {base} is not writable").with_context(
                store=name, path=str(base), operation="open"
            )

        store = cls(name, (base / f"{name}.json").resolve())
        with store._lock:
            if store.path.exists():
                store._read()
                logger.debug("data_store_opened", store=name, path=str(store.path))
            else:
                store._write(copy.deepcopy(defaults) if defaults else {})
                logger.info("data_store_created", store=name, path=str(store.path))
        return store

    # ── Reads ────────────────────────────────────────────────────

    def get_root(self) -> dict[str, Any]:
        """The whole current document, read from disk."""
        with self._lock:
            return self._read()

    def get(self, path: StorePath, default: Any = None) -> Any:
        """Value at ``path``, or ``default`` when any segment is absent."""
        segments = _split_path(path)
        node: Any = self.get_root()
        for segment in segments:
            if not isinstance(node, dict) or segment not in node:
                return default
            node = node[segment]
        return node

    # ── Writes ───────────────────────────────────────────────────

    def set(self, path: StorePath, value: Any) -> None:
        """Set ``path`` to ``value``, creating intermediate objects as needed."""
        segments = _split_path(path)
        if not segments:
            self.set_root(value)
            return
        with self._lock:
            document = self._read()
            node = document
            for segment in segments[:-1]:
                child = node.get(segment)
                if not isinstance(child, dict):
                    child = node[segment] = {}
                node = child
            node[segments[-1]] = value
            self._write(document)
        logger.debug("data_store_set", store=self.name, path=".".join(segments))

    def set_root(self, document: dict[str, Any]) -> None:
        """Replace the whole document."""
        if not isinstance(document, dict):
            raise ValidationError(
                "Document root must be a JSON object", value=type(document).__name__
            ).with_context(store=self.name)
        with self._lock:
            self._write(document)
        logger.debug("data_store_replaced", store=self.name)

    def update(self, path: StorePath, fn: Callable[[Any], Any]) -> Any:
        """Apply ``fn`` to the entry at ``path`` (None if absent) and store the result.

        The read and the write happen under the file lock, so concurrent
        ``update`` calls from threads in this process do not lose writes.
        """
        with self._lock:
            value = fn(self.get(path))
            self.set(path, value)
            return value

    def delete(self, path: StorePath) -> bool:
        """Remove the entry at ``path``. Returns False if it was not there."""
        segments = _split_path(path)
        if not segments:
            raise ValueError("Cannot delete the document root")
        with self._lock:
            document = self._read()
            node: Any = document
            for segment in segments[:-1]:
                node = node.get(segment) if isinstance(node, dict) else None
            if not isinstance(node, dict) or segments[-1] not in node:
                return False
            del node[segments[-1]]
            self._write(document)
        logger.debug("data_store_deleted", store=self.name, path=".".join(segments))
        return True

    # ── File I/O ─────────────────────────────────────────────────

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise StoreNotFoundError(f"Store file {self.path} is missing", cause=exc).with_context(
                store=self.name, path=str(self.path), operation="read"
            ) from exc
        except UnicodeDecodeError as exc:
            raise CorruptDataError(f"Store file {self.path} is not UTF-8", cause=exc).with_context(
                store=self.name, path=str(self.path), operation="read"
            ) from exc
        except OSError as exc:
            raise StorageError(f"Cannot read store file {self.path}", cause=exc).with_context(
                store=self.name, path=str(self.path), operation="read"
            ) from exc

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error("data_store_corrupt", store=self.name, path=str(self.path), error=str(exc))
            raise CorruptDataError(
                f"Store file {self.path} is not valid JSON", cause=exc
            ).with_context(store=self.name, path=str(self.path), operation="read") from exc
        if not isinstance(document, dict):
            logger.error("data_store_corrupt", store=self.name, path=str(self.path))
            raise CorruptDataError(
                f"Store file {self.path} does not hold a JSON object"
            ).with_context(store=self.name, path=str(self.path), operation="read")
        return document

    def _write(self, document: dict[str, Any]) -> None:
        try:
            # Lone surrogates survive dumps() and only fail at encode time
            payload = json.dumps(document, ensure_ascii=False, indent=2).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise ValidationError(
                "Document is not JSON-serializable", cause=exc
            ).with_context(store=self.name, operation="write") from exc

        tmp_name: str | None = None
        try:
            mode = self._file_mode()
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, mode)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except (PermissionError, FileNotFoundError, NotADirectoryError) as exc:
            raise StoreNotFoundError(
                f"Data directory {self.path.parent} is not writable", cause=exc
            ).with_context(store=self.name, path=str(self.path), operation="write") from exc
        except OSError as exc:
            raise StorageError(f"Cannot write store file {self.path}", cause=exc).with_context(
                store=self.name, path=str(self.path), operation="write"
            ) from exc
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.debug("data_store_written", store=self.name, size=len(payload))

    def _file_mode(self) -> int:
        """Permission bits for the next write.

        An existing file keeps its mode; a new one gets ``0o666`` minus the umask,
        as a plain ``open(..., "w")`` would.
        """
        try:
            return stat.S_IMODE(self.path.stat().st_mode)
        except FileNotFoundError:
            umask = os.umask(0)
            os.umask(umask)
            return 0o666 & ~umask

    def __repr__(self) -> str:
        return f"DataStore(name={self.name!r}, path={str(self.path)!r})"


class CreateDataStore(Protocol):
    """Factory the user pool uses to obtain its backing store.

    The directory is bound by whoever builds the factory, e.g.
    ``functools.partial(create_data_store, directory=path)``.
    """

    def __call__(self, name: str, defaults: dict[str, Any] | None) -> DataStore: ...


def create_data_store(
    name: str,
    defaults: dict[str, Any] | None,
    directory: str | Path,
) -> DataStore:
    """Open or create the store ``name`` under ``directory``."""
    return DataStore.open(name, defaults, directory)


__all__ = [
    "DataStore",
    "CreateDataStore",
    "StorePath",
    "create_data_store",
]
