"""Tree storage backends: a directory on disk and an in-memory tree."""

import io
import os
from pathlib import Path
from typing import BinaryIO

from .errors import NotFoundError, StorageError
from .protocol import Entry, TreeStorage


def _split(path: str) -> list[str]:
    """Normalize a relative "/"-separated path into its components."""
    if path.startswith("/"):
        raise StorageError(f"Absolute paths are not allowed: {path}")
    parts = [p for p in path.split("/") if p not in ("", ".")]
    if ".." in parts:
        raise StorageError(f"Path escapes the storage root: {path}")
    return parts


class LocalTreeStorage(TreeStorage):
    """Tree storage rooted at a directory of the local filesystem."""

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser()

    def __repr__(self) -> str:
        return f"LocalTreeStorage({str(self.root)!r})"

    def _resolve(self, path: str) -> Path:
        return self.root.joinpath(*_split(path))

    def open(self, path: str) -> BinaryIO:
        try:
            return open(self._resolve(path), "rb")
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError(path) from None
        except OSError as e:
            raise StorageError(f"Cannot open {path}: {e}") from e

    def create(self, path: str) -> BinaryIO:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            return open(target, "wb")
        except OSError as e:
            raise StorageError(f"Cannot create {path}: {e}") from e

    def remove(self, path: str) -> None:
        try:
            os.remove(self._resolve(path))
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError(path) from None
        except OSError as e:
            raise StorageError(f"Cannot remove {path}: {e}") from e

    def list_entries(self, path: str) -> list[Entry]:
        try:
            with os.scandir(self._resolve(path)) as it:
                entries = [Entry(e.name, e.is_dir()) for e in it]
        except (FileNotFoundError, NotADirectoryError):
            raise NotFoundError(path) from None
        except OSError as e:
            raise StorageError(f"Cannot list {path}: {e}") from e
        return sorted(entries, key=lambda e: e.path)

    def makedirs(self, path: str) -> None:
        try:
            self._resolve(path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create directory {path}: {e}") from e

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()


class _MemoryFile(io.BytesIO):
    """Writable buffer that publishes its content to the tree on close."""

    def __init__(self, files: dict[str, bytes], key: str):
        super().__init__()
        self._files = files
        self._key = key

    def close(self) -> None:
        if not self.closed:
            self._files[self._key] = self.getvalue()
        super().close()


class MemoryTreeStorage(TreeStorage):
    """Tree storage held in process memory. The root always exists."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {""}

    def _key(self, path: str) -> str:
        return "/".join(_split(path))

    def _add_parents(self, key: str) -> None:
        parts = key.split("/")
        for i in range(1, len(parts)):
            self.dirs.add("/".join(parts[:i]))

    def open(self, path: str) -> BinaryIO:
        key = self._key(path)
        if key not in self.files:
            raise NotFoundError(path)
        return io.BytesIO(self.files[key])

    def create(self, path: str) -> BinaryIO:
        key = self._key(path)
        if not key or key in self.dirs:
            raise StorageError(f"Cannot create {path}: is a directory")
        self._add_parents(key)
        self.files[key] = b""
        return _MemoryFile(self.files, key)

    def remove(self, path: str) -> None:
        key = self._key(path)
        if key not in self.files:
            raise NotFoundError(path)
        del self.files[key]

    def list_entries(self, path: str) -> list[Entry]:
        key = self._key(path)
        if key not in self.dirs:
            raise NotFoundError(path)
        prefix = f"{key}/" if key else ""
        entries = {}
        for name in self.files:
            if name.startswith(prefix) and "/" not in name[len(prefix):]:
                entries[name[len(prefix):]] = False
        for name in self.dirs:
            if name and name.startswith(prefix) and "/" not in name[len(prefix):]:
                entries[name[len(prefix):]] = True
        return [Entry(name, is_dir) for name, is_dir in sorted(entries.items())]

    def makedirs(self, path: str) -> None:
        key = self._key(path)
        if key in self.files:
            raise StorageError(f"Cannot create directory {path}: is a file")
        if key:
            self._add_parents(key)
            self.dirs.add(key)

    def exists(self, path: str) -> bool:
        key = self._key(path)
        return key in self.files or key in self.dirs
