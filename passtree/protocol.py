"""
Store Protocol Definitions

This module defines the capability interfaces consumed by the Repository:
hierarchical tree storage and recipient-based encryption. Any backend
implementing them can be plugged into a Repository without touching its
logic.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO

from .errors import StoreError, TraversalError
from .keyring import Entity


@dataclass(frozen=True)
class Entry:
    """
    One node of the storage tree.

    Attributes:
        path: Name relative to the listed directory (list_entries) or to the
            storage root (walk), always "/"-separated.
        is_dir: True if the node is a directory.
    """

    path: str
    is_dir: bool = False

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


class TreeStorage(ABC):
    """
    Abstract Base Class for hierarchical file storage rooted at one root.

    Paths are relative, "/"-separated; "." and "" denote the root.
    """

    @abstractmethod
    def open(self, path: str) -> BinaryIO:
        """
        Open a file for reading.

        Raises:
            NotFoundError: If the file does not exist.
        """
        ...

    @abstractmethod
    def create(self, path: str) -> BinaryIO:
        """
        Create or truncate a file for writing, creating parent directories.
        """
        ...

    @abstractmethod
    def remove(self, path: str) -> None:
        """
        Remove a file.

        Raises:
            NotFoundError: If the file does not exist.
        """
        ...

    @abstractmethod
    def list_entries(self, path: str) -> list[Entry]:
        """
        List the direct children of a directory, sorted by name.

        Raises:
            NotFoundError: If the directory does not exist.
        """
        ...

    def walk(self, root: str = ".") -> Iterator[Entry]:
        """
        Lazily traverse the tree below root, depth-first, each directory
        before its children and siblings in name order. Yielded paths are
        relative to the storage root.

        Raises:
            TraversalError: On the first error encountered; the
                iteration stops there.
        """
        try:
            entries = self.list_entries(root)
        except StoreError as e:
            raise TraversalError(f"Cannot list '{root}': {e}") from e
        for entry in entries:
            path = self.join(root, entry.path)
            yield Entry(path, entry.is_dir)
            if entry.is_dir:
                yield from self.walk(path)

    @abstractmethod
    def makedirs(self, path: str) -> None:
        """Create a directory and its parents; succeeds if it exists."""
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    def join(self, *parts: str) -> str:
        cleaned = [p.strip("/") for p in parts if p not in ("", ".", "/")]
        return "/".join(p for p in cleaned if p) or "."


class EncryptionProvider(ABC):
    """
    Abstract Base Class for the public-key scheme protecting secret files.

    Keyrings are addressed by name; the provider resolves names to its own
    storage.
    """

    @property
    @abstractmethod
    def public_keyring_name(self) -> str:
        ...

    @property
    @abstractmethod
    def secure_keyring_name(self) -> str:
        ...

    @abstractmethod
    def read_keyring(self, keyring_name: str) -> list[Entity]:
        """
        Load every entity of a keyring.

        Raises:
            KeyringError: If the keyring cannot be read.
        """
        ...

    @abstractmethod
    def match_identity(self, identity: str, entities: list[Entity]) -> bool:
        """Check whether identity names at least one of entities."""
        ...

    @abstractmethod
    def resolve_entities(self, keyring_name: str, ids: list[str]) -> list[Entity]:
        """
        Entities of a keyring matched by any of ids (possibly empty).

        Raises:
            KeyringError: If the keyring cannot be read.
        """
        ...

    @abstractmethod
    def decrypt(
        self, ciphertext: BinaryIO, entities: list[Entity], passphrase: bytes
    ) -> BinaryIO:
        """
        Decrypt a stream encrypted for one of entities.

        The ciphertext stream is closed before this method returns.

        Raises:
            DecryptionError: Wrong passphrase, no matching recipient or a
                corrupt payload.
        """
        ...

    @abstractmethod
    def encrypt(self, sink: BinaryIO, entities: list[Entity]) -> BinaryIO:
        """
        Wrap sink in a writer that encrypts for every entity on close.

        Raises:
            EncryptionError: If entities is empty.
        """
        ...
