"""Password store repository: business logic combining storage + encryption.

This module ties together the tree storage layer and the encryption
provider to manage a tree of secrets, each encrypted for the recipients
listed in the store's recipient set.
"""

import logging
from collections.abc import Callable, Iterator
from typing import BinaryIO

from .errors import (
    DecryptionError,
    EncryptionError,
    MapEntryError,
    NoSecureKeyError,
    NotFoundError,
    NotInitializedError,
    SecretNotFoundError,
    StorageError,
    StoreError,
    UnauthorizedRecipientError,
)
from .protocol import EncryptionProvider, TreeStorage

logger = logging.getLogger(__name__)

ID_FILENAME = ".gpg-id"
FILE_EXTENSION = ".gpg"


def _strip_extension(name: str) -> str | None:
    if not name.endswith(FILE_EXTENSION):
        return None
    if name.rsplit("/", 1)[-1] == FILE_EXTENSION:
        return None
    return name[: -len(FILE_EXTENSION)]


class Repository:
    """Tree of secrets encrypted for the store's recipient set.

    Access model:
        - The recipient set (one identity per line in .gpg-id) decides who
          a secret is encrypted for
        - Every identity must name a key in the public keyring at init
        - Reading needs a matching secure key and its passphrase
        - The recipient set is re-read on every call, never cached

    The repository owns its storage handle; key material stays with the
    encryption provider.
    """

    def __init__(self, storage: TreeStorage, provider: EncryptionProvider):
        self._storage = storage
        self._provider = provider

    def _check_public_keyring_ids(self, ids: list[str]) -> None:
        keyring = self._provider.public_keyring_name
        entities = self._provider.read_keyring(keyring)
        for identity in ids:
            if not self._provider.match_identity(identity, entities):
                raise UnauthorizedRecipientError(identity, keyring)

    def _check_secure_keyring_ids(self, ids: list[str]) -> None:
        keyring = self._provider.secure_keyring_name
        if not self._provider.resolve_entities(keyring, ids):
            raise NoSecureKeyError(keyring)

    # ── Recipient set ──────────────────────────────────────────────

    def init(self, ids: list[str]) -> None:
        """Establish the recipient set, overwriting any previous one.

        Raises:
            UnauthorizedRecipientError: If an id has no public key.
            NoSecureKeyError: If no id has a local secure key.
        """
        ids = list(ids)
        self._check_public_keyring_ids(ids)
        self._check_secure_keyring_ids(ids)
        self._storage.makedirs(".")
        with self._storage.create(ID_FILENAME) as idfile:
            for identity in ids:
                idfile.write(f"{identity}\n".encode("utf-8"))
        logger.info(f"Initialized store {self._storage!r} for {len(ids)} recipient(s)")

    def ids(self) -> list[str]:
        """Current recipient set, in file order."""
        try:
            idfile = self._storage.open(ID_FILENAME)
        except NotFoundError:
            raise NotInitializedError(
                f"Store is not initialized: {ID_FILENAME} is missing"
            ) from None
        with idfile:
            content = idfile.read()
        try:
            return content.decode("utf-8").splitlines()
        except UnicodeDecodeError as e:
            raise StorageError(f"{ID_FILENAME} is not valid UTF-8: {e}") from e

    # ── Secret operations ──────────────────────────────────────────

    def open(self, key: str, passphrase: bytes) -> BinaryIO:
        """Decrypt a secret. The caller must close the returned stream."""
        ids = self.ids()
        entities = self._provider.resolve_entities(
            self._provider.secure_keyring_name, ids
        )
        try:
            ciphertext = self._storage.open(key + FILE_EXTENSION)
        except NotFoundError:
            raise SecretNotFoundError(key) from None
        logger.debug(f"Decrypting {key}")
        return self._provider.decrypt(ciphertext, entities, passphrase)

    def line(self, key: str, passphrase: bytes) -> str:
        """First line of a secret, without its line terminator."""
        with self.open(key, passphrase) as plaintext:
            first = plaintext.readline()
        try:
            return first.decode("utf-8").rstrip("\r\n")
        except UnicodeDecodeError as e:
            raise DecryptionError(f"Secret '{key}' is not valid UTF-8: {e}") from e

    def map(self, key: str, passphrase: bytes) -> dict[str, str]:
        """Read every secret directly under a directory as {name: first line}.

        Raises:
            SecretNotFoundError: If the directory does not exist.
            MapEntryError: If any entry cannot be read; no partial result
                is returned.
        """
        try:
            entries = self._storage.list_entries(key)
        except NotFoundError:
            raise SecretNotFoundError(key) from None
        values = {}
        for entry in entries:
            name = _strip_extension(entry.name)
            if entry.is_dir or name is None:
                continue
            try:
                values[name] = self.line(self._storage.join(key, name), passphrase)
            except StoreError as e:
                logger.warning(f"Failed to read {name} in {key}: {e}")
                raise MapEntryError(key, name, e) from e
        return values

    def create(self, key: str) -> BinaryIO:
        """Open a writer that encrypts to the current recipients on close."""
        ids = self.ids()
        entities = self._provider.resolve_entities(
            self._provider.public_keyring_name, ids
        )
        if not entities:
            raise EncryptionError(f"No public key matches the recipients of {key}")
        parent = key.rsplit("/", 1)[0] if "/" in key else "."
        self._storage.makedirs(parent)
        ciphertext = self._storage.create(key + FILE_EXTENSION)
        logger.info(f"Writing {key} for {len(entities)} recipient(s)")
        return self._provider.encrypt(ciphertext, entities)

    def write(self, key: str, data: bytes | str) -> None:
        """Encrypt data as the full content of a secret."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        with self.create(key) as writer:
            writer.write(data)

    def exists(self, key: str) -> bool:
        """Whether a secret of this name is stored."""
        return self._storage.exists(key + FILE_EXTENSION)

    def remove(self, key: str) -> None:
        """Delete a secret. Empty parent directories are left in place."""
        try:
            self._storage.remove(key + FILE_EXTENSION)
        except NotFoundError:
            raise SecretNotFoundError(key) from None
        logger.info(f"Removed {key}")

    # ── Enumeration ────────────────────────────────────────────────

    def names(self) -> Iterator[str]:
        """Yield every secret name in traversal order.

        Raises:
            TraversalError: On the first storage error; names already
                yielded stay yielded.
        """
        for entry in self._storage.walk("."):
            if entry.is_dir:
                continue
            name = _strip_extension(entry.path)
            if name is not None:
                yield name

    def walk(self, visit: Callable[[str], None]) -> None:
        """Call visit with every secret name, in the order of names()."""
        for name in self.names():
            visit(name)
