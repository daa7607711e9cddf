"""Encrypted password store: a tree of secrets encrypted per recipient set."""

from .config import Settings, configure_logging, open_repository
from .errors import (
    DecryptionError,
    EncryptionError,
    KeyringError,
    MapEntryError,
    NoSecureKeyError,
    NotFoundError,
    NotInitializedError,
    SecretNotFoundError,
    StorageError,
    StoreError,
    TraversalError,
    UnauthorizedRecipientError,
)
from .provider import EnvelopeEncryptionProvider
from .repository import Repository
from .storage import LocalTreeStorage, MemoryTreeStorage

__all__ = [
    "DecryptionError",
    "EncryptionError",
    "EnvelopeEncryptionProvider",
    "KeyringError",
    "LocalTreeStorage",
    "MapEntryError",
    "MemoryTreeStorage",
    "NoSecureKeyError",
    "NotFoundError",
    "NotInitializedError",
    "Repository",
    "SecretNotFoundError",
    "Settings",
    "StorageError",
    "StoreError",
    "TraversalError",
    "UnauthorizedRecipientError",
    "configure_logging",
    "open_repository",
]
