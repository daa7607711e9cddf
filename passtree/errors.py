"""Error types raised by the password store."""


class StoreError(RuntimeError):
    pass


class NotInitializedError(StoreError):
    """The recipient set file is missing from the store root."""


class UnauthorizedRecipientError(StoreError):
    def __init__(self, identity: str, keyring: str):
        super().__init__(f"No matching public key {identity} in {keyring}")
        self.identity = identity
        self.keyring = keyring


class NoSecureKeyError(StoreError):
    def __init__(self, keyring: str):
        super().__init__(f"No matching secure keys in {keyring}")
        self.keyring = keyring


class NotFoundError(StoreError):
    def __init__(self, path: str, message: str | None = None):
        super().__init__(message or f"Not found: {path}")
        self.path = path


class SecretNotFoundError(NotFoundError):
    def __init__(self, name: str):
        super().__init__(name, f"Secret '{name}' not found")


class DecryptionError(StoreError):
    pass


class EncryptionError(StoreError):
    pass


class KeyringError(StoreError):
    pass


class StorageError(StoreError):
    pass


class TraversalError(StoreError):
    pass


class MapEntryError(StoreError):
    """A single entry failed while reading a directory as a map."""

    def __init__(self, directory: str, entry: str, cause: Exception):
        super().__init__(f"Failed to read '{entry}' in '{directory}': {cause}")
        self.directory = directory
        self.entry = entry
