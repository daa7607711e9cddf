"""Envelope encryption provider backed by JSON keyrings.

Ciphertext layout (all integers big-endian)::

    MAGIC                       6 bytes  b"PTREE\\x01"
    recipient count             2 bytes
    per recipient:
        fingerprint            20 bytes
        ephemeral public key   32 bytes
        wrap nonce             12 bytes
        wrapped DEK            48 bytes
    body nonce                 12 bytes
    body                       AES-256-GCM, header as associated data

Every recipient can recover the DEK independently with its own secret key.
"""

import io
import logging
import struct
from pathlib import Path
from typing import BinaryIO

from cryptography.exceptions import InvalidTag

from .crypto import (
    FINGERPRINT_SIZE,
    KEY_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    decrypt,
    encrypt,
    generate_key,
    unwrap_key,
    wrap_key,
)
from .errors import DecryptionError, EncryptionError
from .keyring import Entity, entities_matching, id_matches_any_entity, read_keyring
from .protocol import EncryptionProvider

logger = logging.getLogger(__name__)

MAGIC = b"PTREE\x01"
_COUNT = struct.Struct(">H")
_STANZA_SIZE = FINGERPRINT_SIZE + KEY_SIZE + NONCE_SIZE + KEY_SIZE + TAG_SIZE

DEFAULT_PUBLIC_KEYRING = "pubring.json"
DEFAULT_SECURE_KEYRING = "secring.json"


def seal(plaintext: bytes, entities: list[Entity]) -> bytes:
    """Encrypt plaintext for every entity."""
    if not entities:
        raise EncryptionError("No recipients to encrypt for")
    dek = generate_key()
    header = bytearray(MAGIC)
    header += _COUNT.pack(len(entities))
    for entity in entities:
        ephemeral_public, nonce, wrapped = wrap_key(dek, entity.public_key)
        header += bytes.fromhex(entity.fingerprint)
        header += ephemeral_public + nonce + wrapped
    body, body_nonce = encrypt(dek, plaintext, bytes(header))
    return bytes(header) + body_nonce + body


def _parse_header(payload: bytes) -> tuple[bytes, list[tuple[str, bytes, bytes, bytes]], int]:
    if not payload.startswith(MAGIC):
        raise DecryptionError("Not a passtree ciphertext")
    offset = len(MAGIC)
    if len(payload) < offset + _COUNT.size:
        raise DecryptionError("Truncated ciphertext header")
    (count,) = _COUNT.unpack_from(payload, offset)
    offset += _COUNT.size
    if len(payload) < offset + count * _STANZA_SIZE + NONCE_SIZE + TAG_SIZE:
        raise DecryptionError("Truncated ciphertext")
    stanzas = []
    for _ in range(count):
        fpr = payload[offset:offset + FINGERPRINT_SIZE].hex().upper()
        offset += FINGERPRINT_SIZE
        ephemeral_public = payload[offset:offset + KEY_SIZE]
        offset += KEY_SIZE
        nonce = payload[offset:offset + NONCE_SIZE]
        offset += NONCE_SIZE
        wrapped = payload[offset:offset + KEY_SIZE + TAG_SIZE]
        offset += KEY_SIZE + TAG_SIZE
        stanzas.append((fpr, ephemeral_public, nonce, wrapped))
    return payload[:offset], stanzas, offset


def unseal(payload: bytes, entities: list[Entity], passphrase: bytes) -> bytes:
    """Decrypt a payload produced by :func:`seal` with the first usable entity.

    Raises:
        DecryptionError: If no entity is a recipient, the passphrase is
            wrong or the payload is corrupt.
    """
    header, stanzas, offset = _parse_header(payload)
    by_fingerprint = {e.fingerprint: e for e in entities if e.is_secure}
    unlock_error = None
    for fpr, ephemeral_public, nonce, wrapped in stanzas:
        entity = by_fingerprint.get(fpr)
        if entity is None:
            continue
        try:
            secret_key = entity.unlock(passphrase)
        except DecryptionError as e:
            # keep trying the remaining recipients
            unlock_error = unlock_error or e
            continue
        try:
            dek = unwrap_key(secret_key, ephemeral_public, nonce, wrapped)
            body_nonce = payload[offset:offset + NONCE_SIZE]
            return decrypt(dek, payload[offset + NONCE_SIZE:], body_nonce, header)
        except (InvalidTag, ValueError):
            # ValueError: the ephemeral key yields no usable shared secret
            raise DecryptionError("Ciphertext failed authentication") from None
    if unlock_error is not None:
        raise unlock_error
    raise DecryptionError("No matching secure key for any recipient of this secret")


class EncryptingWriter:
    """
    Buffers plaintext and writes the sealed payload to the sink on close.

    Used as a context manager, an exception inside the block discards the
    plaintext instead of sealing it, so the sink never receives a payload
    built from a partial write.
    """

    def __init__(self, sink: BinaryIO, entities: list[Entity]):
        self._sink = sink
        self._entities = list(entities)
        self._buffer = io.BytesIO()
        self.closed = False

    def readable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    def writable(self) -> bool:
        return not self.closed

    def flush(self) -> None:
        if self.closed:
            raise ValueError("flush of closed EncryptingWriter")

    def write(self, data: bytes) -> int:
        if self.closed:
            raise ValueError("write to closed EncryptingWriter")
        return self._buffer.write(data)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self._sink.write(seal(self._buffer.getvalue(), self._entities))
        finally:
            self._buffer.close()
            self._sink.close()

    def discard(self) -> None:
        """Drop buffered plaintext and release the sink without sealing."""
        if self.closed:
            return
        self.closed = True
        self._buffer.close()
        self._sink.close()

    def __enter__(self) -> "EncryptingWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.discard()
        else:
            self.close()


class EnvelopeEncryptionProvider(EncryptionProvider):
    """
    Encryption provider storing keyrings as JSON files in one directory.

    Keyring names are file names relative to keyring_dir (absolute paths are
    used as-is). A relative keyring_dir is anchored at the working directory
    when the provider is built.
    """

    def __init__(
        self,
        keyring_dir: str | Path,
        public_keyring: str = DEFAULT_PUBLIC_KEYRING,
        secure_keyring: str = DEFAULT_SECURE_KEYRING,
    ):
        self.keyring_dir = Path(keyring_dir).expanduser().absolute()
        self._public_keyring = public_keyring
        self._secure_keyring = secure_keyring

    @property
    def public_keyring_name(self) -> str:
        return str(self.keyring_dir / self._public_keyring)

    @property
    def secure_keyring_name(self) -> str:
        return str(self.keyring_dir / self._secure_keyring)

    def read_keyring(self, keyring_name: str) -> list[Entity]:
        return read_keyring(self.keyring_dir / keyring_name)

    def match_identity(self, identity: str, entities: list[Entity]) -> bool:
        return id_matches_any_entity(identity, entities)

    def resolve_entities(self, keyring_name: str, ids: list[str]) -> list[Entity]:
        entities = entities_matching(ids, self.read_keyring(keyring_name))
        logger.debug(f"Resolved {len(entities)} entities from {keyring_name}")
        return entities

    def decrypt(
        self, ciphertext: BinaryIO, entities: list[Entity], passphrase: bytes
    ) -> BinaryIO:
        try:
            payload = ciphertext.read()
        finally:
            ciphertext.close()
        return io.BytesIO(unseal(payload, entities, passphrase))

    def encrypt(self, sink: BinaryIO, entities: list[Entity]) -> EncryptingWriter:
        if not entities:
            sink.close()
            raise EncryptionError("No recipients to encrypt for")
        return EncryptingWriter(sink, entities)
