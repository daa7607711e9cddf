"""Keyring files: entities binding an identity to X25519 key material."""

import base64
import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import InvalidTag

from .crypto import (
    PBKDF2_ITERATIONS,
    SALT_SIZE,
    decrypt,
    derive_protection_key,
    encrypt,
    fingerprint,
    generate_keypair,
)
from .errors import DecryptionError, KeyringError

logger = logging.getLogger(__name__)

KEYRING_VERSION = 1

_HEX_ID = re.compile(r"^(0x)?[0-9A-Fa-f]{8,40}$")
_BINARY_FIELDS = ("public_key", "secret_key", "salt", "nonce")


@dataclass
class Entity:
    fingerprint: str
    uid: str
    public_key: bytes
    secret_key: bytes | None = None
    salt: bytes | None = None
    nonce: bytes | None = None
    iterations: int = PBKDF2_ITERATIONS

    @property
    def is_secure(self) -> bool:
        return self.secret_key is not None

    def public_only(self) -> "Entity":
        return Entity(self.fingerprint, self.uid, self.public_key)

    def unlock(self, passphrase: bytes) -> bytes:
        """Decrypt the protected secret key with the passphrase.

        Raises:
            DecryptionError: If the entity has no secret key or the
                passphrase is wrong.
        """
        if self.secret_key is None:
            raise DecryptionError(f"Entity {self.fingerprint} has no secret key")
        kpk = derive_protection_key(passphrase, self.salt, self.iterations)
        try:
            return decrypt(kpk, self.secret_key, self.nonce, self.fingerprint.encode())
        except InvalidTag:
            raise DecryptionError(
                f"Bad passphrase for secret key {self.fingerprint}"
            ) from None


def generate_entity(
    uid: str, passphrase: bytes, iterations: int = PBKDF2_ITERATIONS
) -> Entity:
    """Create a new secure entity whose secret key is protected by passphrase."""
    secret, public = generate_keypair()
    fpr = fingerprint(public).hex().upper()
    salt = os.urandom(SALT_SIZE)
    kpk = derive_protection_key(passphrase, salt, iterations)
    protected, nonce = encrypt(kpk, secret, fpr.encode())
    return Entity(
        fingerprint=fpr,
        uid=uid,
        public_key=public,
        secret_key=protected,
        salt=salt,
        nonce=nonce,
        iterations=iterations,
    )


def match_identity(identity: str, entity: Entity) -> bool:
    """Check whether an identity string names the entity.

    Accepts a full fingerprint, a key id (fingerprint suffix of at least 8
    hex digits, optionally prefixed with 0x) or any case-insensitive
    substring of the user id, such as an email address.
    """
    ident = identity.strip()
    if not ident:
        return False
    if _HEX_ID.match(ident):
        hex_id = ident.upper().removeprefix("0X")
        if entity.fingerprint.endswith(hex_id):
            return True
    return ident.lower() in entity.uid.lower()


def id_matches_any_entity(identity: str, entities: list[Entity]) -> bool:
    return any(match_identity(identity, e) for e in entities)


def entities_matching(ids: list[str], entities: list[Entity]) -> list[Entity]:
    """Entities matched by any of ids, in keyring order and without duplicates."""
    return [e for e in entities if any(match_identity(i, e) for i in ids)]


def _encode(entity: Entity) -> dict:
    data = {
        "fingerprint": entity.fingerprint,
        "uid": entity.uid,
        "iterations": entity.iterations,
    }
    for field in _BINARY_FIELDS:
        value = getattr(entity, field)
        if value is not None:
            data[field] = base64.b64encode(value).decode("ascii")
    return data


def _decode(data: dict) -> Entity:
    binary = {
        field: base64.b64decode(data[field])
        for field in _BINARY_FIELDS
        if data.get(field) is not None
    }
    return Entity(
        fingerprint=data["fingerprint"],
        uid=data["uid"],
        iterations=int(data.get("iterations", PBKDF2_ITERATIONS)),
        **binary,
    )


def read_keyring(path: str | Path) -> list[Entity]:
    """Load all entities from a keyring file. A missing file is empty."""
    p = Path(path)
    if not p.exists():
        logger.debug(f"Keyring {p} does not exist, treating as empty")
        return []
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise KeyringError(f"Cannot read keyring {p}: {e}") from e
    if not isinstance(data, dict) or data.get("version") != KEYRING_VERSION:
        raise KeyringError(f"Unsupported keyring format in {p}")
    try:
        return [_decode(item) for item in data.get("entities", [])]
    except (KeyError, TypeError, ValueError) as e:
        raise KeyringError(f"Malformed entity in keyring {p}: {e}") from e


def write_keyring(path: str | Path, entities: list[Entity]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    document = {
        "version": KEYRING_VERSION,
        "entities": [_encode(e) for e in entities],
    }
    try:
        p.write_text(json.dumps(document, indent=2), encoding="utf-8")
    except OSError as e:
        raise KeyringError(f"Cannot write keyring {p}: {e}") from e


def import_entity(path: str | Path, entity: Entity) -> None:
    """Add an entity to a keyring, replacing one with the same fingerprint."""
    entities = [e for e in read_keyring(path) if e.fingerprint != entity.fingerprint]
    entities.append(entity)
    write_keyring(path, entities)
    logger.info(f"Imported {entity.fingerprint} ({entity.uid}) into {path}")
