"""Cryptographic primitives for recipient-wrapped encryption.

Key hierarchy:
    Passphrase - derived via PBKDF2 into a Key Protection Key (KPK)
        └── encrypts the recipient's X25519 secret key at rest
    Recipient X25519 key + ephemeral X25519 key - ECDH + HKDF into a wrap key
        └── encrypts the Data Encryption Key (DEK) - one per secret file
                └── encrypts the secret plaintext

All symmetric encryption uses AES-256-GCM (authenticated encryption with
associated data).
"""

import hashlib
import os

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

NONCE_SIZE = 12  # 96 bits, standard for AES-GCM
KEY_SIZE = 32  # 256 bits for AES-256 and X25519
SALT_SIZE = 16  # 128 bits for PBKDF2
TAG_SIZE = 16
FINGERPRINT_SIZE = 20  # 160 bits, 40 hex chars
PBKDF2_ITERATIONS = 600_000  # OWASP 2023 recommendation for SHA-256

WRAP_INFO = b"passtree recipient wrap v1"

_RAW = serialization.Encoding.Raw


def derive_protection_key(
    passphrase: bytes, salt: bytes, iterations: int = PBKDF2_ITERATIONS
) -> bytes:
    """Derive a 256-bit key from a passphrase using PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_SIZE,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(passphrase)


def generate_key() -> bytes:
    """Generate a random 256-bit AES key."""
    return AESGCM.generate_key(bit_length=256)


def generate_keypair() -> tuple[bytes, bytes]:
    """Generate an X25519 keypair.

    Returns:
        Tuple of (secret_key, public_key), both 32 raw bytes.
    """
    private = X25519PrivateKey.generate()
    secret = private.private_bytes(
        _RAW, serialization.PrivateFormat.Raw, serialization.NoEncryption()
    )
    public = private.public_key().public_bytes(_RAW, serialization.PublicFormat.Raw)
    return secret, public


def public_from_secret(secret_key: bytes) -> bytes:
    private = X25519PrivateKey.from_private_bytes(secret_key)
    return private.public_key().public_bytes(_RAW, serialization.PublicFormat.Raw)


def fingerprint(public_key: bytes) -> bytes:
    """Raw 20-byte fingerprint of a public key (truncated SHA-256)."""
    return hashlib.sha256(public_key).digest()[:FINGERPRINT_SIZE]


def encrypt(key: bytes, plaintext: bytes, aad: bytes | None = None) -> tuple[bytes, bytes]:
    """Encrypt plaintext with AES-256-GCM.

    Returns:
        Tuple of (ciphertext_with_tag, nonce).
    """
    nonce = os.urandom(NONCE_SIZE)
    aesgcm = AESGCM(key)
    ciphertext = aesgcm.encrypt(nonce, plaintext, aad)
    return ciphertext, nonce


def decrypt(key: bytes, ciphertext: bytes, nonce: bytes, aad: bytes | None = None) -> bytes:
    """Decrypt ciphertext with AES-256-GCM.

    Raises:
        cryptography.exceptions.InvalidTag: If authentication fails
            (wrong key, tampered ciphertext, or wrong nonce).
    """
    aesgcm = AESGCM(key)
    return aesgcm.decrypt(nonce, ciphertext, aad)


def _wrap_key_for(shared: bytes, ephemeral_public: bytes, recipient_public: bytes) -> bytes:
    hkdf = HKDF(
        algorithm=SHA256(),
        length=KEY_SIZE,
        salt=ephemeral_public + recipient_public,
        info=WRAP_INFO,
    )
    return hkdf.derive(shared)


def wrap_key(dek: bytes, recipient_public: bytes) -> tuple[bytes, bytes, bytes]:
    """Wrap a DEK for one recipient with an ephemeral X25519 exchange.

    Returns:
        Tuple of (ephemeral_public_key, nonce, wrapped_dek).
    """
    ephemeral = X25519PrivateKey.generate()
    ephemeral_public = ephemeral.public_key().public_bytes(
        _RAW, serialization.PublicFormat.Raw
    )
    shared = ephemeral.exchange(X25519PublicKey.from_public_bytes(recipient_public))
    kek = _wrap_key_for(shared, ephemeral_public, recipient_public)
    wrapped, nonce = encrypt(kek, dek, fingerprint(recipient_public))
    return ephemeral_public, nonce, wrapped


def unwrap_key(
    secret_key: bytes, ephemeral_public: bytes, nonce: bytes, wrapped: bytes
) -> bytes:
    """Recover a DEK wrapped by :func:`wrap_key`.

    Raises:
        cryptography.exceptions.InvalidTag: If the DEK was not wrapped for
            this secret key or the header was tampered with.
    """
    private = X25519PrivateKey.from_private_bytes(secret_key)
    recipient_public = public_from_secret(secret_key)
    shared = private.exchange(X25519PublicKey.from_public_bytes(ephemeral_public))
    kek = _wrap_key_for(shared, ephemeral_public, recipient_public)
    return decrypt(kek, wrapped, nonce, fingerprint(recipient_public))
