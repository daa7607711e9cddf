"""
Store Configuration

Settings come from environment variables (optionally seeded from a dotenv
file) or from a YAML file whose string values may reference environment
variables as ${VAR_NAME}.
"""

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path

import yaml
from dotenv import load_dotenv

from .provider import (
    DEFAULT_PUBLIC_KEYRING,
    DEFAULT_SECURE_KEYRING,
    EnvelopeEncryptionProvider,
)
from .repository import Repository
from .storage import LocalTreeStorage

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_ENV_VARS = {
    "store_dir": "PASSTREE_STORE_DIR",
    "keyring_dir": "PASSTREE_KEYRING_DIR",
    "public_keyring": "PASSTREE_PUBLIC_KEYRING",
    "secure_keyring": "PASSTREE_SECURE_KEYRING",
    "log_level": "PASSTREE_LOG_LEVEL",
}


@dataclass
class Settings:
    """
    Locations of the store and keyrings.

    Attributes:
        store_dir: Root directory of the secret tree.
        keyring_dir: Directory holding the keyring files.
        public_keyring: File name of the public keyring.
        secure_keyring: File name of the secure keyring.
        log_level: Logging level name for configure_logging.
    """

    store_dir: str = "~/.passtree/store"
    keyring_dir: str = "~/.passtree/keyring"
    public_keyring: str = DEFAULT_PUBLIC_KEYRING
    secure_keyring: str = DEFAULT_SECURE_KEYRING
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: str | None = ".env.local") -> "Settings":
        """
        Build settings from PASSTREE_* environment variables.

        Args:
            env_file: Dotenv file loaded first; variables already set in the
                environment take precedence. None skips it.
        """
        if env_file:
            load_dotenv(env_file)
        values = {}
        for name, var in _ENV_VARS.items():
            value = os.environ.get(var)
            if value:
                values[name] = value
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """
        Load settings from a YAML mapping keyed by field name.

        Raises:
            ValueError: If the document is not a mapping or has unknown keys.
        """
        with open(path) as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ValueError(f"Config {path} must be a mapping")
        known = {f.name for f in fields(cls)}
        unknown = set(config) - known
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {sorted(unknown)}")
        config = _expand_env_vars(config)
        return cls(**{k: str(v) for k, v in config.items()})


def _expand_env_vars(obj):
    """Replace ${VAR} in strings with os.environ["VAR"], recursively."""
    if isinstance(obj, str):
        return re.sub(
            r"\$\{(\w+)\}",
            lambda m: os.environ.get(m.group(1), m.group(0)),
            obj,
        )
    elif isinstance(obj, dict):
        return {k: _expand_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(v) for v in obj]
    return obj


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def open_repository(settings: Settings | None = None) -> Repository:
    """Build a Repository on local storage with the envelope provider."""
    settings = settings or Settings.from_env()
    storage = LocalTreeStorage(settings.store_dir)
    provider = EnvelopeEncryptionProvider(
        settings.keyring_dir,
        public_keyring=settings.public_keyring,
        secure_keyring=settings.secure_keyring,
    )
    return Repository(storage, provider)
