"""Tests for passtree.repository: end-to-end secret lifecycle tests."""

import logging

import pytest

from passtree.errors import (
    DecryptionError,
    EncryptionError,
    MapEntryError,
    NoSecureKeyError,
    NotFoundError,
    NotInitializedError,
    SecretNotFoundError,
    StorageError,
    TraversalError,
    UnauthorizedRecipientError,
)
from passtree.keyring import write_keyring
from passtree.provider import MAGIC, EnvelopeEncryptionProvider
from passtree.repository import ID_FILENAME, Repository
from passtree.storage import LocalTreeStorage, MemoryTreeStorage


def raw(storage, path):
    with storage.open(path) as f:
        return f.read()


def write_raw(storage, path, data):
    with storage.create(path) as f:
        f.write(data)


class TestInit:
    def test_ids_preserve_order(self, repo, alice, bob):
        ids = [bob.fingerprint, "alice@example.com", "Bob Example"]
        repo.init(ids)
        assert repo.ids() == ids

    def test_id_file_format(self, repo, storage, alice, bob):
        repo.init(["alice@example.com", bob.fingerprint])
        assert raw(storage, ID_FILENAME) == f"alice@example.com\n{bob.fingerprint}\n".encode()

    def test_unknown_public_key(self, repo, provider, alice):
        with pytest.raises(UnauthorizedRecipientError) as exc:
            repo.init([alice.fingerprint, "carol@example.com"])
        assert exc.value.identity == "carol@example.com"
        assert exc.value.keyring == provider.public_keyring_name
        assert "carol@example.com" in str(exc.value)

    def test_no_secure_key(self, repo, provider, bob):
        with pytest.raises(NoSecureKeyError) as exc:
            repo.init(["bob@example.com"])
        assert exc.value.keyring == provider.secure_keyring_name

    def test_failed_init_writes_nothing(self, repo):
        with pytest.raises(NoSecureKeyError):
            repo.init(["bob@example.com"])
        with pytest.raises(NotInitializedError):
            repo.ids()

    def test_init_overwrites(self, repo, alice, bob):
        repo.init([alice.fingerprint, bob.fingerprint])
        repo.init([alice.fingerprint])
        assert repo.ids() == [alice.fingerprint]

    def test_creates_root(self, tmp_path, provider, alice):
        root = tmp_path / "nested" / "store"
        repo = Repository(LocalTreeStorage(root), provider)
        repo.init([alice.fingerprint])
        assert root.is_dir()
        assert (root / ID_FILENAME).is_file()

    def test_init_is_idempotent_on_existing_root(self, store, alice):
        store.init([alice.fingerprint])
        assert store.ids() == [alice.fingerprint]

    def test_not_initialized(self, repo):
        with pytest.raises(NotInitializedError):
            repo.ids()


class TestSecretLifecycle:
    def test_roundtrip(self, store, passphrase):
        with store.create("web/example.com") as writer:
            writer.write(b"hunter2\nuser: alice\n")
        with store.open("web/example.com", passphrase) as plaintext:
            assert plaintext.read() == b"hunter2\nuser: alice\n"

    def test_binary_roundtrip(self, store, passphrase):
        data = bytes(range(256))
        store.write("blob", data)
        with store.open("blob", passphrase) as plaintext:
            assert plaintext.read() == data

    def test_stored_encrypted(self, store, storage):
        store.write("email", "plaintext-password")
        assert b"plaintext-password" not in raw(storage, "email.gpg")

    def test_overwrite(self, store, passphrase):
        store.write("key", "v1")
        store.write("key", "v2")
        assert store.line("key", passphrase) == "v2"

    def test_create_makes_directories(self, store, storage):
        store.write("a/b/c/d", "deep")
        assert storage.exists("a/b/c")
        assert store.exists("a/b/c/d")

    def test_open_missing(self, store, passphrase):
        with pytest.raises(SecretNotFoundError) as exc:
            store.open("missing", passphrase)
        assert isinstance(exc.value, NotFoundError)
        assert exc.value.path == "missing"

    def test_open_not_initialized(self, repo, passphrase):
        with pytest.raises(NotInitializedError):
            repo.open("anything", passphrase)

    def test_create_not_initialized(self, repo):
        with pytest.raises(NotInitializedError):
            repo.create("anything")

    def test_wrong_passphrase_leaves_ciphertext(self, store, storage):
        store.write("key", "value")
        before = raw(storage, "key.gpg")
        with pytest.raises(DecryptionError):
            store.open("key", b"wrong passphrase")
        assert raw(storage, "key.gpg") == before

    def test_interrupted_write_is_not_decryptable(self, store, passphrase):
        with pytest.raises(RuntimeError):
            with store.create("key") as writer:
                writer.write(b"partial")
                raise RuntimeError("interrupted")
        with pytest.raises(DecryptionError):
            store.open("key", passphrase)

    def test_secret_name_is_case_sensitive(self, store, passphrase):
        store.write("Key", "upper")
        store.write("key", "lower")
        assert store.line("Key", passphrase) == "upper"
        assert store.line("key", passphrase) == "lower"

    def test_invalid_name(self, store):
        with pytest.raises(StorageError):
            store.create("../escape")


class TestRecipients:
    def test_every_recipient_can_read(self, store, storage, alice, bob, bob_provider, passphrase):
        store.init([alice.fingerprint, bob.fingerprint])
        store.write("shared", "team secret")
        assert store.line("shared", passphrase) == "team secret"
        assert Repository(storage, bob_provider).line("shared", b"bob-passphrase") == "team secret"

    def test_recipient_set_reread_on_every_call(self, store, storage, alice, bob, bob_provider):
        as_bob = Repository(storage, bob_provider)
        store.write("before", "alice only")
        with pytest.raises(DecryptionError):
            as_bob.line("before", b"bob-passphrase")

        store.init([alice.fingerprint, bob.fingerprint])
        store.write("after", "both")
        assert as_bob.line("after", b"bob-passphrase") == "both"

    def test_no_public_key_for_recipients(self, store, storage, keyring_dir):
        (keyring_dir / "pubring.json").unlink()
        with pytest.raises(EncryptionError):
            store.create("key")
        assert not storage.exists("key.gpg")


class TestLine:
    def test_first_line_only(self, store, passphrase):
        store.write("multi", "first\nsecond\nthird\n")
        assert store.line("multi", passphrase) == "first"

    def test_crlf_terminator(self, store, passphrase):
        store.write("crlf", "first\r\nsecond\r\n")
        assert store.line("crlf", passphrase) == "first"

    def test_no_terminator(self, store, passphrase):
        store.write("single", "only")
        assert store.line("single", passphrase) == "only"

    def test_empty(self, store, passphrase):
        store.write("empty", b"")
        assert store.line("empty", passphrase) == ""

    def test_invalid_utf8(self, store, passphrase):
        store.write("binary", b"\xff\xfe\n")
        with pytest.raises(DecryptionError):
            store.line("binary", passphrase)

    def test_missing(self, store, passphrase):
        with pytest.raises(SecretNotFoundError):
            store.line("missing", passphrase)


class TestMap:
    def test_map_directory(self, store, storage, passphrase):
        store.write("dir/a", "x\nignored")
        store.write("dir/b", "y")
        store.write("dir/sub/c", "nested")
        write_raw(storage, "dir/notes.txt", b"plain")
        assert store.map("dir", passphrase) == {"a": "x", "b": "y"}

    def test_map_root(self, store, passphrase):
        store.write("top", "value")
        store.write("dir/a", "x")
        assert store.map(".", passphrase) == {"top": "value"}

    def test_map_empty_directory(self, store, storage, passphrase):
        storage.makedirs("empty")
        assert store.map("empty", passphrase) == {}

    def test_map_missing_directory(self, store, passphrase):
        with pytest.raises(SecretNotFoundError):
            store.map("missing", passphrase)

    def test_failing_entry_is_an_error_result(self, store, storage, passphrase):
        store.write("dir/a", "x")
        write_raw(storage, "dir/bad.gpg", b"garbage")
        with pytest.raises(MapEntryError) as exc:
            store.map("dir", passphrase)
        assert exc.value.directory == "dir"
        assert exc.value.entry == "bad"
        assert isinstance(exc.value.__cause__, DecryptionError)

    def test_wrong_passphrase(self, store, passphrase):
        store.write("dir/a", "x")
        with pytest.raises(MapEntryError):
            store.map("dir", b"wrong")


class TestRemove:
    def test_remove_then_open(self, store, passphrase):
        store.write("key", "value")
        store.remove("key")
        assert not store.exists("key")
        with pytest.raises(SecretNotFoundError):
            store.open("key", passphrase)

    def test_remove_missing(self, store):
        with pytest.raises(SecretNotFoundError):
            store.remove("missing")

    def test_parent_directories_kept(self, store, storage):
        store.write("dir/sub/key", "value")
        store.remove("dir/sub/key")
        assert storage.exists("dir/sub")
        assert storage.list_entries("dir/sub") == []


class TestWalk:
    def test_visits_only_secrets(self, store, storage):
        store.write("a", "1")
        store.write("sub/b", "2")
        write_raw(storage, "notes.txt", b"plain")
        visited = []
        store.walk(visited.append)
        assert set(visited) == {"a", "sub/b"}
        assert len(visited) == 2

    def test_deterministic_order(self, store):
        for name in ["z", "m/two", "m/one", "a"]:
            store.write(name, name)
        visited = []
        store.walk(visited.append)
        assert visited == ["a", "m/one", "m/two", "z"]

    def test_names_matches_walk(self, store):
        store.write("x", "1")
        store.write("y/z", "2")
        visited = []
        store.walk(visited.append)
        assert list(store.names()) == visited

    def test_empty_store(self, store):
        assert list(store.names()) == []

    def test_first_error_aborts(self, provider, alice):
        class BrokenStorage(MemoryTreeStorage):
            def list_entries(self, path):
                if path == "broken":
                    raise StorageError("permission denied")
                return super().list_entries(path)

        repo = Repository(BrokenStorage(), provider)
        repo.init([alice.fingerprint])
        for name in ["a", "broken/x", "z"]:
            repo.write(name, name)
        visited = []
        with pytest.raises(TraversalError):
            repo.walk(visited.append)
        assert visited == ["a"]


class TestLogging:
    def test_mutations_logged_without_secrets(self, store, passphrase, caplog):
        caplog.set_level(logging.DEBUG, logger="passtree")
        store.write("web/site", "topsecret-value")
        store.line("web/site", passphrase)
        store.remove("web/site")
        assert "Writing web/site for 1 recipient(s)" in caplog.text
        assert "Removed web/site" in caplog.text
        assert "topsecret-value" not in caplog.text
        assert passphrase.decode() not in caplog.text

    def test_map_failure_logged(self, store, storage, passphrase, caplog):
        write_raw(storage, "dir/bad.gpg", b"garbage")
        with pytest.raises(MapEntryError):
            store.map("dir", passphrase)
        assert any(
            r.levelno == logging.WARNING and "bad" in r.getMessage() for r in caplog.records
        )


class TestCorruptFiles:
    def zero_ephemeral_key(self, storage, path):
        payload = bytearray(raw(storage, path))
        start = len(MAGIC) + 2 + 20
        payload[start:start + 32] = bytes(32)
        write_raw(storage, path, bytes(payload))

    def test_open_damaged_recipient_key(self, store, storage, passphrase):
        store.write("dir/a", "x")
        self.zero_ephemeral_key(storage, "dir/a.gpg")
        with pytest.raises(DecryptionError):
            store.open("dir/a", passphrase)

    def test_map_damaged_recipient_key(self, store, storage, passphrase):
        store.write("dir/a", "x")
        self.zero_ephemeral_key(storage, "dir/a.gpg")
        with pytest.raises(MapEntryError) as exc:
            store.map("dir", passphrase)
        assert exc.value.entry == "a"
        assert isinstance(exc.value.__cause__, DecryptionError)

    def test_recipient_file_not_utf8(self, store, storage):
        write_raw(storage, ID_FILENAME, b"\xff\xfe\n")
        with pytest.raises(StorageError) as exc:
            store.ids()
        assert isinstance(exc.value.__cause__, UnicodeDecodeError)


class TestRelativeKeyringDir:
    def test_init_with_relative_keyring_dir(self, tmp_path, monkeypatch, alice, passphrase):
        monkeypatch.chdir(tmp_path)
        write_keyring("keys/pubring.json", [alice.public_only()])
        write_keyring("keys/secring.json", [alice])
        repo = Repository(MemoryTreeStorage(), EnvelopeEncryptionProvider("keys"))
        repo.init([alice.fingerprint])
        repo.write("key", "value")
        assert repo.line("key", passphrase) == "value"
