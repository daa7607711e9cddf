import pytest

from passtree.keyring import generate_entity, write_keyring
from passtree.provider import EnvelopeEncryptionProvider
from passtree.repository import Repository
from passtree.storage import LocalTreeStorage, MemoryTreeStorage

# Keeps PBKDF2 fast in tests; production keys use the full iteration count
TEST_ITERATIONS = 1_000


@pytest.fixture
def passphrase():
    return b"correct horse battery staple"


@pytest.fixture
def alice(passphrase):
    return generate_entity(
        "Alice Example <alice@example.com>", passphrase, iterations=TEST_ITERATIONS
    )


@pytest.fixture
def bob():
    return generate_entity(
        "Bob Example <bob@example.com>", b"bob-passphrase", iterations=TEST_ITERATIONS
    )


@pytest.fixture
def keyring_dir(tmp_path, alice, bob):
    """Public keyring knows alice and bob; only alice's secret key is local."""
    path = tmp_path / "keyring"
    write_keyring(path / "pubring.json", [alice.public_only(), bob.public_only()])
    write_keyring(path / "secring.json", [alice])
    return path


@pytest.fixture
def provider(keyring_dir):
    return EnvelopeEncryptionProvider(keyring_dir)


@pytest.fixture
def bob_provider(tmp_path, alice, bob):
    """Provider for a second user holding bob's secret key."""
    path = tmp_path / "bob-keyring"
    write_keyring(path / "pubring.json", [alice.public_only(), bob.public_only()])
    write_keyring(path / "secring.json", [bob])
    return EnvelopeEncryptionProvider(path)


@pytest.fixture(params=["memory", "local"])
def storage(request, tmp_path):
    if request.param == "memory":
        return MemoryTreeStorage()
    return LocalTreeStorage(tmp_path / "store")


@pytest.fixture
def repo(storage, provider):
    return Repository(storage, provider)


@pytest.fixture
def store(repo, alice):
    """A repository initialized for alice."""
    repo.init([alice.fingerprint])
    return repo
