"""Shared fixtures: pre-generated RSA-4096 keys and instrumented providers."""
import threading
from collections import defaultdict

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from voicecrypt.config import Config, RSA_PUBLIC_EXPONENT
from voicecrypt.encryption import EncryptionContext, InMemoryKeyMaterialStore
from voicecrypt.encryption.provider import CryptographyProvider

KEY_NAMES = ("alice", "bob", "carol", "eve", "spare")


class PooledKeyProvider(CryptographyProvider):
    """Hands out pre-generated key pairs instead of generating new ones."""

    def __init__(self, keys):
        self._pool = list(keys)
        self._lock = threading.Lock()
        self.generated = 0

    def generate_private_key(self, key_size):
        with self._lock:
            key = self._pool[self.generated % len(self._pool)]
            self.generated += 1
        return key


class RecordingProvider(CryptographyProvider):
    """Records every random value it hands out, grouped by length."""

    def __init__(self):
        self.issued = defaultdict(list)

    def random_bytes(self, length):
        value = super().random_bytes(length)
        self.issued[length].append(value)
        return value


@pytest.fixture(scope="session")
def rsa_keys():
    """One RSA-4096 private key per test identity, generated once."""
    return {
        name: rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT, key_size=4096
        )
        for name in KEY_NAMES
    }


@pytest.fixture
def key_pool(rsa_keys):
    """Factory for a provider that 'generates' the named keys in order."""
    def _make(*names):
        return PooledKeyProvider([rsa_keys[n] for n in (names or KEY_NAMES)])
    return _make


@pytest.fixture
def recording_provider():
    return RecordingProvider()


@pytest.fixture
def memory_store():
    return InMemoryKeyMaterialStore()


@pytest.fixture
def make_context(key_pool, tmp_path):
    """Factory for an initialized context whose key pair is the named test key."""
    def _make(user_id, key_name=None, store=None, passphrase=None):
        context = EncryptionContext(
            user_id,
            store=store if store is not None else InMemoryKeyMaterialStore(),
            provider=key_pool(key_name or user_id),
            config=Config(key_dir=tmp_path / "keys", key_passphrase=passphrase),
        )
        context.initialize()
        return context
    return _make
