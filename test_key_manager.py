"""Tests for key pair lifecycle management."""
import base64
import re
import threading

import pytest
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives import serialization

from voicecrypt.config import PBKDF2_ITERATIONS
from voicecrypt.encryption import (
    KeyGenerationFailed,
    KeyPairManager,
    KeyStoreUnavailable,
    MalformedKey,
    NotInitialized,
)
from voicecrypt.encryption.core.key_derivation import (
    PASSWORD_ALPHABET,
    derive_key_from_password,
    generate_secure_password,
)
from voicecrypt.encryption.exceptions import KeyManagementError
from voicecrypt.encryption.storage.key_store import KeyMaterialStore


def test_initialize_is_idempotent(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice", "bob"))

    first = manager.initialize("alice")
    second = manager.initialize("alice")

    assert first == second, "Exported public key should be byte-identical"
    assert manager.provider.generated == 1, "Key pair should only be generated once"


def test_initialize_loads_after_restart(tmp_path, key_pool):
    first = KeyPairManager(KeyMaterialStore(tmp_path), provider=key_pool("alice"))
    pem = first.initialize("alice")

    restarted = KeyPairManager(KeyMaterialStore(tmp_path), provider=key_pool("bob"))

    assert restarted.initialize("alice") == pem
    assert restarted.provider.generated == 0, "Stored key pair should be loaded"


def test_generated_key_meets_minimum_strength(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice"))
    manager.initialize("alice")

    assert manager.private_key.key_size >= 4096
    assert manager.public_key.public_numbers().e == 65537


def test_export_before_initialize_raises(memory_store):
    manager = KeyPairManager(memory_store)

    with pytest.raises(NotInitialized):
        manager.export_public_key()
    with pytest.raises(NotInitialized):
        _ = manager.private_key


def test_small_key_size_rejected(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice"), key_size=2048)

    with pytest.raises(KeyGenerationFailed):
        manager.initialize("alice")
    assert memory_store.load("alice") is None, "Nothing should be persisted"


def test_provider_rejection_raises_key_generation_failed(memory_store, key_pool):
    provider = key_pool("alice")

    def reject(key_size):
        raise ValueError("unsupported parameters")

    provider.generate_private_key = reject
    manager = KeyPairManager(memory_store, provider=provider)

    with pytest.raises(KeyGenerationFailed):
        manager.initialize("alice")


def test_unavailable_store_raises(tmp_path, key_pool):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    manager = KeyPairManager(KeyMaterialStore(blocker / "keys"), provider=key_pool("alice"))

    with pytest.raises(KeyStoreUnavailable):
        manager.initialize("alice")


def test_import_public_key_roundtrip(memory_store, key_pool):
    alice = KeyPairManager(memory_store, provider=key_pool("alice"))
    pem = alice.initialize("alice")

    imported = KeyPairManager(memory_store).import_public_key(pem)

    assert imported.public_numbers() == alice.public_key.public_numbers()


@pytest.mark.parametrize("bad", ["", "not a key", b"-----BEGIN PUBLIC KEY-----\nAAAA\n-----END PUBLIC KEY-----\n"])
def test_import_malformed_public_key(memory_store, bad):
    with pytest.raises(MalformedKey):
        KeyPairManager(memory_store).import_public_key(bad)


def test_import_weak_or_foreign_public_key(memory_store):
    weak = rsa.generate_private_key(public_exponent=65537, key_size=2048).public_key()
    curve = ec.generate_private_key(ec.SECP256R1()).public_key()
    manager = KeyPairManager(memory_store)

    for key in (weak, curve):
        pem = key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )
        with pytest.raises(MalformedKey):
            manager.import_public_key(pem)


def test_wipe_drops_private_key(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice"))
    manager.initialize("alice")

    manager.wipe()

    assert not manager.is_initialized
    assert manager.user_id is None
    with pytest.raises(NotInitialized):
        _ = manager.private_key
    assert memory_store.load("alice") is not None, "Plain wipe keeps the stored copy"


def test_wipe_then_initialize_restores_same_pair(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice", "bob"))
    pem = manager.initialize("alice")

    manager.wipe()

    assert manager.initialize("alice") == pem


def test_wipe_with_purge_generates_new_pair(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice", "bob"))
    pem = manager.initialize("alice")

    manager.wipe(purge_store=True)

    assert memory_store.load("alice") is None
    assert manager.initialize("alice") != pem


def test_switching_users_replaces_keys(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice", "bob"))
    alice_pem = manager.initialize("alice")
    bob_pem = manager.initialize("bob")

    assert alice_pem != bob_pem
    assert manager.user_id == "bob"


def test_concurrent_initialize_generates_once(tmp_path, key_pool):
    provider = key_pool("alice", "bob", "carol")
    results = []
    barrier = threading.Barrier(6)

    def init():
        manager = KeyPairManager(KeyMaterialStore(tmp_path), provider=provider)
        barrier.wait()
        results.append(manager.initialize("dana"))

    threads = [threading.Thread(target=init) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 6
    assert len(set(results)) == 1, "All callers must see the same key pair"
    assert provider.generated == 1


def test_concurrent_wipe_and_initialize_stay_consistent(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice", "bob", "carol"))
    manager.initialize("alice")
    errors = []

    def run(action, barrier):
        barrier.wait()
        try:
            action()
        except Exception as e:
            errors.append(e)

    for _ in range(30):
        barrier = threading.Barrier(2)
        threads = [
            threading.Thread(target=run, args=(lambda: manager.wipe(purge_store=True), barrier)),
            threading.Thread(target=run, args=(lambda: manager.initialize("alice"), barrier)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert not errors, f"Concurrent wipe/initialize raised: {errors}"
        stored = memory_store.load("alice")
        if manager.is_initialized:
            assert manager.private_key is not None
            assert stored is not None, "An initialized pair must be persisted"
            assert manager.export_public_key() == stored.public_key
        else:
            with pytest.raises(NotInitialized):
                _ = manager.private_key
            with pytest.raises(NotInitialized):
                manager.export_public_key()
            assert stored is None, "A purged pair must not survive the wipe"
            manager.initialize("alice")


def test_passphrase_protects_stored_private_key(tmp_path, key_pool):
    store = KeyMaterialStore(tmp_path)
    manager = KeyPairManager(store, provider=key_pool("alice"), passphrase=b"correct horse")
    pem = manager.initialize("alice")

    stored = store.load("alice")
    assert stored.encrypted
    assert b"ENCRYPTED" in stored.private_key

    reloaded = KeyPairManager(store, passphrase=b"correct horse")
    assert reloaded.initialize("alice") == pem

    with pytest.raises(MalformedKey):
        KeyPairManager(store).initialize("alice")
    with pytest.raises(MalformedKey):
        KeyPairManager(store, passphrase=b"wrong").initialize("alice")


def test_fingerprint_format(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice"))
    manager.initialize("alice")

    fingerprint = manager.fingerprint()

    assert re.fullmatch(r"([0-9a-f]{2}:){31}[0-9a-f]{2}", fingerprint)
    assert fingerprint == manager.fingerprint()


def test_private_backup_restores_on_new_device(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice"))
    pem = manager.initialize("alice")
    password = generate_secure_password()

    backup = manager.export_private_backup(password)
    assert "PRIVATE" not in str(backup)

    other_store = type(memory_store)()
    restored = KeyPairManager(other_store)

    assert restored.import_private_backup("alice", backup, password) == pem
    assert other_store.load("alice").public_key == pem


def test_private_backup_wrong_password(memory_store, key_pool):
    manager = KeyPairManager(memory_store, provider=key_pool("alice"))
    manager.initialize("alice")
    backup = manager.export_private_backup("right password")

    with pytest.raises(MalformedKey):
        KeyPairManager(type(memory_store)()).import_private_backup("alice", backup, "wrong password")
    with pytest.raises(MalformedKey):
        KeyPairManager(type(memory_store)()).import_private_backup("bob", backup, "right password")


def test_private_backup_conflicting_stored_pair(memory_store, key_pool):
    alice = KeyPairManager(memory_store, provider=key_pool("alice"))
    alice.initialize("alice")
    backup = alice.export_private_backup("pw")

    other_store = type(memory_store)()
    KeyPairManager(other_store, provider=key_pool("bob")).initialize("alice")

    with pytest.raises(KeyStoreUnavailable):
        KeyPairManager(other_store).import_private_backup("alice", backup, "pw")


@pytest.mark.parametrize("field, value", [
    ("iterations", 0),
    ("iterations", -1),
    ("iterations", PBKDF2_ITERATIONS * 10 + 1),
    ("iterations", "many"),
    ("salt", base64.b64encode(b"short").decode("ascii")),
    ("iv", base64.b64encode(b"\x00" * 4).decode("ascii")),
])
def test_private_backup_rejects_corrupt_parameters(memory_store, key_pool, field, value):
    manager = KeyPairManager(memory_store, provider=key_pool("alice"))
    manager.initialize("alice")
    backup = manager.export_private_backup("pw")
    backup[field] = value

    with pytest.raises(MalformedKey):
        KeyPairManager(type(memory_store)()).import_private_backup("alice", backup, "pw")


def test_generate_secure_password():
    password = generate_secure_password(48)

    assert len(password) == 48
    assert set(password) <= set(PASSWORD_ALPHABET)
    assert password != generate_secure_password(48)


def test_derive_key_from_password():
    salt = b"\x01" * 16

    key = derive_key_from_password("secret", salt, iterations=1000)

    assert len(key) == 32
    assert key == derive_key_from_password("secret", salt, iterations=1000)
    assert key != derive_key_from_password("secret", b"\x02" * 16, iterations=1000)
    with pytest.raises(KeyManagementError):
        derive_key_from_password("", salt)
    with pytest.raises(KeyManagementError):
        derive_key_from_password("secret", b"short")
