"""Asymmetric key pair lifecycle: generate, load, export, import and wipe."""
import base64
import binascii
import hashlib
import logging
import threading
import time
from typing import Dict, Optional, Union

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ...config import (
    AES_IV_SIZE,
    KEY_WRAP_ALGORITHM,
    MAX_RSA_KEY_SIZE,
    MIN_RSA_KEY_SIZE,
    PBKDF2_ITERATIONS,
    RSA_KEY_SIZE,
    SALT_SIZE,
)
from ..exceptions import (
    KeyGenerationFailed,
    KeyStoreUnavailable,
    MalformedKey,
    NotInitialized,
)
from ..provider import CryptographyProvider, CryptoProvider
from ..storage.key_store import KeyMaterialStore, StoredKeyMaterial
from .key_derivation import derive_key_from_password, generate_salt

logger = logging.getLogger(__name__)

BACKUP_ALGORITHM = "PBKDF2-SHA256/AES-256-GCM"
MAX_BACKUP_ITERATIONS = PBKDF2_ITERATIONS * 10


def check_public_key(public_key) -> rsa.RSAPublicKey:
    """
    Check a public key handle is RSA and meets the minimum strength.

    Raises:
        MalformedKey: If the key is not RSA or is too weak
    """
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise MalformedKey(
            f"Expected an RSA public key, got {type(public_key).__name__}"
        )

    if public_key.key_size < MIN_RSA_KEY_SIZE:
        raise MalformedKey(
            f"RSA public key size {public_key.key_size} bits is too small "
            f"(minimum: {MIN_RSA_KEY_SIZE} bits)"
        )

    return public_key


def parse_public_key(serialized: Union[str, bytes],
                     provider: Optional[CryptoProvider] = None) -> rsa.RSAPublicKey:
    """
    Parse a PEM public key and check it meets the minimum strength.

    Raises:
        MalformedKey: If the key cannot be parsed or is too weak
    """
    provider = provider or CryptographyProvider()

    if isinstance(serialized, str):
        serialized = serialized.encode("ascii", errors="replace")

    if not isinstance(serialized, bytes) or not serialized:
        raise MalformedKey("Public key must be non-empty PEM text")

    try:
        public_key = provider.load_public_key(serialized)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise MalformedKey(f"Invalid public key: {e}") from e

    return check_public_key(public_key)


class KeyPairManager:
    """
    Manages one user's long-lived RSA key pair.

    Features:
    - Load-or-generate initialization, serialized per user
    - Public key export/import (PEM)
    - Password-protected private key backup
    - Best-effort in-memory wipe
    """

    def __init__(
        self,
        store: KeyMaterialStore,
        provider: Optional[CryptoProvider] = None,
        key_size: int = RSA_KEY_SIZE,
        passphrase: Optional[bytes] = None
    ):
        """
        Initialize key pair manager.

        Args:
            store: Persistence for the key pair
            provider: Crypto provider (defaults to CryptographyProvider)
            key_size: RSA modulus size in bits for newly generated pairs
            passphrase: Optional passphrase protecting the private key at rest
        """
        self.store = store
        self.provider = provider or CryptographyProvider()
        self.key_size = key_size
        self._passphrase = passphrase
        self._lock = threading.RLock()

        self._user_id: Optional[str] = None
        self._private_key: Optional[rsa.RSAPrivateKey] = None
        self._public_key: Optional[rsa.RSAPublicKey] = None
        self._created_at: Optional[int] = None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_initialized(self) -> bool:
        return self._private_key is not None

    @property
    def created_at(self) -> Optional[int]:
        return self._created_at

    def initialize(self, user_id: str) -> str:
        """
        Load the user's stored key pair, or generate and persist a new one.

        Calling again for the same user without an intervening wipe returns
        the same key material.

        Args:
            user_id: Owning user identifier

        Returns:
            Exported public key (PEM)

        Raises:
            KeyStoreUnavailable: If the key store cannot be opened or read
            KeyGenerationFailed: If the provider cannot generate the key pair
            MalformedKey: If the stored key pair cannot be parsed
        """
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("user_id must be a non-empty string")

        with self._lock:
            if self._user_id == user_id and self._private_key is not None:
                return self.export_public_key()

            if self._private_key is not None:
                logger.info(f"Switching key pair from user {self._user_id} to {user_id}")
                self._clear_keys()

            with self.store.user_lock(user_id):
                stored = self.store.load(user_id)
                private_key = None

                if stored is None:
                    private_key = self._generate_private_key()
                    material = self._to_material(user_id, private_key)
                    stored = self.store.save_if_absent(material)
                    if stored is not material:
                        # Another writer persisted first; adopt its pair
                        private_key = None
                    else:
                        logger.info(
                            f"Generated RSA key pair for user {user_id} "
                            f"(key size: {private_key.key_size} bits)"
                        )

                if private_key is None:
                    private_key = self._load_stored(stored)
                    logger.info(f"Loaded RSA key pair for user {user_id}")

            self._user_id = user_id
            self._private_key = private_key
            self._public_key = private_key.public_key()
            self._created_at = stored.created_at

            return self.export_public_key()

    def _generate_private_key(self) -> rsa.RSAPrivateKey:
        if self.key_size < MIN_RSA_KEY_SIZE or self.key_size > MAX_RSA_KEY_SIZE:
            raise KeyGenerationFailed(
                f"RSA key size must be between {MIN_RSA_KEY_SIZE} and "
                f"{MAX_RSA_KEY_SIZE} bits, got {self.key_size}"
            )

        if not self.provider.is_available():
            raise KeyGenerationFailed("Cryptographic provider is unavailable")

        logger.info(f"Generating RSA key pair (key size: {self.key_size} bits)...")
        try:
            return self.provider.generate_private_key(self.key_size)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise KeyGenerationFailed(f"Key generation rejected: {e}") from e

    def _to_material(self, user_id: str, private_key: rsa.RSAPrivateKey) -> StoredKeyMaterial:
        return StoredKeyMaterial(
            user_id=user_id,
            public_key=self.provider.serialize_public_key(private_key.public_key()),
            private_key=self.provider.serialize_private_key(private_key, self._passphrase),
            key_size=private_key.key_size,
            encrypted=bool(self._passphrase),
        )

    def _load_stored(self, stored: StoredKeyMaterial) -> rsa.RSAPrivateKey:
        passphrase = self._passphrase if stored.encrypted else None
        if stored.encrypted and not passphrase:
            raise MalformedKey(
                f"Stored private key for user {stored.user_id} is encrypted "
                "but no passphrase is configured"
            )

        try:
            private_key = self.provider.load_private_key(stored.private_key, passphrase)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise MalformedKey(
                f"Stored private key for user {stored.user_id} could not be loaded"
            ) from e

        if self.provider.serialize_public_key(private_key.public_key()) != stored.public_key:
            raise MalformedKey(
                f"Stored key pair for user {stored.user_id} is inconsistent"
            )

        return private_key

    @property
    def private_key(self) -> rsa.RSAPrivateKey:
        """
        Local private key handle.

        Raises:
            NotInitialized: If no key pair is loaded
        """
        key = self._private_key
        if key is None:
            raise NotInitialized("Key pair not initialized")
        return key

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        key = self._public_key
        if key is None:
            raise NotInitialized("Key pair not initialized")
        return key

    def export_public_key(self) -> str:
        """
        Get the current user's public key in PEM format.

        Raises:
            NotInitialized: If called before initialize() or after wipe()
        """
        return self.provider.serialize_public_key(self.public_key)

    def import_public_key(self, serialized: Union[str, bytes]) -> rsa.RSAPublicKey:
        """
        Parse another party's serialized public key for wrapping.

        Raises:
            MalformedKey: If the key cannot be parsed or is too weak
        """
        return parse_public_key(serialized, self.provider)

    def fingerprint(self) -> str:
        """SHA-256 fingerprint of the public key as colon-separated hex pairs."""
        der = self.public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )
        digest = hashlib.sha256(der).hexdigest()
        return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))

    def wipe(self, purge_store: bool = False) -> None:
        """
        Drop the in-memory key handles.

        Args:
            purge_store: Also securely erase the persisted record
        """
        with self._lock:
            user_id = self._user_id
            self._clear_keys()
            self._user_id = None

            if purge_store and user_id:
                with self.store.user_lock(user_id):
                    self.store.purge(user_id)

        logger.info(f"Wiped key pair for user {user_id}")

    def _clear_keys(self) -> None:
        """Clear key handles from memory.

        Note: Python doesn't guarantee memory clearing; dropping the only
        references is the best we can do for OpenSSL-backed key objects.
        """
        self._private_key = None
        self._public_key = None
        self._created_at = None

    def export_private_backup(self, password: str) -> Dict:
        """
        Export the key pair protected by a password.

        The private key is encrypted with AES-256-GCM under a PBKDF2-SHA256
        derived key; the owning user id is bound as associated data.

        Returns:
            JSON-serializable backup record
        """
        private_key = self.private_key
        user_id = self._user_id

        salt = generate_salt()
        iv = self.provider.random_bytes(AES_IV_SIZE)
        wrapping_key = derive_key_from_password(password, salt, PBKDF2_ITERATIONS)
        pem = self.provider.serialize_private_key(private_key)
        ciphertext = self.provider.aead_encrypt(
            wrapping_key, iv, pem, user_id.encode("utf-8")
        )

        logger.info(f"Exported key pair backup for user {user_id}")
        return {
            "user_id": user_id,
            "algorithm": BACKUP_ALGORITHM,
            "key_wrap": KEY_WRAP_ALGORITHM,
            "iterations": PBKDF2_ITERATIONS,
            "salt": base64.b64encode(salt).decode("ascii"),
            "iv": base64.b64encode(iv).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
            "public_key": self.export_public_key(),
            "created_at": int(time.time() * 1000),
        }

    def import_private_backup(self, user_id: str, backup: Dict, password: str) -> str:
        """
        Restore a key pair from export_private_backup().

        Returns:
            Exported public key (PEM)

        Raises:
            MalformedKey: If the backup is corrupt or the password is wrong
            KeyStoreUnavailable: If a different key pair is already stored
        """
        try:
            if backup["user_id"] != user_id:
                raise MalformedKey("Backup belongs to a different user")
            if backup.get("algorithm") != BACKUP_ALGORITHM:
                raise MalformedKey(f"Unsupported backup algorithm: {backup.get('algorithm')}")
            salt = base64.b64decode(backup["salt"], validate=True)
            iv = base64.b64decode(backup["iv"], validate=True)
            ciphertext = base64.b64decode(backup["ciphertext"], validate=True)
            iterations = int(backup["iterations"])
            if not 1 <= iterations <= MAX_BACKUP_ITERATIONS:
                raise MalformedKey(f"Backup iteration count out of range: {iterations}")
            if len(salt) < SALT_SIZE or len(iv) != AES_IV_SIZE:
                raise MalformedKey("Backup salt or IV has the wrong length")
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise MalformedKey("Invalid key backup format") from e

        wrapping_key = derive_key_from_password(password, salt, iterations)
        try:
            pem = self.provider.aead_decrypt(
                wrapping_key, iv, ciphertext, user_id.encode("utf-8")
            )
            private_key = self.provider.load_private_key(pem)
        except (InvalidTag, ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise MalformedKey("Wrong password or corrupted key backup") from e

        material = self._to_material(user_id, private_key)

        with self._lock:
            with self.store.user_lock(user_id):
                stored = self.store.save_if_absent(material)
                if stored.public_key != material.public_key:
                    raise KeyStoreUnavailable(
                        f"A different key pair is already stored for user {user_id}"
                    )

            self._clear_keys()
            self._user_id = user_id
            self._private_key = private_key
            self._public_key = private_key.public_key()
            self._created_at = stored.created_at

        logger.info(f"Restored key pair backup for user {user_id}")
        return self.export_public_key()

    def __del__(self):
        """Cleanup: clear keys when object is destroyed."""
        self._clear_keys()
