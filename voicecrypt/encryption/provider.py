"""Cryptographic provider abstraction.

Every primitive the engine needs goes through a ``CryptoProvider`` so that
tests (or other platforms) can inject their own implementation.
"""
import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Optional

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import RSA_PUBLIC_EXPONENT

logger = logging.getLogger(__name__)


class CryptoProvider(ABC):
    """Interface for the primitives used by the encryption engine."""

    @abstractmethod
    def random_bytes(self, length: int) -> bytes:
        """Return ``length`` bytes from a cryptographically secure source."""

    @abstractmethod
    def generate_private_key(self, key_size: int) -> rsa.RSAPrivateKey:
        """Generate a new asymmetric private key."""

    @abstractmethod
    def aead_encrypt(self, key: bytes, iv: bytes, plaintext: bytes,
                     associated_data: Optional[bytes] = None) -> bytes:
        """Encrypt and authenticate; the tag is appended to the ciphertext."""

    @abstractmethod
    def aead_decrypt(self, key: bytes, iv: bytes, ciphertext: bytes,
                     associated_data: Optional[bytes] = None) -> bytes:
        """Verify and decrypt. Raises ``InvalidTag`` on authentication failure."""

    @abstractmethod
    def wrap_key(self, public_key: rsa.RSAPublicKey, key: bytes) -> bytes:
        """Encrypt raw symmetric key bytes under a public key."""

    @abstractmethod
    def unwrap_key(self, private_key: rsa.RSAPrivateKey, wrapped: bytes) -> bytes:
        """Recover raw symmetric key bytes. Raises ``ValueError`` on failure."""

    @abstractmethod
    def digest(self, data: bytes) -> str:
        """Lowercase hex content digest."""

    @abstractmethod
    def serialize_public_key(self, public_key: rsa.RSAPublicKey) -> str:
        """Portable text form of a public key."""

    @abstractmethod
    def load_public_key(self, data: bytes) -> rsa.RSAPublicKey:
        """Parse a public key produced by ``serialize_public_key``."""

    @abstractmethod
    def serialize_private_key(self, private_key: rsa.RSAPrivateKey,
                              passphrase: Optional[bytes] = None) -> bytes:
        """Opaque, re-importable form of a private key."""

    @abstractmethod
    def load_private_key(self, data: bytes,
                         passphrase: Optional[bytes] = None) -> rsa.RSAPrivateKey:
        """Parse a private key produced by ``serialize_private_key``."""

    def is_available(self) -> bool:
        """Whether the provider can perform every required primitive."""
        return True


class CryptographyProvider(CryptoProvider):
    """
    Default provider backed by pyca/cryptography.

    - Content: AES-256-GCM
    - Key wrapping: RSA-OAEP with SHA-256 (MGF1-SHA-256)
    - Digest: SHA-256
    - Serialization: PEM SubjectPublicKeyInfo / PKCS8
    """

    @staticmethod
    def _oaep() -> padding.OAEP:
        return padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA256()),
            algorithm=hashes.SHA256(),
            label=None
        )

    def random_bytes(self, length: int) -> bytes:
        return secrets.token_bytes(length)

    def generate_private_key(self, key_size: int) -> rsa.RSAPrivateKey:
        return rsa.generate_private_key(
            public_exponent=RSA_PUBLIC_EXPONENT,
            key_size=key_size
        )

    def aead_encrypt(self, key: bytes, iv: bytes, plaintext: bytes,
                     associated_data: Optional[bytes] = None) -> bytes:
        return AESGCM(key).encrypt(iv, plaintext, associated_data or None)

    def aead_decrypt(self, key: bytes, iv: bytes, ciphertext: bytes,
                     associated_data: Optional[bytes] = None) -> bytes:
        return AESGCM(key).decrypt(iv, ciphertext, associated_data or None)

    def wrap_key(self, public_key: rsa.RSAPublicKey, key: bytes) -> bytes:
        return public_key.encrypt(key, self._oaep())

    def unwrap_key(self, private_key: rsa.RSAPrivateKey, wrapped: bytes) -> bytes:
        return private_key.decrypt(wrapped, self._oaep())

    def digest(self, data: bytes) -> str:
        return hashlib.sha256(data).hexdigest()

    def serialize_public_key(self, public_key: rsa.RSAPublicKey) -> str:
        pem = public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        )
        return pem.decode("ascii")

    def load_public_key(self, data: bytes) -> rsa.RSAPublicKey:
        key = serialization.load_pem_public_key(data)
        if not isinstance(key, rsa.RSAPublicKey):
            raise ValueError(f"Expected an RSA public key, got {type(key).__name__}")
        return key

    def serialize_private_key(self, private_key: rsa.RSAPrivateKey,
                              passphrase: Optional[bytes] = None) -> bytes:
        if passphrase:
            encryption = serialization.BestAvailableEncryption(passphrase)
        else:
            encryption = serialization.NoEncryption()
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=encryption
        )

    def load_private_key(self, data: bytes,
                         passphrase: Optional[bytes] = None) -> rsa.RSAPrivateKey:
        key = serialization.load_pem_private_key(data, password=passphrase)
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError(f"Expected an RSA private key, got {type(key).__name__}")
        return key

    def is_available(self) -> bool:
        try:
            AESGCM(bytes(32))
            self._oaep()
        except UnsupportedAlgorithm as e:
            logger.warning(f"Crypto provider unavailable: {e}")
            return False
        return True


__all__ = ["CryptoProvider", "CryptographyProvider"]
