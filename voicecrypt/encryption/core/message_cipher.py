"""AES-256-GCM content encryption with an application-level integrity digest."""
import hmac
import logging
from typing import NamedTuple, Optional

from cryptography.exceptions import InvalidTag

from ...config import AES_IV_SIZE, AES_KEY_SIZE, AES_TAG_SIZE, SALT_SIZE
from ..exceptions import (
    AuthenticationFailed,
    EncryptionFailure,
    IntegrityViolation,
)
from ..provider import CryptographyProvider, CryptoProvider

logger = logging.getLogger(__name__)


class EncryptedContent(NamedTuple):
    """Result of MessageCipher.encrypt_content()."""
    ciphertext: bytes
    key: bytes
    iv: bytes
    salt: bytes
    digest: str


class MessageCipher:
    """
    Stateless symmetric encryption of message payloads.

    Every call draws a fresh key, IV and salt from the provider's CSPRNG, so
    no (key, iv) pair is ever reused. The salt (and any caller associated
    data) is authenticated by the GCM tag.
    """

    def __init__(self, provider: Optional[CryptoProvider] = None):
        self.provider = provider or CryptographyProvider()

    @staticmethod
    def _associated_data(salt: bytes, associated_data: bytes) -> bytes:
        return salt + associated_data

    def calculate_digest(self, data: bytes) -> str:
        """
        Calculate SHA-256 digest of content in lowercase hex format.

        Args:
            data: Bytes to hash
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise ValueError(f"Data must be bytes, got {type(data).__name__}")
        return self.provider.digest(bytes(data))

    def encrypt_content(self, plaintext: bytes, associated_data: bytes = b"") -> EncryptedContent:
        """
        Encrypt content under a freshly generated AES-256 key.

        Args:
            plaintext: Raw payload bytes
            associated_data: Extra bytes to authenticate (not encrypted)

        Returns:
            EncryptedContent(ciphertext, key, iv, salt, digest); ciphertext
            has the 16-byte GCM tag appended

        Raises:
            EncryptionFailure: If encryption fails
        """
        if not isinstance(plaintext, (bytes, bytearray, memoryview)):
            raise ValueError(f"Plaintext must be bytes, got {type(plaintext).__name__}")
        plaintext = bytes(plaintext)

        digest = self.calculate_digest(plaintext)

        try:
            key = self.provider.random_bytes(AES_KEY_SIZE)
            iv = self.provider.random_bytes(AES_IV_SIZE)
            salt = self.provider.random_bytes(SALT_SIZE)

            ciphertext = self.provider.aead_encrypt(
                key, iv, plaintext, self._associated_data(salt, associated_data)
            )
        except Exception as e:
            raise EncryptionFailure(f"Content encryption failed: {type(e).__name__}") from e

        logger.debug(
            f"Encrypted content: plaintext={len(plaintext)} bytes, "
            f"ciphertext={len(ciphertext)} bytes"
        )
        return EncryptedContent(ciphertext, key, iv, salt, digest)

    def decrypt_content(
        self,
        ciphertext: bytes,
        key: bytes,
        iv: bytes,
        expected_digest: str,
        salt: bytes = b"",
        associated_data: bytes = b""
    ) -> bytes:
        """
        Decrypt content and verify it against the expected digest.

        Args:
            ciphertext: Encrypted data with 16-byte GCM tag appended
            key: 32-byte AES key
            iv: 12-byte initialization vector
            expected_digest: Lowercase hex SHA-256 of the original plaintext
            salt: Salt produced at encryption time
            associated_data: Same associated data given at encryption time

        Returns:
            Decrypted plaintext bytes

        Raises:
            AuthenticationFailed: If the GCM tag does not verify
            IntegrityViolation: If the decrypted content's digest differs
        """
        if len(key) != AES_KEY_SIZE:
            raise AuthenticationFailed(
                f"Key must be {AES_KEY_SIZE} bytes, got {len(key)} bytes"
            )

        if len(iv) != AES_IV_SIZE:
            raise AuthenticationFailed(
                f"IV must be {AES_IV_SIZE} bytes, got {len(iv)} bytes"
            )

        if len(ciphertext) < AES_TAG_SIZE:
            raise AuthenticationFailed(
                f"Encrypted data too short (must include {AES_TAG_SIZE}-byte tag)"
            )

        try:
            plaintext = self.provider.aead_decrypt(
                key, iv, ciphertext, self._associated_data(salt, associated_data)
            )
        except InvalidTag as e:
            raise AuthenticationFailed("Authentication tag verification failed", e) from e
        except Exception as e:
            raise AuthenticationFailed(f"Decryption failed: {type(e).__name__}", e) from e

        actual_digest = self.calculate_digest(plaintext)
        if not isinstance(expected_digest, str) or not hmac.compare_digest(
            actual_digest.encode("ascii"), expected_digest.lower().encode("utf-8")
        ):
            raise IntegrityViolation("Content digest does not match envelope")

        return plaintext
