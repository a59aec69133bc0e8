"""RSA-OAEP wrapping of per-message keys for each recipient."""
import logging
from typing import Dict, Mapping, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from ...config import AES_KEY_SIZE
from ..exceptions import (
    DecryptionDenied,
    EmptyRecipientSet,
    PartialEncryptionFailure,
)
from ..provider import CryptographyProvider, CryptoProvider

logger = logging.getLogger(__name__)


class RecipientKeyWrapper:
    """
    Wraps a symmetric key independently under each recipient's public key.

    Each wrapped copy is a separate RSA-OAEP (SHA-256) ciphertext, so one
    recipient's private key reveals nothing about another's copy.
    """

    def __init__(self, provider: Optional[CryptoProvider] = None):
        self.provider = provider or CryptographyProvider()

    def wrap_for_recipients(
        self,
        key: bytes,
        recipient_public_keys: Mapping[str, rsa.RSAPublicKey]
    ) -> Dict[str, bytes]:
        """
        Encrypt the raw key bytes for every recipient.

        Args:
            key: 32-byte symmetric key
            recipient_public_keys: Recipient id -> public key

        Returns:
            Recipient id -> wrapped key (one entry per input entry)

        Raises:
            EmptyRecipientSet: If no recipients are given
            PartialEncryptionFailure: If wrapping fails for any recipient
        """
        if not recipient_public_keys:
            raise EmptyRecipientSet("At least one recipient is required")

        if len(key) != AES_KEY_SIZE:
            raise ValueError(
                f"Key must be {AES_KEY_SIZE} bytes, got {len(key)} bytes"
            )

        wrapped: Dict[str, bytes] = {}
        for recipient_id, public_key in recipient_public_keys.items():
            if not isinstance(recipient_id, str) or not recipient_id:
                raise PartialEncryptionFailure(
                    "Recipient id must be a non-empty string", recipient_id
                )
            try:
                wrapped[recipient_id] = self.provider.wrap_key(public_key, key)
            except Exception as e:
                logger.warning(f"Key wrapping failed for recipient {recipient_id}: {type(e).__name__}")
                raise PartialEncryptionFailure(
                    f"Key wrapping failed for recipient {recipient_id}", recipient_id
                ) from e

        logger.debug(f"Wrapped message key for {len(wrapped)} recipient(s)")
        return wrapped

    def unwrap_for_self(self, wrapped_key: bytes, private_key: rsa.RSAPrivateKey) -> bytes:
        """
        Recover the symmetric key with the local private key.

        Raises:
            DecryptionDenied: If the wrapped key cannot be unwrapped. Raised
                the same way whether it was wrapped for another key pair or
                corrupted.
        """
        try:
            key = self.provider.unwrap_key(private_key, wrapped_key)
        except Exception:
            key = None

        if key is None or len(key) != AES_KEY_SIZE:
            # No cause chained: the reason must not be observable
            raise DecryptionDenied("Unable to unwrap message key") from None

        return key
