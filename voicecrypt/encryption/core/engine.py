"""Hybrid encryption engine: encrypt-for-recipients and decrypt-for-self."""
import logging
from typing import Any, Dict, Mapping, Optional, Union

from cryptography.hazmat.primitives.asymmetric import rsa

from ...config import DEFAULT_AUDIO_FORMAT
from ..exceptions import (
    DecryptionError,
    EmptyRecipientSet,
    MalformedEnvelope,
    NotARecipient,
    NotInitialized,
    PartialEncryptionFailure,
)
from ..key_exchange.rsa_wrapper import RecipientKeyWrapper
from ..provider import CryptographyProvider, CryptoProvider
from .context import EncryptionContext
from .envelope import (
    EnvelopeMetadata,
    MessageEnvelope,
    estimate_duration,
    header_associated_data,
)
from .key_manager import check_public_key, parse_public_key
from .message_cipher import MessageCipher

logger = logging.getLogger(__name__)

PublicKeyLike = Union[rsa.RSAPublicKey, str, bytes]


class EncryptionEngine:
    """
    Seals voice messages for a set of recipients and opens them for the
    local user.

    Encryption is all-or-nothing: an envelope is only returned once every
    recipient has a wrapped key.
    """

    def __init__(
        self,
        context: Optional[EncryptionContext] = None,
        provider: Optional[CryptoProvider] = None
    ):
        """
        Initialize encryption engine.

        Args:
            context: Local user's key state (needed for include_self and for
                decrypting without an explicit private key)
            provider: Crypto provider (defaults to the context's provider)
        """
        self.context = context
        if provider is None:
            provider = context.provider if context else CryptographyProvider()
        self.provider = provider
        self.cipher = MessageCipher(provider)
        self.wrapper = RecipientKeyWrapper(provider)

    def is_available(self) -> bool:
        """Whether the provider supports every required primitive."""
        return self.provider.is_available()

    def _resolve_public_keys(
        self,
        recipient_public_keys: Mapping[str, PublicKeyLike],
        include_self: bool
    ) -> Dict[str, rsa.RSAPublicKey]:
        resolved: Dict[str, rsa.RSAPublicKey] = {}
        for recipient_id, key in (recipient_public_keys or {}).items():
            if not isinstance(recipient_id, str) or not recipient_id:
                raise PartialEncryptionFailure(
                    "Recipient id must be a non-empty string", recipient_id
                )
            if isinstance(key, (str, bytes)):
                key = parse_public_key(key, self.provider)
            else:
                key = check_public_key(key)
            resolved[recipient_id] = key

        if include_self:
            if self.context is None:
                raise NotInitialized("include_self requires an encryption context")
            resolved.setdefault(self.context.user_id, self.context.key_manager.public_key)

        return resolved

    def encrypt_for_recipients(
        self,
        plaintext: bytes,
        sender_id: str,
        recipient_public_keys: Mapping[str, PublicKeyLike],
        duration: Optional[float] = None,
        audio_format: Optional[str] = None,
        include_self: bool = False
    ) -> MessageEnvelope:
        """
        Encrypt a payload for every recipient.

        Args:
            plaintext: Raw audio bytes
            sender_id: Sender identifier
            recipient_public_keys: Recipient id -> public key (handle or PEM)
            duration: Audio duration in seconds (estimated if None)
            audio_format: Format tag stored in metadata
            include_self: Also wrap the key for the context's own user

        Returns:
            Sealed MessageEnvelope

        Raises:
            EmptyRecipientSet: If there are no recipients
            MalformedKey: If a recipient key cannot be parsed, is not RSA or is
                smaller than 4096 bits
            PartialEncryptionFailure: If wrapping fails for any recipient
        """
        if not isinstance(sender_id, str) or not sender_id:
            raise ValueError("sender_id must be a non-empty string")

        public_keys = self._resolve_public_keys(recipient_public_keys, include_self)
        if not public_keys:
            raise EmptyRecipientSet("At least one recipient is required")

        envelope_id = MessageEnvelope.new_id()
        created_at = MessageEnvelope.now_ms()
        recipient_ids = tuple(public_keys)
        associated_data = header_associated_data(
            envelope_id, sender_id, recipient_ids, created_at
        )

        content = self.cipher.encrypt_content(plaintext, associated_data)
        try:
            wrapped_keys = self.wrapper.wrap_for_recipients(content.key, public_keys)
        finally:
            # Drop the only reference to the message key
            content = content._replace(key=b"")

        metadata = EnvelopeMetadata(
            duration=duration if duration is not None else estimate_duration(plaintext),
            format=audio_format or DEFAULT_AUDIO_FORMAT,
        )

        try:
            envelope = MessageEnvelope(
                id=envelope_id,
                sender_id=sender_id,
                recipient_ids=recipient_ids,
                ciphertext=content.ciphertext,
                iv=content.iv,
                salt=content.salt,
                wrapped_keys=wrapped_keys,
                integrity_digest=content.digest,
                created_at=created_at,
                metadata=metadata,
            )
        except MalformedEnvelope as e:
            raise PartialEncryptionFailure(f"Envelope assembly failed: {e}") from e

        logger.info(
            f"Sealed envelope {envelope.id} from {sender_id} "
            f"for {len(recipient_ids)} recipient(s)"
        )
        return envelope

    def _own_private_key(self, self_id: str) -> rsa.RSAPrivateKey:
        if self.context is None:
            raise NotInitialized("No private key given and no encryption context")
        if self.context.user_id != self_id:
            raise ValueError("self_id does not match the encryption context user")
        return self.context.private_key

    @staticmethod
    def _coerce_envelope(envelope: Any) -> MessageEnvelope:
        if isinstance(envelope, MessageEnvelope):
            return envelope
        if isinstance(envelope, dict):
            return MessageEnvelope.from_dict(envelope)
        if isinstance(envelope, str):
            return MessageEnvelope.from_json(envelope)
        raise MalformedEnvelope(f"Unsupported envelope type: {type(envelope).__name__}")

    def decrypt_for_self(
        self,
        envelope: Union[MessageEnvelope, Dict[str, Any], str],
        self_id: str,
        own_private_key: Optional[rsa.RSAPrivateKey] = None
    ) -> bytes:
        """
        Decrypt an envelope addressed to the local user.

        Args:
            envelope: MessageEnvelope, its dict form, or its JSON form
            self_id: Local user's identifier
            own_private_key: Private key to unwrap with (defaults to the
                context's key)

        Returns:
            Original plaintext bytes

        Raises:
            NotARecipient: If the envelope has no wrapped key for self_id
            NotInitialized: If no private key is available (e.g. after wipe)
            DecryptionDenied: If the wrapped key cannot be unwrapped
            AuthenticationFailed: If the ciphertext or header was tampered with
            IntegrityViolation: If the decrypted content fails the digest check
        """
        envelope = self._coerce_envelope(envelope)

        wrapped_key = envelope.wrapped_key_for(self_id)
        if wrapped_key is None:
            raise NotARecipient("Not a recipient of this message")

        private_key = own_private_key or self._own_private_key(self_id)

        try:
            message_key = self.wrapper.unwrap_for_self(wrapped_key, private_key)
            return self.cipher.decrypt_content(
                envelope.ciphertext,
                message_key,
                envelope.iv,
                envelope.integrity_digest,
                salt=envelope.salt,
                associated_data=envelope.associated_data(),
            )
        except DecryptionError as e:
            logger.warning(f"Failed to open envelope {envelope.id}: {type(e).__name__}")
            raise
