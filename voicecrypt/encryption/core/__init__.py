"""Core encryption components."""

from .context import EncryptionContext
from .engine import EncryptionEngine
from .envelope import EnvelopeMetadata, KeyInfo, MessageEnvelope
from .key_derivation import (
    KeyDerivationMethod,
    derive_key_from_password,
    generate_secure_password,
)
from .key_manager import KeyPairManager, check_public_key, parse_public_key
from .message_cipher import EncryptedContent, MessageCipher

__all__ = [
    'EncryptionContext',
    'EncryptionEngine',
    'EnvelopeMetadata',
    'KeyInfo',
    'MessageEnvelope',
    'KeyDerivationMethod',
    'derive_key_from_password',
    'generate_secure_password',
    'KeyPairManager',
    'check_public_key',
    'parse_public_key',
    'EncryptedContent',
    'MessageCipher',
]
