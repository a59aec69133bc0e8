"""Hybrid end-to-end encryption for voice messages."""

from .core.context import EncryptionContext
from .core.engine import EncryptionEngine
from .core.envelope import EnvelopeMetadata, KeyInfo, MessageEnvelope
from .core.key_derivation import (
    KeyDerivationMethod,
    derive_key_from_password,
    generate_secure_password,
)
from .core.key_manager import KeyPairManager
from .core.message_cipher import MessageCipher
from .key_exchange.rsa_wrapper import RecipientKeyWrapper
from .provider import CryptographyProvider, CryptoProvider
from .storage.key_store import InMemoryKeyMaterialStore, KeyMaterialStore
from .exceptions import (
    EncryptionError,
    KeyManagementError,
    KeyStoreUnavailable,
    KeyGenerationFailed,
    NotInitialized,
    MalformedKey,
    EncryptionFailure,
    EmptyRecipientSet,
    PartialEncryptionFailure,
    DecryptionError,
    NotARecipient,
    AuthenticationFailed,
    DecryptionDenied,
    IntegrityViolation,
    MalformedEnvelope,
)

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
    'MessageCipher',
    'RecipientKeyWrapper',
    'CryptographyProvider',
    'CryptoProvider',
    'InMemoryKeyMaterialStore',
    'KeyMaterialStore',
    'EncryptionError',
    'KeyManagementError',
    'KeyStoreUnavailable',
    'KeyGenerationFailed',
    'NotInitialized',
    'MalformedKey',
    'EncryptionFailure',
    'EmptyRecipientSet',
    'PartialEncryptionFailure',
    'DecryptionError',
    'NotARecipient',
    'AuthenticationFailed',
    'DecryptionDenied',
    'IntegrityViolation',
    'MalformedEnvelope',
]
