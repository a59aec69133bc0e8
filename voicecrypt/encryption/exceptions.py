"""Custom exceptions for encryption operations.

Messages never carry key material, plaintext or wrapped-key bytes.
"""
from typing import Optional


class EncryptionError(Exception):
    """Base exception for encryption-related errors."""
    pass


# Key management (local, recoverable)

class KeyManagementError(EncryptionError):
    """Exception raised when key management operations fail."""
    pass


class KeyStoreUnavailable(KeyManagementError):
    """The key persistence medium cannot be opened, read or written."""
    pass


class KeyGenerationFailed(KeyManagementError):
    """The crypto provider is unavailable or rejected the key parameters."""
    pass


class NotInitialized(KeyManagementError):
    """No key pair is loaded (never initialized, or wiped)."""
    pass


class MalformedKey(KeyManagementError):
    """Serialized key material could not be parsed."""
    pass


# Encryption (caller error)

class EncryptionFailure(EncryptionError):
    """Exception raised when an envelope cannot be sealed."""
    pass


class EmptyRecipientSet(EncryptionFailure):
    """No recipients were given."""
    pass


class PartialEncryptionFailure(EncryptionFailure):
    """Wrapping failed for at least one recipient; no envelope was produced."""

    def __init__(self, message: str, recipient_id: Optional[str] = None):
        super().__init__(message)
        self.recipient_id = recipient_id


# Decryption (security relevant, never retried)

class DecryptionError(EncryptionError):
    """Exception raised when decryption fails."""

    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class NotARecipient(DecryptionError):
    """The envelope carries no wrapped key for the requesting identity."""
    pass


class AuthenticationFailed(DecryptionError):
    """AEAD authentication tag did not verify."""
    pass


class DecryptionDenied(AuthenticationFailed):
    """The wrapped key could not be unwrapped with the local private key.

    Raised identically whether the key was wrapped for another key pair or
    was corrupted in transit.
    """
    pass


class IntegrityViolation(DecryptionError):
    """Decrypted content does not match the envelope's integrity digest."""
    pass


class MalformedEnvelope(DecryptionError):
    """Envelope structure violates its invariants or cannot be decoded."""
    pass
