"""Password utilities: PBKDF2 key derivation and secure password generation."""
import hashlib
import secrets
from enum import Enum
from typing import Optional

from ...config import AES_KEY_SIZE, PBKDF2_ITERATIONS, SALT_SIZE
from ..exceptions import KeyManagementError

PASSWORD_ALPHABET = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789!@#$%^&*"
)


class KeyDerivationMethod(Enum):
    """Key derivation methods."""
    PBKDF2 = "pbkdf2"  # PBKDF2 with SHA-256


def generate_salt() -> bytes:
    """Generate a random 128-bit salt."""
    return secrets.token_bytes(SALT_SIZE)


def derive_key_from_password(
    password: str,
    salt: bytes,
    iterations: int = PBKDF2_ITERATIONS,
    method: KeyDerivationMethod = KeyDerivationMethod.PBKDF2
) -> bytes:
    """
    Derive an AES-256 key from a password.

    Args:
        password: User-supplied password
        salt: Random salt (at least 16 bytes)
        iterations: Number of PBKDF2 iterations

    Returns:
        Derived key (32 bytes)

    Raises:
        KeyManagementError: If parameters are invalid
    """
    if not password:
        raise KeyManagementError("Password must not be empty")

    if len(salt) < SALT_SIZE:
        raise KeyManagementError(
            f"Salt must be at least {SALT_SIZE} bytes, got {len(salt)} bytes"
        )

    if iterations < 1:
        raise KeyManagementError(f"Iterations must be positive, got {iterations}")

    if method != KeyDerivationMethod.PBKDF2:
        raise KeyManagementError(f"Unsupported derivation method: {method}")

    return hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt,
        iterations,
        dklen=AES_KEY_SIZE
    )


def generate_secure_password(length: int = 32, alphabet: Optional[str] = None) -> str:
    """
    Generate a random password, e.g. for protecting a key backup.

    Args:
        length: Number of characters
        alphabet: Characters to draw from (defaults to 70 printable symbols)
    """
    if length < 1:
        raise ValueError(f"Password length must be positive, got {length}")

    chars = alphabet or PASSWORD_ALPHABET
    return "".join(secrets.choice(chars) for _ in range(length))
