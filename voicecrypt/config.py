"""Configuration management for the voice message encryption engine."""
import os
from pathlib import Path
from typing import Optional

# Default configuration
DEFAULT_KEY_DIR = Path.home() / ".voicecrypt" / "keys"

# Symmetric encryption configuration
AES_KEY_SIZE = 32  # 256 bits
AES_IV_SIZE = 12  # 96 bits
AES_TAG_SIZE = 16  # 128 bits
SALT_SIZE = 16  # 128 bits

# Asymmetric (key wrapping) configuration
RSA_KEY_SIZE = 4096  # bits
MIN_RSA_KEY_SIZE = 4096
MAX_RSA_KEY_SIZE = 8192
RSA_PUBLIC_EXPONENT = 65537
KEY_WRAP_ALGORITHM = "RSA-OAEP-SHA256"

# Password-based key derivation
PBKDF2_ITERATIONS = 100000

# Audio metadata (used to estimate duration of raw PCM payloads)
AUDIO_SAMPLE_RATE = 44100
AUDIO_BYTES_PER_SAMPLE = 2
DEFAULT_AUDIO_FORMAT = "audio/webm"


class Config:
    """Engine configuration."""

    def __init__(
        self,
        key_dir: Optional[Path] = None,
        rsa_key_size: Optional[int] = None,
        key_passphrase: Optional[str] = None,
    ):
        self.key_dir: Path = Path(
            key_dir or os.getenv("VOICECRYPT_KEY_DIR", str(DEFAULT_KEY_DIR))
        )
        self.rsa_key_size: int = int(
            rsa_key_size or os.getenv("VOICECRYPT_RSA_KEY_SIZE", RSA_KEY_SIZE)
        )
        self.key_passphrase: Optional[str] = (
            key_passphrase or os.getenv("VOICECRYPT_KEY_PASSPHRASE") or None
        )

    def passphrase_bytes(self) -> Optional[bytes]:
        """Passphrase for at-rest private key protection, if configured."""
        if not self.key_passphrase:
            return None
        return self.key_passphrase.encode("utf-8")
