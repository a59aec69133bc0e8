"""Per-user encryption context, owned by the caller."""
import logging
from typing import Optional, Union

from cryptography.hazmat.primitives.asymmetric import rsa

from ...config import Config
from ..provider import CryptographyProvider, CryptoProvider
from ..storage.key_store import KeyMaterialStore
from .key_manager import KeyPairManager

logger = logging.getLogger(__name__)


class EncryptionContext:
    """
    Key state for one logged-in user.

    Replaces process-wide key state: callers hold one context per user and
    pass it to the engine. Using the context as a context manager wipes the
    in-memory keys on exit.
    """

    def __init__(
        self,
        user_id: str,
        store: Optional[KeyMaterialStore] = None,
        provider: Optional[CryptoProvider] = None,
        config: Optional[Config] = None
    ):
        if not isinstance(user_id, str) or not user_id:
            raise ValueError("user_id must be a non-empty string")

        self.config = config or Config()
        self.user_id = user_id
        self.provider = provider or CryptographyProvider()
        self.store = store if store is not None else KeyMaterialStore(self.config.key_dir)
        self.key_manager = KeyPairManager(
            store=self.store,
            provider=self.provider,
            key_size=self.config.rsa_key_size,
            passphrase=self.config.passphrase_bytes()
        )

    @property
    def is_initialized(self) -> bool:
        return self.key_manager.is_initialized

    def initialize(self) -> str:
        """Load or generate this user's key pair; returns the public key PEM."""
        return self.key_manager.initialize(self.user_id)

    def export_public_key(self) -> str:
        return self.key_manager.export_public_key()

    def import_public_key(self, serialized: Union[str, bytes]) -> rsa.RSAPublicKey:
        return self.key_manager.import_public_key(serialized)

    @property
    def private_key(self) -> rsa.RSAPrivateKey:
        return self.key_manager.private_key

    def wipe(self, purge_store: bool = False) -> None:
        self.key_manager.wipe(purge_store=purge_store)

    def __enter__(self) -> "EncryptionContext":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()
