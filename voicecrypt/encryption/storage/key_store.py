"""Local persistence of per-user key pairs with secure wipe."""
import hashlib
import json
import logging
import os
import secrets
import stat
import threading
import time
import weakref
from pathlib import Path
from typing import Dict, Optional

from ...config import KEY_WRAP_ALGORITHM
from ..exceptions import KeyStoreUnavailable

logger = logging.getLogger(__name__)


class StoredKeyMaterial:
    """A persisted key pair record (private half in serialized form only)."""

    def __init__(self, user_id: str, public_key: str, private_key: bytes,
                 key_size: int, encrypted: bool = False,
                 algorithm: str = KEY_WRAP_ALGORITHM,
                 created_at: Optional[int] = None):
        self.user_id = user_id
        self.public_key = public_key
        self.private_key = private_key
        self.key_size = key_size
        self.encrypted = encrypted
        self.algorithm = algorithm
        self.created_at = created_at if created_at is not None else int(time.time() * 1000)

    def to_dict(self) -> Dict:
        return {
            "user_id": self.user_id,
            "algorithm": self.algorithm,
            "key_size": self.key_size,
            "public_key": self.public_key,
            "private_key": self.private_key.decode("ascii"),
            "encrypted": self.encrypted,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "StoredKeyMaterial":
        return cls(
            user_id=data["user_id"],
            public_key=data["public_key"],
            private_key=data["private_key"].encode("ascii"),
            key_size=int(data["key_size"]),
            encrypted=bool(data.get("encrypted", False)),
            algorithm=data.get("algorithm", KEY_WRAP_ALGORITHM),
            created_at=data.get("created_at"),
        )

    def __repr__(self) -> str:
        # Never include key material
        return (
            f"StoredKeyMaterial(user_id={self.user_id!r}, "
            f"algorithm={self.algorithm!r}, key_size={self.key_size})"
        )


class KeyMaterialStore:
    """
    File-backed key pair store, one JSON record per user.

    Record files are named after the SHA-256 of the user id and written with
    owner-only permissions. Creation is atomic and create-if-absent, so two
    processes racing to persist a first key pair for the same user agree on
    a single winner.
    """

    RECORD_SUFFIX = ".key.json"

    _locks_guard = threading.Lock()
    # Entries vanish once no caller holds the lock
    _user_locks = weakref.WeakValueDictionary()

    def __init__(self, key_dir: Path):
        self.key_dir = Path(key_dir)
        self._opened = False

    def open(self) -> None:
        """Create the key directory if needed.

        A directory created here is restricted to its owner. An existing
        directory keeps its permissions; a warning is logged if group or
        other users can access it.

        Raises:
            KeyStoreUnavailable: If the directory cannot be created or used
        """
        if self._opened:
            return
        try:
            if self.key_dir.is_dir():
                mode = stat.S_IMODE(self.key_dir.stat().st_mode)
                if mode & 0o077:
                    logger.warning(
                        f"Key directory {self.key_dir} is accessible to other users "
                        f"(mode {mode:o})"
                    )
            else:
                self.key_dir.mkdir(parents=True, exist_ok=True)
                os.chmod(self.key_dir, 0o700)
            if not os.access(self.key_dir, os.R_OK | os.W_OK | os.X_OK):
                raise PermissionError(f"Key directory is not accessible: {self.key_dir}")
        except OSError as e:
            raise KeyStoreUnavailable(
                f"Cannot open key store at {self.key_dir}: {e}"
            ) from e
        self._opened = True

    def user_lock(self, user_id: str) -> threading.Lock:
        """Per-user lock serializing initialization within this process."""
        name = self._record_name(user_id)
        with KeyMaterialStore._locks_guard:
            lock = KeyMaterialStore._user_locks.get(name)
            if lock is None:
                lock = threading.Lock()
                KeyMaterialStore._user_locks[name] = lock
            return lock

    @staticmethod
    def _record_name(user_id: str) -> str:
        return hashlib.sha256(user_id.encode("utf-8")).hexdigest()

    def _record_path(self, user_id: str) -> Path:
        return self.key_dir / f"{self._record_name(user_id)}{self.RECORD_SUFFIX}"

    def load(self, user_id: str) -> Optional[StoredKeyMaterial]:
        """
        Load the stored key pair for a user.

        Returns:
            Stored material, or None if the user has no record

        Raises:
            KeyStoreUnavailable: If the record exists but cannot be read
        """
        self.open()
        path = self._record_path(user_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise KeyStoreUnavailable(f"Cannot read key record for user {user_id}: {e}") from e

        try:
            material = StoredKeyMaterial.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise KeyStoreUnavailable(f"Corrupt key record for user {user_id}") from e

        if material.user_id != user_id:
            raise KeyStoreUnavailable(f"Key record does not belong to user {user_id}")

        logger.debug(f"Loaded key record for user {user_id}")
        return material

    def save_if_absent(self, material: StoredKeyMaterial) -> StoredKeyMaterial:
        """
        Persist material unless a record already exists.

        Returns:
            The record that is stored after the call (the existing one if
            another writer got there first)

        Raises:
            KeyStoreUnavailable: If the record cannot be written
        """
        self.open()
        path = self._record_path(material.user_id)
        tmp_path = path.with_name(f"{path.name}.{secrets.token_hex(8)}.tmp")
        payload = json.dumps(material.to_dict(), indent=2).encode("utf-8")

        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())

            try:
                # Atomic create-if-absent
                os.link(tmp_path, path)
            except FileExistsError:
                logger.info(f"Key record for user {material.user_id} already exists, keeping it")
                existing = self.load(material.user_id)
                if existing is None:
                    raise KeyStoreUnavailable(
                        f"Key record for user {material.user_id} vanished during save"
                    )
                return existing
        except OSError as e:
            raise KeyStoreUnavailable(
                f"Cannot write key record for user {material.user_id}: {e}"
            ) from e
        finally:
            try:
                tmp_path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove temporary key file {tmp_path}: {e}")

        logger.info(f"Stored key record for user {material.user_id}")
        return material

    def purge(self, user_id: str) -> bool:
        """
        Securely wipe a user's record: overwrite with random bytes, then
        zeros, then unlink.

        Returns:
            True if a record existed
        """
        self.open()
        path = self._record_path(user_id)
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return False

        try:
            with open(path, "r+b") as f:
                for pattern in (secrets.token_bytes(size), bytes(size)):
                    f.seek(0)
                    f.write(pattern)
                    f.flush()
                    os.fsync(f.fileno())
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise KeyStoreUnavailable(f"Cannot purge key record for user {user_id}: {e}") from e

        logger.info(f"Purged key record for user {user_id}")
        return True


class InMemoryKeyMaterialStore(KeyMaterialStore):
    """Key store kept in process memory (ephemeral sessions and tests)."""

    def __init__(self):
        super().__init__(Path("."))
        self._records: Dict[str, Dict] = {}
        self._records_lock = threading.Lock()

    def open(self) -> None:
        self._opened = True

    def load(self, user_id: str) -> Optional[StoredKeyMaterial]:
        with self._records_lock:
            data = self._records.get(user_id)
        if data is None:
            return None
        return StoredKeyMaterial.from_dict(data)

    def save_if_absent(self, material: StoredKeyMaterial) -> StoredKeyMaterial:
        with self._records_lock:
            existing = self._records.get(material.user_id)
            if existing is None:
                self._records[material.user_id] = material.to_dict()
                return material
        return StoredKeyMaterial.from_dict(existing)

    def purge(self, user_id: str) -> bool:
        with self._records_lock:
            return self._records.pop(user_id, None) is not None
