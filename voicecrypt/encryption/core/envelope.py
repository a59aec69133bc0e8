"""Message envelope model and its JSON wire format."""
import base64
import binascii
import json
import re
import time
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from ...config import (
    AES_KEY_SIZE,
    AUDIO_BYTES_PER_SAMPLE,
    AUDIO_SAMPLE_RATE,
    DEFAULT_AUDIO_FORMAT,
    KEY_WRAP_ALGORITHM,
    PBKDF2_ITERATIONS,
)
from ..exceptions import MalformedEnvelope

ENVELOPE_VERSION = 1

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")


def estimate_duration(audio: bytes) -> float:
    """Approximate duration in seconds, assuming 16-bit mono PCM at 44.1 kHz."""
    return len(audio) / (AUDIO_SAMPLE_RATE * AUDIO_BYTES_PER_SAMPLE)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: Any, name: str) -> bytes:
    if not isinstance(value, str):
        raise MalformedEnvelope(f"Field '{name}' must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEnvelope(f"Field '{name}' is not valid base64", e) from e


@dataclass(frozen=True)
class KeyInfo:
    """Describes the algorithms used to seal an envelope."""
    algorithm: str = "AES-GCM"
    key_length: int = AES_KEY_SIZE * 8
    key_wrap: str = KEY_WRAP_ALGORITHM
    iterations: int = PBKDF2_ITERATIONS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "keyLength": self.key_length,
            "keyWrap": self.key_wrap,
            "iterations": self.iterations,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyInfo":
        return cls(
            algorithm=data["algorithm"],
            key_length=int(data["keyLength"]),
            key_wrap=data.get("keyWrap", KEY_WRAP_ALGORITHM),
            iterations=int(data.get("iterations", PBKDF2_ITERATIONS)),
        )


@dataclass(frozen=True)
class EnvelopeMetadata:
    """Caller-facing metadata; opaque to the encryption engine."""
    duration: float
    format: str = DEFAULT_AUDIO_FORMAT
    key_info: KeyInfo = field(default_factory=KeyInfo)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration": self.duration,
            "format": self.format,
            "keyInfo": self.key_info.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EnvelopeMetadata":
        key_info = data.get("keyInfo")
        return cls(
            duration=float(data["duration"]),
            format=data["format"],
            key_info=KeyInfo.from_dict(key_info) if key_info else KeyInfo(),
        )


def header_associated_data(envelope_id: str, sender_id: str,
                           recipient_ids, created_at: int) -> bytes:
    """Canonical header bytes authenticated alongside the ciphertext."""
    return json.dumps(
        [envelope_id, sender_id, sorted(recipient_ids), created_at],
        separators=(",", ":"),
        ensure_ascii=True
    ).encode("ascii")


@dataclass(frozen=True)
class MessageEnvelope:
    """
    Sealed voice message.

    Invariants (checked on construction):
    - recipient_ids is non-empty and has no duplicates
    - wrapped_keys has exactly one entry per recipient id, and no others
    """
    id: str
    sender_id: str
    recipient_ids: Tuple[str, ...]
    ciphertext: bytes
    iv: bytes
    salt: bytes
    wrapped_keys: Mapping[str, bytes]
    integrity_digest: str
    created_at: int
    metadata: EnvelopeMetadata

    def __post_init__(self):
        if not isinstance(self.id, str) or not self.id:
            raise MalformedEnvelope("Envelope id must be a non-empty string")

        if not isinstance(self.sender_id, str) or not self.sender_id:
            raise MalformedEnvelope("Sender id must be a non-empty string")

        if isinstance(self.recipient_ids, str):
            raise MalformedEnvelope("Recipient ids must be a collection of strings")
        recipient_ids = tuple(self.recipient_ids)
        if not recipient_ids:
            raise MalformedEnvelope("Envelope must have at least one recipient")
        if any(not isinstance(r, str) or not r for r in recipient_ids):
            raise MalformedEnvelope("Recipient ids must be non-empty strings")
        if len(set(recipient_ids)) != len(recipient_ids):
            raise MalformedEnvelope("Recipient ids must be unique")

        wrapped_keys = dict(self.wrapped_keys)
        if set(wrapped_keys) != set(recipient_ids):
            raise MalformedEnvelope("Wrapped keys do not match recipient ids")
        if any(not isinstance(v, bytes) or not v for v in wrapped_keys.values()):
            raise MalformedEnvelope("Wrapped keys must be non-empty bytes")

        for name in ("ciphertext", "iv", "salt"):
            if not isinstance(getattr(self, name), bytes):
                raise MalformedEnvelope(f"Field '{name}' must be bytes")

        if not isinstance(self.integrity_digest, str) or not _DIGEST_RE.match(self.integrity_digest):
            raise MalformedEnvelope("Integrity digest must be a lowercase hex SHA-256")

        if not isinstance(self.metadata, EnvelopeMetadata):
            raise MalformedEnvelope("Metadata must be EnvelopeMetadata")

        object.__setattr__(self, "recipient_ids", recipient_ids)
        object.__setattr__(self, "wrapped_keys", MappingProxyType(wrapped_keys))

    @staticmethod
    def new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def now_ms() -> int:
        return int(time.time() * 1000)

    def associated_data(self) -> bytes:
        return header_associated_data(
            self.id, self.sender_id, self.recipient_ids, self.created_at
        )

    def wrapped_key_for(self, recipient_id: str) -> Optional[bytes]:
        return self.wrapped_keys.get(recipient_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": ENVELOPE_VERSION,
            "id": self.id,
            "senderId": self.sender_id,
            "recipientIds": list(self.recipient_ids),
            "ciphertext": _b64(self.ciphertext),
            "iv": _b64(self.iv),
            "salt": _b64(self.salt),
            "wrappedKeys": {rid: _b64(k) for rid, k in self.wrapped_keys.items()},
            "integrityDigest": self.integrity_digest,
            "createdAt": self.created_at,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MessageEnvelope":
        """
        Create MessageEnvelope from dictionary.

        Raises:
            MalformedEnvelope: If a field is missing, undecodable or the
                envelope violates its invariants
        """
        if not isinstance(data, dict):
            raise MalformedEnvelope(f"Envelope must be an object, got {type(data).__name__}")

        version = data.get("version", ENVELOPE_VERSION)
        if version != ENVELOPE_VERSION:
            raise MalformedEnvelope(f"Unsupported envelope version: {version}")

        try:
            wrapped = data["wrappedKeys"]
            if not isinstance(wrapped, dict):
                raise MalformedEnvelope("Field 'wrappedKeys' must be an object")
            recipient_ids = data["recipientIds"]
            if not isinstance(recipient_ids, list):
                raise MalformedEnvelope("Field 'recipientIds' must be a list")

            return cls(
                id=data["id"],
                sender_id=data["senderId"],
                recipient_ids=tuple(recipient_ids),
                ciphertext=_unb64(data["ciphertext"], "ciphertext"),
                iv=_unb64(data["iv"], "iv"),
                salt=_unb64(data["salt"], "salt"),
                wrapped_keys={
                    rid: _unb64(k, f"wrappedKeys.{rid}") for rid, k in wrapped.items()
                },
                integrity_digest=data["integrityDigest"],
                created_at=int(data["createdAt"]),
                metadata=EnvelopeMetadata.from_dict(data["metadata"]),
            )
        except MalformedEnvelope:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedEnvelope(f"Invalid envelope: {type(e).__name__}: {e}", e) from e

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json(cls, json_str: str) -> "MessageEnvelope":
        """Deserialize from JSON string."""
        try:
            data = json.loads(json_str)
        except (TypeError, ValueError) as e:
            raise MalformedEnvelope("Envelope is not valid JSON", e) from e
        return cls.from_dict(data)
