"""Local key pair persistence."""

from .key_store import InMemoryKeyMaterialStore, KeyMaterialStore, StoredKeyMaterial

__all__ = ['InMemoryKeyMaterialStore', 'KeyMaterialStore', 'StoredKeyMaterial']
