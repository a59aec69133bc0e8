"""Per-recipient key wrapping."""

from .rsa_wrapper import RecipientKeyWrapper

__all__ = ['RecipientKeyWrapper']
