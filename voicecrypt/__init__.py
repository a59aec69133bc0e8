"""End-to-end encryption for voice messages."""

__version__ = "0.1.0"
