"""Encryption service clients: HTTP endpoint and in-process mock."""

from .client import HttpEncryptionClient
from .mock import MockEncryptionClient

__all__ = ["HttpEncryptionClient", "MockEncryptionClient"]
