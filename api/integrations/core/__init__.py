"""Core integration infrastructure: HTTP clients, credential encryption, OAuth, types."""

from .tokens import CredentialStore
from .types import (
    IntegrationProvider,
    IntegrationStatus,
    MemoryRecord,
    MemoryType,
    SyncResult,
)

__all__ = [
    "CredentialStore",
    "IntegrationProvider",
    "IntegrationStatus",
    "MemoryRecord",
    "MemoryType",
    "SyncResult",
]
