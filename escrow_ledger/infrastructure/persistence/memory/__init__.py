"""In-memory persistence adapter."""

from .store import InMemoryEscrowStore

__all__ = ["InMemoryEscrowStore"]
