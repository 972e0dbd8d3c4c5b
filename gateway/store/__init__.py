from .base import BoundedStore, DocumentStore, DuplicateKeyError, Record, StoreError
from .memory import MemoryStore

__all__ = [
    "BoundedStore",
    "DocumentStore",
    "DuplicateKeyError",
    "Record",
    "StoreError",
    "MemoryStore",
    "create_store",
]


async def create_store(settings) -> DocumentStore:
    """Build the configured store, wrapped with the store timeout."""
    if settings.STORE_BACKEND == "sql":
        from .sql import SqlStore

        inner = SqlStore(settings.DATABASE_URL, echo=settings.DEBUG)
        await inner.create_all()
    elif settings.STORE_BACKEND == "memory":
        inner = MemoryStore()
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {settings.STORE_BACKEND}")
    return BoundedStore(inner, timeout=settings.STORE_TIMEOUT_SECONDS)
