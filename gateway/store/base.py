"""Document store interface.

Documents are JSON objects addressed by ``(collection, id)``. Each carries an
integer ``version`` that starts at 1 and increases on every write, which is
what ``update`` compares against. ``insert`` is the unique conditional insert:
it fails if the key already exists.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from gateway.errors import ServiceUnavailableError

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Backend failure (connection lost, driver error)."""


class DuplicateKeyError(StoreError):
    """Raised by ``insert`` when the key already exists."""

    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} already exists")


@dataclass
class Record:
    id: str
    version: int
    data: Dict[str, Any]


def matches(data: Dict[str, Any], equals: Dict[str, Any]) -> bool:
    return all(data.get(key) == value for key, value in equals.items())


class DocumentStore(ABC):
    """Async persistence collaborator."""

    name: str = "store"

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Record]:
        ...

    @abstractmethod
    async def insert(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Record:
        """Insert a new document; raise ``DuplicateKeyError`` if it exists."""

    @abstractmethod
    async def update(
        self, collection: str, doc_id: str, data: Dict[str, Any], expected_version: int
    ) -> Optional[Record]:
        """Replace the document only if its version is still ``expected_version``.

        Returns the new record, or ``None`` when the document is missing or
        was changed concurrently.
        """

    @abstractmethod
    async def put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Record:
        """Unconditional upsert."""

    @abstractmethod
    async def delete(self, collection: str, doc_id: str, expected_version: Optional[int] = None) -> bool:
        ...

    @abstractmethod
    async def find(self, collection: str, **equals: Any) -> List[Record]:
        """All documents whose top-level fields equal ``equals``."""

    async def count(self, collection: str, **equals: Any) -> int:
        return len(await self.find(collection, **equals))

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class BoundedStore(DocumentStore):
    """Wraps a store so every call is time-bounded.

    Timeouts and backend failures surface as ``ServiceUnavailableError``;
    ``DuplicateKeyError`` passes through for callers to handle.
    """

    def __init__(self, inner: DocumentStore, timeout: float):
        self.inner = inner
        self.timeout = timeout
        self.name = inner.name

    async def _call(self, operation: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except DuplicateKeyError:
            raise
        except asyncio.TimeoutError:
            logger.error(f"Store {operation} timed out after {self.timeout}s")
            raise ServiceUnavailableError(f"Store {operation} timed out")
        except StoreError as e:
            logger.error(f"Store {operation} failed: {e}")
            raise ServiceUnavailableError(f"Store {operation} failed")

    async def get(self, collection, doc_id):
        return await self._call("get", self.inner.get(collection, doc_id))

    async def insert(self, collection, doc_id, data):
        return await self._call("insert", self.inner.insert(collection, doc_id, data))

    async def update(self, collection, doc_id, data, expected_version):
        return await self._call("update", self.inner.update(collection, doc_id, data, expected_version))

    async def put(self, collection, doc_id, data):
        return await self._call("put", self.inner.put(collection, doc_id, data))

    async def delete(self, collection, doc_id, expected_version=None):
        return await self._call("delete", self.inner.delete(collection, doc_id, expected_version))

    async def find(self, collection, **equals):
        return await self._call("find", self.inner.find(collection, **equals))

    async def count(self, collection, **equals):
        return await self._call("count", self.inner.count(collection, **equals))

    async def ping(self) -> bool:
        try:
            return await asyncio.wait_for(self.inner.ping(), timeout=self.timeout)
        except (asyncio.TimeoutError, StoreError) as e:
            logger.warning(f"Store ping failed: {e}")
            return False

    async def close(self) -> None:
        await self.inner.close()
