"""In-process document store."""

import asyncio
import copy
from collections import defaultdict
from typing import Any, Dict, List, Optional

from gateway.store.base import DocumentStore, DuplicateKeyError, Record, matches


class MemoryStore(DocumentStore):
    """Dict-backed store; a single lock makes every operation atomic."""

    name = "memory"

    def __init__(self):
        self._collections: Dict[str, Dict[str, Record]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    @staticmethod
    def _copy(record: Record) -> Record:
        return Record(id=record.id, version=record.version, data=copy.deepcopy(record.data))

    async def get(self, collection: str, doc_id: str) -> Optional[Record]:
        async with self._lock:
            record = self._collections[collection].get(doc_id)
            return self._copy(record) if record else None

    async def insert(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Record:
        async with self._lock:
            docs = self._collections[collection]
            if doc_id in docs:
                raise DuplicateKeyError(collection, doc_id)
            docs[doc_id] = Record(id=doc_id, version=1, data=copy.deepcopy(data))
            return self._copy(docs[doc_id])

    async def update(
        self, collection: str, doc_id: str, data: Dict[str, Any], expected_version: int
    ) -> Optional[Record]:
        async with self._lock:
            docs = self._collections[collection]
            current = docs.get(doc_id)
            if current is None or current.version != expected_version:
                return None
            docs[doc_id] = Record(id=doc_id, version=current.version + 1, data=copy.deepcopy(data))
            return self._copy(docs[doc_id])

    async def put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Record:
        async with self._lock:
            docs = self._collections[collection]
            current = docs.get(doc_id)
            version = current.version + 1 if current else 1
            docs[doc_id] = Record(id=doc_id, version=version, data=copy.deepcopy(data))
            return self._copy(docs[doc_id])

    async def delete(self, collection: str, doc_id: str, expected_version: Optional[int] = None) -> bool:
        async with self._lock:
            docs = self._collections[collection]
            current = docs.get(doc_id)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                return False
            del docs[doc_id]
            return True

    async def find(self, collection: str, **equals: Any) -> List[Record]:
        async with self._lock:
            return [
                self._copy(record)
                for record in self._collections[collection].values()
                if matches(record.data, equals)
            ]
