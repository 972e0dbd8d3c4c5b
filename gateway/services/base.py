"""Helpers shared by the resource services."""

import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from uuid import uuid4

from gateway.errors import AuthorizationError, NotFoundError
from gateway.store import DocumentStore, Record


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def format_price(amount: float) -> str:
    return f"₹{int(round(amount)):,}"


def parse_price(text: str) -> int:
    digits = re.sub(r"[^\d]", "", text or "")
    return int(digits) if digits else 0


async def load(store: DocumentStore, collection: str, doc_id: str, resource: str) -> Record:
    record = await store.get(collection, doc_id)
    if record is None:
        raise NotFoundError(resource, doc_id)
    return record


async def load_owned(
    store: DocumentStore, collection: str, doc_id: str, user_id: str, resource: str
) -> Record:
    record = await load(store, collection, doc_id, resource)
    if record.data.get("user_id") != user_id:
        raise AuthorizationError(f"{resource} {doc_id} belongs to another user")
    return record


async def mutate(
    store: DocumentStore,
    collection: str,
    doc_id: str,
    change: Callable[[Dict[str, Any]], Optional[Dict[str, Any]]],
    resource: str,
) -> Record:
    """Apply ``change`` with compare-and-set, retrying on concurrent writes.

    ``change`` receives a copy of the current data and returns the new data,
    or ``None`` to leave the document untouched. It may raise to abort.
    """
    while True:
        record = await load(store, collection, doc_id, resource)
        data = change(dict(record.data))
        if data is None:
            return record
        updated = await store.update(collection, doc_id, data, record.version)
        if updated is not None:
            return updated
