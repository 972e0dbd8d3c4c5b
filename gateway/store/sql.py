"""SQLAlchemy-backed document store.

All collections share one ``documents`` table keyed by ``(collection, id)``.
The ``version`` column backs compare-and-set updates and the primary key
backs the unique insert.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Integer, String, delete, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from gateway.store.base import DocumentStore, DuplicateKeyError, Record, StoreError, matches

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class DocumentRow(Base):
    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _record(row: DocumentRow) -> Record:
    return Record(id=row.id, version=row.version, data=row.data)


class SqlStore(DocumentStore):
    name = "sql"

    def __init__(self, database_url: str, echo: bool = False):
        self.engine: AsyncEngine = create_async_engine(database_url, echo=echo)
        self.session_maker = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_all(self) -> None:
        """Create the documents table if it does not exist."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def get(self, collection: str, doc_id: str) -> Optional[Record]:
        try:
            async with self.session_maker() as session:
                row = await session.get(DocumentRow, (collection, doc_id))
                return _record(row) if row else None
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    async def insert(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Record:
        row = DocumentRow(collection=collection, id=doc_id, version=1, data=data, updated_at=_now())
        try:
            async with self.session_maker() as session:
                session.add(row)
                await session.commit()
        except IntegrityError as e:
            raise DuplicateKeyError(collection, doc_id) from e
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        return Record(id=doc_id, version=1, data=copy.deepcopy(data))

    async def update(
        self, collection: str, doc_id: str, data: Dict[str, Any], expected_version: int
    ) -> Optional[Record]:
        stmt = (
            update(DocumentRow)
            .where(
                DocumentRow.collection == collection,
                DocumentRow.id == doc_id,
                DocumentRow.version == expected_version,
            )
            .values(data=data, version=expected_version + 1, updated_at=_now())
        )
        try:
            async with self.session_maker() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        if result.rowcount != 1:
            return None
        return Record(id=doc_id, version=expected_version + 1, data=copy.deepcopy(data))

    async def put(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Record:
        while True:
            current = await self.get(collection, doc_id)
            if current is None:
                try:
                    return await self.insert(collection, doc_id, data)
                except DuplicateKeyError:
                    continue
            record = await self.update(collection, doc_id, data, current.version)
            if record is not None:
                return record

    async def delete(self, collection: str, doc_id: str, expected_version: Optional[int] = None) -> bool:
        stmt = delete(DocumentRow).where(DocumentRow.collection == collection, DocumentRow.id == doc_id)
        if expected_version is not None:
            stmt = stmt.where(DocumentRow.version == expected_version)
        try:
            async with self.session_maker() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        return result.rowcount == 1

    async def find(self, collection: str, **equals: Any) -> List[Record]:
        # Field filtering happens in Python; JSON operators differ per dialect.
        stmt = select(DocumentRow).where(DocumentRow.collection == collection)
        try:
            async with self.session_maker() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        return [_record(row) for row in rows if matches(row.data, equals)]

    async def ping(self) -> bool:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.warning(f"Database connection check failed: {e}")
            return False

    async def close(self) -> None:
        await self.engine.dispose()
