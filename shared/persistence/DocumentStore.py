"""Durable catalog of imported documents (SQLite through async SQLAlchemy)."""

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shared.helper.HelperConfig import HelperConfig
from shared.models.document import Document, DocumentInsert, DocumentSummary


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""


class DocumentRow(Base):
    __tablename__ = "documents"

    id = Column(String, primary_key=True)
    external_handle = Column(String, nullable=False)
    filename = Column(String, nullable=False)
    source_path = Column(String)
    title = Column(String)
    document_type = Column(String)
    subjects = Column(JSON, nullable=False, default=list)
    keywords = Column(JSON, nullable=False, default=list)
    summary = Column(Text)
    page_count = Column(Integer)
    content_hash = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_documents_content_hash", "content_hash"),
        Index("idx_documents_filename", "filename"),
    )


class DocumentStore:
    def __init__(self, helper_config: HelperConfig, db_path: Path | None = None):
        self.logging = helper_config.get_logger()
        if db_path is None:
            storage_root = helper_config.get_path_val("STORAGE_PATH", default="./storage")
            db_path = helper_config.get_path_val("DOCUMENT_DB_PATH", default=storage_root / "askdoc.db")
        self.db_path = db_path
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def initialize(self) -> None:
        """Create the engine and the schema if needed."""
        if self._engine is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._engine = create_async_engine(f"sqlite+aiosqlite:///{self.db_path}")
        self._sessions = async_sessionmaker(self._engine, expire_on_commit=False)
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logging.info("[DB] Document store ready at %s", self.db_path)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._sessions = None

    def _session(self) -> AsyncSession:
        if self._sessions is None:
            raise Exception("Document store not initialised. Call initialize() first.")
        return self._sessions()

    ##########################################
    ################ MAPPING #################
    ##########################################

    @staticmethod
    def _to_model(row: DocumentRow) -> Document:
        created_at: datetime = row.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Document(
            id=row.id,
            external_handle=row.external_handle,
            filename=row.filename,
            source_path=row.source_path,
            title=row.title,
            document_type=row.document_type,
            subjects=list(row.subjects or []),
            keywords=list(row.keywords or []),
            summary=row.summary,
            page_count=row.page_count,
            content_hash=row.content_hash,
            created_at=created_at,
        )

    ##########################################
    ################ QUERIES #################
    ##########################################

    async def get_by_hash(self, content_hash: str) -> Document | None:
        async with self._session() as session:
            result = await session.execute(select(DocumentRow).where(DocumentRow.content_hash == content_hash))
            row = result.scalar_one_or_none()
            return self._to_model(row) if row else None

    async def get_by_id(self, document_id: str) -> Document | None:
        async with self._session() as session:
            row = await session.get(DocumentRow, document_id)
            return self._to_model(row) if row else None

    async def get_by_ids(self, document_ids: list[str]) -> list[Document]:
        """Fetch documents, preserving the order of the requested ids. Unknown ids are skipped."""
        if not document_ids:
            return []
        async with self._session() as session:
            result = await session.execute(select(DocumentRow).where(DocumentRow.id.in_(document_ids)))
            by_id = {row.id: row for row in result.scalars()}
        return [self._to_model(by_id[i]) for i in document_ids if i in by_id]

    async def get_all_summaries(self) -> list[DocumentSummary]:
        """Catalog rows for preselection, newest first."""
        async with self._session() as session:
            result = await session.execute(select(DocumentRow).order_by(DocumentRow.created_at.desc()))
            return [
                DocumentSummary(
                    id=row.id,
                    filename=row.filename,
                    title=row.title,
                    document_type=row.document_type,
                    subjects=list(row.subjects or []),
                    keywords=list(row.keywords or []),
                    summary=row.summary,
                )
                for row in result.scalars()
            ]

    async def count_documents(self) -> int:
        async with self._session() as session:
            result = await session.execute(select(func.count()).select_from(DocumentRow))
            return int(result.scalar_one())

    ##########################################
    ################ WRITES ##################
    ##########################################

    async def insert_document(self, document: DocumentInsert) -> Document:
        """Persist a new document.

        The content hash is unique: inserting bytes that are already catalogued
        returns the existing record instead of creating a second one.

        Returns:
            Document: The stored (or already existing) record.
        """
        row = DocumentRow(
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc),
            **document.model_dump(),
        )
        async with self._session() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                self.logging.warning("[DB] Document with hash %s... already exists", document.content_hash[:8])
                existing = await self.get_by_hash(document.content_hash)
                if existing is None:
                    raise
                return existing
        self.logging.debug("[DB] Inserted document %s (%s)", row.id, document.filename)
        return self._to_model(row)

