"""
Target Embeddings Repository

Database operations for the targets table using SQLAlchemy async, plus the
persistence collaborator the matching service writes through.
"""
import uuid
from datetime import datetime
from typing import List, Sequence
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import logging

import numpy as np

from owlface.exceptions import PersistenceError
from owlface.models import TargetDB
from owlface.vector_store import EmbeddingRecord

logger = logging.getLogger(__name__)


class TargetRepository:
    """
    Repository class for targets database operations.

    All methods are async and require an AsyncSession.
    """

    @staticmethod
    async def create(
        session: AsyncSession,
        identifier: uuid.UUID,
        origin: str,
        embedding: Sequence[float]
    ) -> TargetDB:
        """
        Create a new target row and commit it.

        Args:
            session: Database session
            identifier: Target UUID
            origin: Provenance tag
            embedding: Face embedding values

        Returns:
            Created TargetDB instance
        """
        db_record = TargetDB(
            uuid=identifier,
            origin=origin,
            embeddings=[float(value) for value in embedding],
            created_at=datetime.utcnow()
        )

        session.add(db_record)
        await session.commit()

        logger.info(f"Stored embedding for target {identifier} in the database")
        return db_record

    @staticmethod
    async def get_all(session: AsyncSession) -> List[TargetDB]:
        """Get every target row in insertion order."""
        result = await session.execute(select(TargetDB).order_by(TargetDB.id))
        return list(result.scalars().all())

    @staticmethod
    async def count(session: AsyncSession) -> int:
        """Get total count of target rows."""
        result = await session.execute(select(func.count(TargetDB.id)))
        return result.scalar() or 0

    @staticmethod
    def db_to_record(db_record: TargetDB) -> EmbeddingRecord:
        """Convert database model to an in-memory record."""
        return EmbeddingRecord(
            identifier=db_record.uuid,
            origin=db_record.origin or "",
            embedding=np.asarray(db_record.embeddings, dtype=np.float32)
        )


class DatabaseRecordStore:
    """
    Durable storage for embedding records.

    Opens a session per call and reports every database failure as
    PersistenceError.
    """

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def insert_record(
        self,
        identifier: uuid.UUID,
        origin: str,
        embedding: Sequence[float]
    ) -> None:
        try:
            async with self._session_maker() as session:
                await TargetRepository.create(session, identifier, origin, embedding)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to store embedding for {identifier} in database: {e}")
            raise PersistenceError(f"Failed to store embedding: {e}") from e

    async def load_all_records(self) -> List[EmbeddingRecord]:
        try:
            async with self._session_maker() as session:
                rows = await TargetRepository.get_all(session)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to load embeddings from database: {e}")
            raise PersistenceError(f"Failed to load embeddings: {e}") from e

        return [TargetRepository.db_to_record(row) for row in rows]

    async def count(self) -> int:
        try:
            async with self._session_maker() as session:
                return await TargetRepository.count(session)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Failed to count embeddings: {e}") from e
