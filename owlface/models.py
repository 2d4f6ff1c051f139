"""
SQLAlchemy ORM Models for the Face Embedding Database

Defines the targets table model matching the schema:
CREATE TABLE targets (
    id BIGSERIAL PRIMARY KEY,
    uuid UUID NOT NULL,
    origin VARCHAR(64) NOT NULL DEFAULT 'unknown',
    embeddings REAL[] NOT NULL,
    created_at TIMESTAMP DEFAULT NOW()
);

uuid is deliberately not unique: a target may be registered several times.
"""
from datetime import datetime
from sqlalchemy import BigInteger, Column, DateTime, Identity, String
from sqlalchemy.dialects.postgresql import ARRAY, REAL, UUID

from owlface.config import MAX_ORIGIN_LENGTH
from owlface.database import Base


class TargetDB(Base):
    """
    SQLAlchemy model for targets table.

    One row per registered face embedding; id keeps insertion order.
    """
    __tablename__ = "targets"

    id = Column(BigInteger, Identity(), primary_key=True)
    uuid = Column(UUID(as_uuid=True), nullable=False, index=True)
    origin = Column(
        String(MAX_ORIGIN_LENGTH),
        nullable=False,
        default="unknown",
        server_default="unknown"
    )
    embeddings = Column(ARRAY(REAL), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<TargetDB(id={self.id}, uuid={self.uuid}, origin='{self.origin}')>"
