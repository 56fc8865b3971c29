"""
SQLAlchemy Models

Defines the database schema for:
- Parties (static reference data)
- Party programmes (one source PDF each, with processing status)
- Embeddings (chunk text + pgvector vector)
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy import (
    Column,
    String,
    Integer,
    Text,
    DateTime,
    ForeignKey,
    Index,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from pgvector.sqlalchemy import Vector

from ..config import settings


def _new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class ProcessingStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------
# Party Model
# ---------------------------------------------------------------------

class Party(Base):
    """
    A political party. Seeded once from ``parties.constants.PARTY_DATA``.
    """
    __tablename__ = "parties"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    short_name: Mapped[str] = mapped_column(String(16), nullable=False, unique=True)
    color: Mapped[str] = mapped_column(String(16), nullable=False)
    logo_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    programs: Mapped[List["PartyProgram"]] = relationship(
        "PartyProgram",
        back_populates="party",
        cascade="all, delete-orphan",
    )


# ---------------------------------------------------------------------
# Party Program Model
# ---------------------------------------------------------------------

class PartyProgram(Base):
    """
    One ingested source document.

    ``status`` moves pending -> processing -> completed | failed.
    """
    __tablename__ = "party_programs"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    party_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("parties.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    pdf_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extracted_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total_pages: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        "is_processed",
        String(16),
        nullable=False,
        default=ProcessingStatus.PENDING.value,
        server_default=ProcessingStatus.PENDING.value,
    )
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    party: Mapped["Party"] = relationship("Party", back_populates="programs")

    __table_args__ = (
        Index("idx_program_party", "party_id"),
    )


# ---------------------------------------------------------------------
# Embedding Model
# ---------------------------------------------------------------------

class Embedding(Base):
    """
    One embedded chunk of a party programme.

    The vector dimension is fixed by the configured embedding model and
    must never be mixed with another provider's dimensionality.
    """
    __tablename__ = "embeddings"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=_new_id)
    party_program_id: Mapped[str] = mapped_column(
        Text,
        ForeignKey("party_programs.id", ondelete="CASCADE"),
        nullable=False,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    chapter_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    page_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    embedding = Column(Vector(settings.embedding_dimensions), nullable=False)

    __table_args__ = (
        Index(
            "embedding_index",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
        Index("party_program_index", "party_program_id"),
        Index("page_number_index", "page_number"),
    )
