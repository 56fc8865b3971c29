"""
Database Package

Provides SQLAlchemy async session management and model definitions
for PostgreSQL with pgvector.
"""

from .session import init_db, async_engine, AsyncSessionLocal
from .models import Base, Party, PartyProgram, Embedding, ProcessingStatus
from .vector_store import VectorStore, vector_store_scope
from .program_store import ProgramStore, ProgramStatus

__all__ = [
    "init_db",
    "async_engine",
    "AsyncSessionLocal",
    "Base",
    "Party",
    "PartyProgram",
    "Embedding",
    "ProcessingStatus",
    "VectorStore",
    "vector_store_scope",
    "ProgramStore",
    "ProgramStatus",
]
