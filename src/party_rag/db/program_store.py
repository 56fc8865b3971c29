"""
Programme Store

Database access for parties and party programmes: reference-data seeding,
status transitions for ingestion, and status reporting.
"""

from __future__ import annotations

from datetime import datetime
from typing import NamedTuple, List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Embedding, Party, PartyProgram, ProcessingStatus
from ..parties.constants import PARTY_DATA


class ProgramStatus(NamedTuple):
    """Ingestion state of one programme, for progress reporting."""
    party: str
    status: str
    total_pages: Optional[int]
    total_embeddings: int
    last_processed: Optional[datetime]
    processing_error: Optional[str] = None


class ProgramStore:
    """
    Party and programme persistence bound to one async session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # ------------------------------------------------------------------
    # Parties
    # ------------------------------------------------------------------

    async def seed_parties(self) -> int:
        """
        Insert any party from PARTY_DATA that is missing.

        Returns the number of parties inserted.
        """
        result = await self._session.execute(select(Party.short_name))
        existing = {row[0].upper() for row in result.all()}

        inserted = 0
        for data in PARTY_DATA:
            if data["short_name"] in existing:
                continue
            self._session.add(
                Party(
                    name=data["name"],
                    short_name=data["short_name"],
                    color=data["color"],
                )
            )
            inserted += 1

        await self._session.flush()
        return inserted

    async def get_party(self, short_name: str) -> Optional[Party]:
        result = await self._session.execute(
            select(Party).where(func.lower(Party.short_name) == short_name.lower())
        )
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Programmes
    # ------------------------------------------------------------------

    async def get_program_for_party(self, party_id: str) -> Optional[PartyProgram]:
        result = await self._session.execute(
            select(PartyProgram).where(PartyProgram.party_id == party_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def create_program(
        self,
        party: Party,
        file_path: str,
        year: int,
    ) -> PartyProgram:
        program = PartyProgram(
            party_id=party.id,
            title=f"{party.name} Partiprogram {year}",
            year=year,
            file_path=file_path,
            status=ProcessingStatus.PENDING.value,
        )
        self._session.add(program)
        await self._session.flush()
        return program

    async def mark_processing(
        self,
        program_id: str,
        extracted_text: str,
        total_pages: int,
    ) -> None:
        await self._set_status(
            program_id,
            ProcessingStatus.PROCESSING,
            extracted_text=extracted_text,
            total_pages=total_pages,
            processing_error=None,
        )

    async def mark_completed(self, program_id: str) -> None:
        await self._set_status(program_id, ProcessingStatus.COMPLETED, processing_error=None)

    async def mark_failed(self, program_id: str, error: str) -> None:
        await self._set_status(program_id, ProcessingStatus.FAILED, processing_error=error)

    async def _set_status(self, program_id: str, status: ProcessingStatus, **values) -> None:
        await self._session.execute(
            update(PartyProgram)
            .where(PartyProgram.id == program_id)
            .values(status=status.value, updated_at=func.now(), **values)
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def list_program_status(self) -> List[ProgramStatus]:
        """Return one row per programme with its embedding count."""
        embedding_count = (
            select(
                Embedding.party_program_id.label("program_id"),
                func.count(Embedding.id).label("total"),
            )
            .group_by(Embedding.party_program_id)
            .subquery()
        )

        stmt = (
            select(
                Party.name,
                PartyProgram.status,
                PartyProgram.total_pages,
                func.coalesce(embedding_count.c.total, 0).label("total_embeddings"),
                PartyProgram.updated_at,
                PartyProgram.processing_error,
            )
            .join(Party, PartyProgram.party_id == Party.id)
            .outerjoin(embedding_count, embedding_count.c.program_id == PartyProgram.id)
            .order_by(Party.short_name)
        )

        result = await self._session.execute(stmt)

        return [
            ProgramStatus(
                party=row[0],
                status=row[1],
                total_pages=row[2],
                total_embeddings=int(row[3]),
                last_processed=row[4],
                processing_error=row[5],
            )
            for row in result.all()
        ]
