"""
Party Programme Ingestion

Turns a directory of ``<PARTY>.pdf`` files into stored embeddings.

Per document the state machine is pending -> processing -> completed |
failed. A completed programme is skipped unless ``force`` is set. Any
failing step marks the programme failed with the error message and raises
``IngestionStepError``; the batch driver records the failure and continues
with the next file. Documents are processed sequentially.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import AsyncIterator, Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..core.errors import IngestionStepError
from ..db.models import ProcessingStatus
from ..db.program_store import ProgramStatus, ProgramStore
from ..db.session import AsyncSessionLocal
from ..db.vector_store import VectorStore
from ..embeddings.embedder import Embedder
from .pdf_processor import Chunk, ProcessedPDF, chunk_pdf_content, process_pdf

logger = logging.getLogger("rag.ingestion")

PROGRESS_STARTED = 10
PROGRESS_FILE_VALIDATED = 20
PROGRESS_PROGRAM_READY = 30
PROGRESS_PDF_PROCESSED = 50
PROGRESS_PROGRAM_STORED = 60
PROGRESS_CHUNKS_CREATED = 70
PROGRESS_EMBEDDINGS_GENERATED = 85
PROGRESS_EMBEDDINGS_STORED = 95
PROGRESS_COMPLETED = 100


# ---------------------------------------------------------------------
# Progress Types
# ---------------------------------------------------------------------

@dataclass
class IngestionProgress:
    party_short_name: str
    status: str = ProcessingStatus.PENDING.value
    progress: int = 0
    message: str = "Waiting to process"
    error: Optional[str] = None


@dataclass
class IngestionFailure:
    party: str
    error: str
    step: Optional[str] = None


@dataclass
class IngestionSummary:
    success: bool = True
    total_processed: int = 0
    skipped: int = 0
    failed: List[IngestionFailure] = field(default_factory=list)
    progress: List[IngestionProgress] = field(default_factory=list)


ProgressCallback = Callable[[List[IngestionProgress]], None]
StepCallback = Callable[[int], None]


def get_progress_message(progress: int) -> str:
    if progress < 20:
        return "Preparing..."
    if progress < 40:
        return "Processing PDF..."
    if progress < 70:
        return "Chunking content..."
    if progress < 90:
        return "Generating embeddings..."
    if progress < 100:
        return "Saving to database..."
    return "Completed"


# ---------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------

@dataclass
class IngestionUnit:
    """Programme and vector stores sharing one session."""
    session: AsyncSession
    programs: ProgramStore
    vectors: VectorStore

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


@asynccontextmanager
async def ingestion_scope() -> AsyncIterator[IngestionUnit]:
    async with AsyncSessionLocal() as session:
        yield IngestionUnit(session, ProgramStore(session), VectorStore(session))


UnitFactory = Callable[[], AbstractAsyncContextManager[IngestionUnit]]


# ---------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------

class PartyIngestionPipeline:
    """
    Sequential batch ingestion of party programme PDFs.
    """

    def __init__(
        self,
        embedder: Embedder,
        unit_factory: UnitFactory = ingestion_scope,
        year: Optional[int] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        pdf_reader: Callable[[str], ProcessedPDF] = process_pdf,
    ) -> None:
        self.embedder = embedder
        self._unit_factory = unit_factory
        self.year = year or settings.program_year
        self.chunk_size = chunk_size or settings.chunk_size
        self.chunk_overlap = chunk_overlap if chunk_overlap is not None else settings.chunk_overlap
        self._read_pdf = pdf_reader

    async def ingest_all(
        self,
        source_directory: Optional[str | Path] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestionSummary:
        """
        Ingest every PDF in ``source_directory``; the file stem is the party code.

        Never raises for a single document's failure. Raises only if the
        directory cannot be listed or parties cannot be seeded.
        """
        directory = Path(source_directory or settings.programs_directory)
        summary = IngestionSummary()

        async with self._unit_factory() as unit:
            inserted = await unit.programs.seed_parties()
            await unit.commit()
        if inserted:
            logger.info("Seeded %d parties", inserted)

        pdf_files = sorted(
            p for p in directory.iterdir() if p.is_file() and p.suffix.lower() == ".pdf"
        )
        summary.progress = [IngestionProgress(party_short_name=p.stem.lower()) for p in pdf_files]

        def report() -> None:
            if on_progress is not None:
                on_progress([replace(p) for p in summary.progress])

        for entry, path in zip(summary.progress, pdf_files):
            entry.status = ProcessingStatus.PROCESSING.value
            entry.message = "Processing PDF..."
            report()

            def on_step(percent: int, entry: IngestionProgress = entry) -> None:
                entry.progress = percent
                entry.message = get_progress_message(percent)
                report()

            try:
                processed = await self.ingest_program(entry.party_short_name, path, on_step)
            except IngestionStepError as exc:
                summary.success = False
                summary.failed.append(IngestionFailure(entry.party_short_name, str(exc), exc.step))
                entry.status = ProcessingStatus.FAILED.value
                entry.error = str(exc)
                entry.message = "Processing failed"
                logger.error("Ingestion failed for %s: %s", entry.party_short_name, exc)
            else:
                entry.status = ProcessingStatus.COMPLETED.value
                entry.progress = PROGRESS_COMPLETED
                if processed:
                    summary.total_processed += 1
                    entry.message = "Successfully processed"
                else:
                    summary.skipped += 1
                    entry.message = "Already processed"

            report()

        return summary

    async def ingest_program(
        self,
        party_short_name: str,
        file_path: str | Path,
        on_step: Optional[StepCallback] = None,
        force: bool = False,
    ) -> bool:
        """
        Ingest one programme.

        Returns
        -------
        bool
            True if the programme was (re)processed, False if it was
            already completed and skipped.

        Raises
        ------
        IngestionStepError
            Tagged with the failing step. The programme is marked failed.
        """
        def step(percent: int) -> None:
            if on_step is not None:
                on_step(percent)

        step(PROGRESS_STARTED)
        file_path = str(file_path)

        async with self._unit_factory() as unit:
            try:
                party = await unit.programs.get_party(party_short_name)
                if party is None:
                    raise IngestionStepError(
                        "lookup", f"Party not found: {party_short_name}", document=file_path
                    )
                step(PROGRESS_FILE_VALIDATED)

                program = await unit.programs.get_program_for_party(party.id)
                if (
                    program is not None
                    and program.status == ProcessingStatus.COMPLETED.value
                    and not force
                ):
                    logger.info("Programme for %s already completed, skipping", party_short_name)
                    return False

                if program is None:
                    program = await unit.programs.create_program(party, file_path, self.year)
                    await unit.commit()
            except SQLAlchemyError as exc:
                raise IngestionStepError("lookup", str(exc), document=file_path) from exc
            step(PROGRESS_PROGRAM_READY)

            current = "extract"
            try:
                processed = await asyncio.to_thread(self._read_pdf, file_path)
                step(PROGRESS_PDF_PROCESSED)

                current = "persist"
                await unit.programs.mark_processing(program.id, processed.text, processed.total_pages)
                await unit.commit()
                step(PROGRESS_PROGRAM_STORED)

                current = "chunk"
                chunks = self._chunk(processed)
                step(PROGRESS_CHUNKS_CREATED)

                current = "embed"
                vectors = await self.embedder.embed([c.content for c in chunks])
                step(PROGRESS_EMBEDDINGS_GENERATED)

                current = "persist"
                await unit.vectors.delete_program_embeddings(program.id)
                await unit.vectors.add_program_embeddings(
                    program.id,
                    [c.content for c in chunks],
                    [c.chapter_title for c in chunks],
                    [c.page_number for c in chunks],
                    vectors,
                )
                stored = await unit.vectors.count_program_embeddings(program.id)
                if stored != len(chunks):
                    raise IngestionStepError(
                        "persist",
                        f"Stored {stored} of {len(chunks)} embeddings",
                        document=file_path,
                    )
                step(PROGRESS_EMBEDDINGS_STORED)

                await unit.programs.mark_completed(program.id)
                await unit.commit()
                step(PROGRESS_COMPLETED)
            except IngestionStepError as exc:
                await self._record_failure(unit, program.id, str(exc))
                raise
            except Exception as exc:
                error = IngestionStepError(
                    current, str(exc) or type(exc).__name__, document=file_path
                )
                await self._record_failure(unit, program.id, str(error))
                raise error from exc

            logger.info(
                "Ingested %s: %d pages, %d chunks",
                party_short_name,
                processed.total_pages,
                len(chunks),
            )
            return True

    async def get_ingestion_status(self) -> List[ProgramStatus]:
        async with self._unit_factory() as unit:
            return await unit.programs.list_program_status()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _chunk(self, processed: ProcessedPDF) -> List[Chunk]:
        chunks = chunk_pdf_content(processed, self.chunk_size, self.chunk_overlap)
        if not chunks:
            raise IngestionStepError("chunk", "No extractable text in document")
        return chunks

    async def _record_failure(self, unit: IngestionUnit, program_id: str, error: str) -> None:
        try:
            await unit.rollback()
            await unit.programs.mark_failed(program_id, error)
            await unit.commit()
        except SQLAlchemyError:
            logger.exception("Could not record failure for programme %s", program_id)
