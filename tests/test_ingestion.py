"""
Ingestion Pipeline Tests

The database is replaced by small in-memory programme and vector stores;
PDF reading and embedding are stubbed. These tests cover the per-document
state machine, idempotence and failure isolation across a batch.
"""

import contextlib
import uuid
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from party_rag.core.errors import IngestionStepError, ProviderError
from party_rag.db.program_store import ProgramStatus
from party_rag.embeddings.embedder import Embedder
from party_rag.ingestion.pdf_processor import ProcessedPage, ProcessedPDF
from party_rag.ingestion.pipeline import PartyIngestionPipeline, get_progress_message
from party_rag.parties.constants import PARTY_DATA


# ---------------------------------------------------------------------
# In-memory stores
# ---------------------------------------------------------------------

class FakeDatabase:
    def __init__(self):
        self.parties = {}
        self.programs = {}
        self.embeddings = {}
        self.commits = 0
        self.rollbacks = 0
        self.lost_rows = 0


class FakeProgramStore:
    def __init__(self, db):
        self.db = db

    async def seed_parties(self):
        inserted = 0
        for data in PARTY_DATA:
            if data["short_name"] not in self.db.parties:
                self.db.parties[data["short_name"]] = SimpleNamespace(
                    id=str(uuid.uuid4()), name=data["name"], short_name=data["short_name"]
                )
                inserted += 1
        return inserted

    async def get_party(self, short_name):
        return self.db.parties.get(short_name.upper())

    async def get_program_for_party(self, party_id):
        return next((p for p in self.db.programs.values() if p.party_id == party_id), None)

    async def create_program(self, party, file_path, year):
        program = SimpleNamespace(
            id=str(uuid.uuid4()),
            party_id=party.id,
            party_name=party.name,
            title=f"{party.name} Partiprogram {year}",
            file_path=file_path,
            status="pending",
            processing_error=None,
            total_pages=None,
        )
        self.db.programs[program.id] = program
        return program

    async def mark_processing(self, program_id, extracted_text, total_pages):
        program = self.db.programs[program_id]
        program.status = "processing"
        program.total_pages = total_pages
        program.processing_error = None

    async def mark_completed(self, program_id):
        self.db.programs[program_id].status = "completed"
        self.db.programs[program_id].processing_error = None

    async def mark_failed(self, program_id, error):
        self.db.programs[program_id].status = "failed"
        self.db.programs[program_id].processing_error = error

    async def list_program_status(self):
        return [
            ProgramStatus(
                party=p.party_name,
                status=p.status,
                total_pages=p.total_pages,
                total_embeddings=len(self.db.embeddings.get(p.id, [])),
                last_processed=None,
                processing_error=p.processing_error,
            )
            for p in self.db.programs.values()
        ]


class FakeVectorStore:
    def __init__(self, db):
        self.db = db

    async def delete_program_embeddings(self, program_id):
        return len(self.db.embeddings.pop(program_id, []))

    async def add_program_embeddings(self, program_id, contents, chapter_titles, page_numbers, embeddings):
        rows = list(zip(contents, chapter_titles, page_numbers, embeddings))
        self.db.embeddings.setdefault(program_id, []).extend(rows)
        return len(rows)

    async def count_program_embeddings(self, program_id):
        return len(self.db.embeddings.get(program_id, [])) - self.db.lost_rows


class FakeUnit:
    def __init__(self, db):
        self.db = db
        self.programs = FakeProgramStore(db)
        self.vectors = FakeVectorStore(db)

    async def commit(self):
        self.db.commits += 1

    async def rollback(self):
        self.db.rollbacks += 1


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

def read_pdf(path):
    """Stub reader: two pages of text, or an extract error for 'broken' files."""
    name = Path(path).name.lower()
    if "broken" in name:
        raise IngestionStepError("extract", "Failed to process PDF: bad xref", document=path)
    if "blank" in name:
        return ProcessedPDF(text="", total_pages=1, pages=[ProcessedPage(1, "")])
    pages = [
        ProcessedPage(1, "1. Innledning\nVi vil bygge landet."),
        ProcessedPage(2, "Skole og helse for alle."),
    ]
    return ProcessedPDF(text="\n".join(p.text for p in pages), total_pages=2, pages=pages)


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def mock_embedder():
    mock = AsyncMock(spec=Embedder)
    mock.embed.side_effect = lambda texts: [[0.1, 0.2] for _ in texts]
    return mock


@pytest.fixture
def pipeline(db, mock_embedder):
    @contextlib.asynccontextmanager
    async def unit_factory():
        yield FakeUnit(db)

    return PartyIngestionPipeline(
        mock_embedder,
        unit_factory=unit_factory,
        year=2025,
        chunk_size=1000,
        chunk_overlap=200,
        pdf_reader=read_pdf,
    )


@pytest.fixture
def programs_dir(tmp_path):
    for name in ("AP.pdf", "H.pdf", "XX.pdf", "notes.txt"):
        (tmp_path / name).write_bytes(b"%PDF-stub")
    return tmp_path


def statuses(db):
    return {p.party_name: p.status for p in db.programs.values()}


# ---------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------

class TestIngestAll:

    @pytest.mark.asyncio
    async def test_processes_known_parties_and_records_unknown(self, pipeline, db, programs_dir):
        summary = await pipeline.ingest_all(programs_dir)

        assert summary.success is False
        assert summary.total_processed == 2
        assert summary.skipped == 0
        assert [(f.party, f.step) for f in summary.failed] == [("xx", "lookup")]
        assert statuses(db) == {"Arbeiderpartiet": "completed", "Høyre": "completed"}
        assert len(db.parties) == 9

        by_party = {p.party_short_name: p for p in summary.progress}
        assert set(by_party) == {"ap", "h", "xx"}
        assert by_party["ap"].status == "completed"
        assert by_party["ap"].progress == 100
        assert by_party["xx"].status == "failed"
        assert "Party not found" in by_party["xx"].error

    @pytest.mark.asyncio
    async def test_chunks_are_stored_with_metadata(self, pipeline, db, programs_dir):
        await pipeline.ingest_all(programs_dir)

        ap = next(p for p in db.programs.values() if p.party_name == "Arbeiderpartiet")
        rows = db.embeddings[ap.id]
        assert [(r[1], r[2]) for r in rows] == [("1. Innledning", 1), (None, 2)]
        assert ap.title == "Arbeiderpartiet Partiprogram 2025"
        assert ap.total_pages == 2

    @pytest.mark.asyncio
    async def test_second_run_skips_completed_programmes(self, pipeline, db, mock_embedder, programs_dir):
        await pipeline.ingest_all(programs_dir)
        calls = mock_embedder.embed.await_count
        stored = {k: len(v) for k, v in db.embeddings.items()}

        summary = await pipeline.ingest_all(programs_dir)

        assert summary.total_processed == 0
        assert summary.skipped == 2
        assert mock_embedder.embed.await_count == calls
        assert {k: len(v) for k, v in db.embeddings.items()} == stored
        assert all(p.message == "Already processed" for p in summary.progress if p.status == "completed")

    @pytest.mark.asyncio
    async def test_progress_callback_receives_snapshots(self, pipeline, programs_dir):
        snapshots = []

        await pipeline.ingest_all(programs_dir, on_progress=snapshots.append)

        assert snapshots
        assert all(len(s) == 3 for s in snapshots)
        final = {p.party_short_name: p.status for p in snapshots[-1]}
        assert final == {"ap": "completed", "h": "completed", "xx": "failed"}

    @pytest.mark.asyncio
    async def test_earlier_snapshots_are_not_mutated_by_later_progress(self, pipeline, programs_dir):
        snapshots = []

        await pipeline.ingest_all(programs_dir, on_progress=snapshots.append)

        first = {p.party_short_name: (p.status, p.progress) for p in snapshots[0]}
        assert first == {"ap": ("processing", 0), "h": ("pending", 0), "xx": ("pending", 0)}
        assert snapshots[0][0] is not snapshots[-1][0]

    @pytest.mark.asyncio
    async def test_embedding_failure_does_not_stop_the_batch(self, pipeline, db, mock_embedder, programs_dir):
        def embed(texts):
            if any("Innledning" in t for t in texts) and not embed.failed:
                embed.failed = True
                raise ProviderError("Embedding generation failed: ReadTimeout")
            return [[0.1, 0.2] for _ in texts]

        embed.failed = False
        mock_embedder.embed.side_effect = embed

        summary = await pipeline.ingest_all(programs_dir)

        assert summary.total_processed == 1
        assert {(f.party, f.step) for f in summary.failed} == {("ap", "embed"), ("xx", "lookup")}
        ap = next(p for p in db.programs.values() if p.party_name == "Arbeiderpartiet")
        assert ap.status == "failed"
        assert "ReadTimeout" in ap.processing_error
        assert db.rollbacks == 1

        retry = await pipeline.ingest_all(programs_dir)

        assert retry.total_processed == 1
        assert retry.skipped == 1
        assert ap.status == "completed"
        assert ap.processing_error is None


class TestIngestProgram:

    @pytest.mark.asyncio
    async def test_force_replaces_embeddings(self, pipeline, db, tmp_path):
        await FakeProgramStore(db).seed_parties()
        path = tmp_path / "SV.pdf"

        assert await pipeline.ingest_program("sv", path) is True
        assert await pipeline.ingest_program("sv", path) is False
        assert await pipeline.ingest_program("sv", path, force=True) is True

        (program,) = db.programs.values()
        assert len(db.embeddings[program.id]) == 2

    @pytest.mark.asyncio
    async def test_embedding_count_mismatch_fails_at_persist(self, pipeline, db, tmp_path):
        await FakeProgramStore(db).seed_parties()
        db.lost_rows = 1

        with pytest.raises(IngestionStepError) as exc_info:
            await pipeline.ingest_program("sp", tmp_path / "SP.pdf")

        assert exc_info.value.step == "persist"
        (program,) = db.programs.values()
        assert program.status == "failed"
        assert "Stored 1 of 2 embeddings" in program.processing_error

    @pytest.mark.asyncio
    async def test_extract_failure_marks_programme_failed(self, pipeline, db, tmp_path):
        await FakeProgramStore(db).seed_parties()

        with pytest.raises(IngestionStepError) as exc_info:
            await pipeline.ingest_program("mdg", tmp_path / "broken.pdf")

        assert exc_info.value.step == "extract"
        (program,) = db.programs.values()
        assert program.status == "failed"
        assert "bad xref" in program.processing_error

    @pytest.mark.asyncio
    async def test_document_without_text_fails_at_chunking(self, pipeline, db, mock_embedder, tmp_path):
        await FakeProgramStore(db).seed_parties()

        with pytest.raises(IngestionStepError) as exc_info:
            await pipeline.ingest_program("krf", tmp_path / "blank.pdf")

        assert exc_info.value.step == "chunk"
        mock_embedder.embed.assert_not_called()

    @pytest.mark.asyncio
    async def test_step_callback_reports_increasing_progress(self, pipeline, db, tmp_path):
        await FakeProgramStore(db).seed_parties()
        steps = []

        await pipeline.ingest_program("r", tmp_path / "R.pdf", on_step=steps.append)

        assert steps == sorted(steps)
        assert steps[0] == 10
        assert steps[-1] == 100

    @pytest.mark.asyncio
    async def test_status_report(self, pipeline, programs_dir):
        await pipeline.ingest_all(programs_dir)

        report = await pipeline.get_ingestion_status()

        assert {(r.party, r.status, r.total_embeddings) for r in report} == {
            ("Arbeiderpartiet", "completed", 2),
            ("Høyre", "completed", 2),
        }


@pytest.mark.parametrize(
    "progress, message",
    [
        (0, "Preparing..."),
        (30, "Processing PDF..."),
        (50, "Chunking content..."),
        (85, "Generating embeddings..."),
        (95, "Saving to database..."),
        (100, "Completed"),
    ],
)
def test_progress_messages(progress, message):
    assert get_progress_message(progress) == message
