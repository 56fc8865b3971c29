"""
Programme Store Tests

The AsyncSession is mocked; statements are compiled against the PostgreSQL
dialect so lookups, status updates and the status report are checked as SQL.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from party_rag.db.models import Party, PartyProgram
from party_rag.db.program_store import ProgramStatus, ProgramStore


@pytest.fixture
def session():
    mock = MagicMock()
    mock.execute = AsyncMock()
    mock.flush = AsyncMock()
    return mock


def executed(session):
    """Compile the last executed statement."""
    stmt = session.execute.await_args.args[0]
    return stmt.compile(dialect=postgresql.dialect())


class TestParties:

    @pytest.mark.asyncio
    async def test_seed_inserts_only_missing_parties(self, session):
        result = MagicMock()
        result.all.return_value = [("AP",), ("h",)]
        session.execute.return_value = result

        inserted = await ProgramStore(session).seed_parties()

        assert inserted == 7
        added = [call.args[0] for call in session.add.call_args_list]
        assert all(isinstance(p, Party) for p in added)
        assert {p.short_name for p in added} == {"FRP", "KRF", "MDG", "R", "SP", "SV", "V"}
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_seed_is_a_no_op_when_all_present(self, session):
        result = MagicMock()
        result.all.return_value = [
            (code,) for code in ("AP", "FRP", "H", "KRF", "MDG", "R", "SP", "SV", "V")
        ]
        session.execute.return_value = result

        assert await ProgramStore(session).seed_parties() == 0
        session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_party_matches_case_insensitively(self, session):
        party = Party(name="Arbeiderpartiet", short_name="AP", color="#e30613")
        result = MagicMock()
        result.scalar_one_or_none.return_value = party
        session.execute.return_value = result

        assert await ProgramStore(session).get_party("Ap") is party

        compiled = executed(session)
        assert "lower(parties.short_name) = %(lower_1)s" in str(compiled).lower()
        assert compiled.params["lower_1"] == "ap"


class TestProgrammes:

    @pytest.mark.asyncio
    async def test_create_program_is_pending_with_title(self, session):
        party = SimpleNamespace(id="party-1", name="Høyre")

        program = await ProgramStore(session).create_program(party, "/data/H.pdf", 2025)

        assert isinstance(program, PartyProgram)
        assert program.title == "Høyre Partiprogram 2025"
        assert program.status == "pending"
        assert program.party_id == "party-1"
        session.add.assert_called_once_with(program)
        session.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_mark_processing_stores_text_and_clears_error(self, session):
        await ProgramStore(session).mark_processing("program-1", "Vi vil.", 12)

        compiled = executed(session)
        sql = str(compiled).lower()
        assert sql.startswith("update party_programs set")
        assert "is_processed=" in sql
        assert "updated_at=now()" in sql
        assert "where party_programs.id =" in sql
        params = compiled.params
        assert "processing" in params.values()
        assert params["extracted_text"] == "Vi vil."
        assert params["total_pages"] == 12
        assert params["processing_error"] is None

    @pytest.mark.asyncio
    async def test_mark_failed_records_error(self, session):
        await ProgramStore(session).mark_failed("program-1", "[embed] ReadTimeout")

        params = executed(session).params
        assert "failed" in params.values()
        assert params["processing_error"] == "[embed] ReadTimeout"
        assert "program-1" in params.values()

    @pytest.mark.asyncio
    async def test_mark_completed_clears_error(self, session):
        await ProgramStore(session).mark_completed("program-1")

        params = executed(session).params
        assert "completed" in params.values()
        assert params["processing_error"] is None


class TestStatusReport:

    @pytest.mark.asyncio
    async def test_programmes_without_embeddings_count_zero(self, session):
        processed_at = datetime(2025, 3, 1, tzinfo=timezone.utc)
        result = MagicMock()
        result.all.return_value = [
            ("Arbeiderpartiet", "completed", 40, 312, processed_at, None),
            ("Høyre", "failed", None, 0, processed_at, "[extract] bad xref"),
        ]
        session.execute.return_value = result

        report = await ProgramStore(session).list_program_status()

        assert report == [
            ProgramStatus("Arbeiderpartiet", "completed", 40, 312, processed_at, None),
            ProgramStatus("Høyre", "failed", None, 0, processed_at, "[extract] bad xref"),
        ]

        sql = str(executed(session)).lower()
        assert "left outer join (select embeddings.party_program_id" in sql
        assert "count(embeddings.id)" in sql
        assert "group by embeddings.party_program_id" in sql
        assert "coalesce(" in sql
        assert "join parties on" in sql
        assert "order by parties.short_name" in sql
