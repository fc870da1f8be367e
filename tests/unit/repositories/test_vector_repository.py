"""Unit tests for the pgvector repository SQL."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from policy_rag.core.exceptions import ValidationError
from policy_rag.repositories.vector_repository import VectorRepository, build_metadata_filter
from policy_rag.schemas.vector import VectorEntry, VectorMetadata


def _compile(clause):
    return str(clause.compile(dialect=postgresql.dialect()))


def _make_entry(vector_id="p1-chunk-0"):
    return VectorEntry(
        id=vector_id,
        values=[0.1] * 768,
        metadata=VectorMetadata(
            policy_id="p1",
            state_id="s1",
            state_name="Texas",
            policy_title="Manual",
            page_number=1,
            chunk_index=0,
            content="text",
        ),
    )


class TestBuildMetadataFilter:
    """Tests for metadata filter translation."""

    def test_no_filter(self):
        assert build_metadata_filter(None) is None
        assert build_metadata_filter({}) is None

    def test_equality_uses_jsonb_containment(self):
        sql = _compile(build_metadata_filter({"policyId": "abc"}))
        assert "@>" in sql

    def test_in_set_ors_containment_clauses(self):
        sql = _compile(build_metadata_filter({"stateName": {"$in": ["Texas", "Ohio"]}}))
        assert sql.count("@>") == 2
        assert " OR " in sql

    def test_empty_in_set_matches_nothing(self):
        sql = _compile(build_metadata_filter({"stateName": {"$in": []}}))
        assert "false" in sql.lower()

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValidationError):
            build_metadata_filter({"pageNumber": {"$gt": 3}})


class TestVectorRepository:
    """Tests for statement construction."""

    @pytest.mark.asyncio
    async def test_upsert_overwrites_on_conflict(self):
        session = AsyncMock()
        repo = VectorRepository(session)

        written = await repo.upsert([_make_entry()])

        assert written == 1
        sql = _compile(session.execute.await_args.args[0])
        assert "ON CONFLICT (id) DO UPDATE" in sql
        assert "metadata" in sql

    @pytest.mark.asyncio
    async def test_upsert_nothing(self):
        session = AsyncMock()
        assert await VectorRepository(session).upsert([]) == 0
        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_query_orders_by_cosine_distance_and_limits(self):
        row = MagicMock(id="p1-chunk-0", score=0.91, vector_metadata={"stateName": "Texas"})
        result = MagicMock()
        result.all.return_value = [row]
        session = AsyncMock()
        session.execute.return_value = result

        matches = await VectorRepository(session).query(
            [0.1] * 768, top_k=10, metadata_filter={"stateName": {"$in": ["Texas"]}}
        )

        sql = _compile(session.execute.await_args.args[0])
        assert "<=>" in sql
        assert "ORDER BY" in sql
        assert "LIMIT" in sql
        assert matches[0].score == pytest.approx(0.91)
        assert matches[0].metadata == {"stateName": "Texas"}

    @pytest.mark.asyncio
    async def test_non_finite_scores_become_zero(self):
        row = MagicMock(id="p1-chunk-0", score=float("nan"))
        session = _make_session([row])

        matches = await VectorRepository(session).query([0.1] * 768, top_k=10, include_metadata=False)

        assert matches[0].score == 0.0
        assert matches[0].metadata is None


def _make_session(rows):
    result = MagicMock()
    result.all.return_value = rows
    session = AsyncMock()
    session.execute.return_value = result
    return session


def _executed_sql(session):
    return [_compile(call.args[0]) for call in session.execute.await_args_list]


class TestFilteredScan:
    """Tests that the metadata filter applies while the HNSW index is walked."""

    @pytest.mark.asyncio
    async def test_ranked_query_enables_iterative_scan_before_select(self):
        session = _make_session([])

        await VectorRepository(session, iterative_scan="strict_order", ef_search=100).query(
            [0.1] * 768, top_k=10, metadata_filter={"stateName": {"$in": ["Texas"]}}
        )

        statements = _executed_sql(session)
        assert statements[0] == "SET LOCAL hnsw.ef_search = 100"
        assert statements[1] == "SET LOCAL hnsw.iterative_scan = strict_order"
        assert statements[2].startswith("SELECT")
        assert "@>" in statements[2]

    @pytest.mark.asyncio
    async def test_ef_search_covers_top_k(self):
        session = _make_session([])

        await VectorRepository(session, iterative_scan="", ef_search=40).query([0.1] * 768, top_k=250)

        statements = _executed_sql(session)
        assert statements[0] == "SET LOCAL hnsw.ef_search = 250"
        assert len(statements) == 2

    @pytest.mark.asyncio
    async def test_unknown_scan_mode_rejected(self):
        session = _make_session([])

        with pytest.raises(ValidationError):
            await VectorRepository(session, iterative_scan="fastest").query([0.1] * 768, top_k=5)

        session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_vector_enumerates_with_exact_filtered_scan(self):
        rows = [MagicMock(id=f"p1-chunk-{i}") for i in range(3)]
        session = _make_session(rows)

        matches = await VectorRepository(session).query(
            [0.0] * 768, top_k=10000, metadata_filter={"policyId": "p1"}, include_metadata=False
        )

        statements = _executed_sql(session)
        assert len(statements) == 1
        sql = statements[0]
        assert "<=>" not in sql
        assert "@>" in sql
        assert "ORDER BY policy_vectors.id" in sql
        assert "LIMIT" in sql
        assert [m.id for m in matches] == ["p1-chunk-0", "p1-chunk-1", "p1-chunk-2"]
        assert all(m.score == 0.0 for m in matches)


class TestPolicyVectorTable:
    """Tests for the vector table definition."""

    def test_updated_at_refreshed_by_database_clock(self):
        from policy_rag.database.vector_models import PolicyVector

        onupdate = PolicyVector.__table__.c.updated_at.onupdate
        assert _compile(onupdate.arg) == "now()"
