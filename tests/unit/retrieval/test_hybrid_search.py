"""Unit tests for HybridSearchService.

Tests:
- Threshold filtering, ordering and truncation
- Over-fetching and the state filter passed to the index
- Metadata normalization defaults
- Error wrapping, including embedder transport failures
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from policy_rag.core.embedding_client import EmbeddingClient
from policy_rag.core.exceptions import RetrievalError, VectorIndexError
from policy_rag.core.ollama_client import OllamaClient
from policy_rag.schemas.vector import VectorMatch
from policy_rag.services.retrieval.hybrid_search import HybridSearchService, to_search_result


def _make_match(vector_id, score, state_name="Texas", page=1, **extra):
    metadata = {
        "policyId": "policy-1",
        "stateName": state_name,
        "policyTitle": "Telehealth Manual",
        "pageNumber": page,
        "content": f"content of {vector_id}",
        **extra,
    }
    return VectorMatch(id=vector_id, score=score, metadata=metadata)


def _make_service(matches=None, threshold=0.7, overfetch=2):
    embedding_client = MagicMock()
    embedding_client.embed = AsyncMock(return_value=[0.1] * 768)
    vector_gateway = MagicMock()
    vector_gateway.query = AsyncMock(return_value=matches or [])
    return HybridSearchService(
        embedding_client=embedding_client,
        vector_gateway=vector_gateway,
        similarity_threshold=threshold,
        overfetch_factor=overfetch,
        default_top_k=5,
    )


class TestSearchRanking:
    """Tests for the result set invariants."""

    @pytest.mark.asyncio
    async def test_results_clear_threshold_sorted_and_bounded(self):
        scores = [0.72, 0.95, 0.5, 0.81, 0.69, 0.7, 0.99, 0.88, 0.3, 0.75]
        service = _make_service([_make_match(f"p-chunk-{i}", s) for i, s in enumerate(scores)])

        results = await service.search("live video rules", top_k=4)

        similarities = [r.similarity for r in results]
        assert similarities == [0.99, 0.95, 0.88, 0.81]
        assert all(s >= 0.7 for s in similarities)
        assert similarities == sorted(similarities, reverse=True)
        assert len(results) <= 4

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self):
        service = _make_service([_make_match("p-chunk-0", 0.7), _make_match("p-chunk-1", 0.6999)])

        results = await service.search("query")

        assert [r.chunk_id for r in results] == ["p-chunk-0"]

    @pytest.mark.asyncio
    async def test_nothing_above_threshold_is_empty_not_error(self):
        service = _make_service([_make_match("p-chunk-0", 0.4)])

        assert await service.search("query") == []

    @pytest.mark.asyncio
    async def test_overfetches_candidates(self):
        service = _make_service()

        await service.search("query", top_k=3)

        assert service.vector_gateway.query.await_args.kwargs["top_k"] == 6

    @pytest.mark.asyncio
    async def test_custom_threshold(self):
        service = _make_service([_make_match("p-chunk-0", 0.65)], threshold=0.6)

        assert len(await service.search("query")) == 1


class TestStateFilter:
    """Tests for metadata filtering by state."""

    @pytest.mark.asyncio
    async def test_state_filter_passed_as_in_set(self):
        service = _make_service()

        await service.search("query", state_filter=["Texas", "Ohio"])

        assert service.vector_gateway.query.await_args.kwargs["metadata_filter"] == {
            "stateName": {"$in": ["Texas", "Ohio"]}
        }

    @pytest.mark.asyncio
    async def test_no_filter_when_states_absent(self):
        service = _make_service()

        await service.search("query")

        assert service.vector_gateway.query.await_args.kwargs["metadata_filter"] is None

    @pytest.mark.asyncio
    async def test_texas_filter_never_returns_other_states(self, gateway):
        from policy_rag.schemas.vector import VectorEntry, VectorMetadata

        def entry(vector_id, state_name, head):
            return VectorEntry(
                id=vector_id,
                values=list(head) + [0.0] * (768 - len(head)),
                metadata=VectorMetadata(
                    policy_id="p",
                    state_id="s",
                    state_name=state_name,
                    policy_title="Manual",
                    page_number=1,
                    chunk_index=0,
                ),
            )

        await gateway.upsert([
            entry("tx-chunk-0", "Texas", [0.9, 0.1]),
            entry("oh-chunk-0", "Ohio", [1.0]),
            entry("ca-chunk-0", "California", [0.99, 0.01]),
            entry("tx-chunk-1", "Texas", [0.8, 0.2]),
        ])
        embedding_client = MagicMock()
        embedding_client.embed = AsyncMock(return_value=[1.0] + [0.0] * 767)
        service = HybridSearchService(embedding_client=embedding_client, vector_gateway=gateway)

        results = await service.search("query", state_filter=["Texas"])

        assert results
        assert {r.state_name for r in results} == {"Texas"}


class TestNormalization:
    """Tests for metadata defaults."""

    def test_missing_metadata_uses_defaults(self):
        result = to_search_result(VectorMatch(id="abc-chunk-2", score=0.8, metadata=None))

        assert result.state_name == "Unknown"
        assert result.policy_title == "Unknown Policy"
        assert result.page_number == 1
        assert result.content == ""
        assert result.chunk_index == 2

    def test_mistyped_fields_degrade(self):
        match = VectorMatch(
            id="abc-chunk-0",
            score=0.8,
            metadata={"stateName": 42, "policyTitle": None, "pageNumber": "7", "chunkIndex": 5, "content": 3},
        )

        result = to_search_result(match)

        assert result.state_name == "Unknown"
        assert result.policy_title == "Unknown Policy"
        assert result.page_number == 7
        assert result.chunk_index == 5
        assert result.content == "3"

    def test_unparseable_page_defaults_to_one(self):
        match = VectorMatch(id="x", score=0.9, metadata={"pageNumber": "cover"})
        assert to_search_result(match).page_number == 1


class TestErrors:
    """Tests for error propagation."""

    @pytest.mark.asyncio
    async def test_index_failure_becomes_search_failed(self):
        service = _make_service()
        service.vector_gateway.query.side_effect = VectorIndexError("down")

        with pytest.raises(RetrievalError, match="Search failed"):
            await service.search("query")

    @pytest.mark.asyncio
    async def test_embedder_transport_failure_becomes_search_failed(self):
        ollama_client = OllamaClient(max_retries=1)
        ollama_client.client = MagicMock()
        ollama_client.client.embed = AsyncMock(side_effect=httpx.ReadError("connection reset"))
        service = _make_service()
        service.embedding_client = EmbeddingClient(provider="ollama", ollama_client=ollama_client)

        with pytest.raises(RetrievalError, match="Search failed"):
            await service.search("query")

        service.vector_gateway.query.assert_not_awaited()
