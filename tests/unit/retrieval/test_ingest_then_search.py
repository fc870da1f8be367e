"""Ingest a document and find it again through hybrid search.

The extractor and embedding model are mocked; chunking, vector entry
construction, the gateway and search ranking are real.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from policy_rag.schemas.ingestion import PageText, PolicyContext
from policy_rag.services.ingestion.chunker import TextChunker
from policy_rag.services.ingestion.document_processor import DocumentProcessor
from policy_rag.services.retrieval.hybrid_search import HybridSearchService


def _make_embedding_client():
    """Embeds every text onto the same axis so any query matches."""
    client = MagicMock()
    client.embed = AsyncMock(return_value=[1.0] + [0.0] * 767)
    client.embed_many = AsyncMock(
        side_effect=lambda texts: [[1.0, 0.05 * i] + [0.0] * 766 for i in range(len(texts))]
    )
    return client


class TestIngestThenSearch:
    """Round trip through the processor and the search service."""

    @pytest.mark.asyncio
    async def test_single_chunk_document_is_found(self, gateway, vector_store):
        policy_id = uuid4()
        extractor = MagicMock()
        extractor.extract = AsyncMock(return_value=[
            PageText(page_number=1, text=""),
            PageText(page_number=2, text="Store-and-forward is reimbursed for dermatology."),
        ])
        embedding_client = _make_embedding_client()
        processor = DocumentProcessor(
            embedding_client=embedding_client,
            vector_gateway=gateway,
            extractor=extractor,
            chunker=TextChunker(chunk_size=1000, chunk_overlap=200),
        )
        context = PolicyContext(
            policy_id=policy_id,
            state_id=uuid4(),
            state_name="Ohio",
            policy_title="Ohio Medicaid Telehealth",
        )

        chunks = await processor.process(b"%PDF-1.4", context)
        search = HybridSearchService(embedding_client=embedding_client, vector_gateway=gateway)
        results = await search.search("store and forward", state_filter=["Ohio"])

        assert len(chunks) == 1
        assert list(vector_store) == [f"{policy_id}-chunk-0"]
        assert len(results) == 1
        assert results[0].chunk_index == 0
        assert results[0].page_number == 2
        assert results[0].state_name == "Ohio"
        assert results[0].policy_title == "Ohio Medicaid Telehealth"
        assert results[0].policy_id == str(policy_id)
        assert results[0].content.startswith("Store-and-forward")

    @pytest.mark.asyncio
    async def test_reingest_does_not_duplicate(self, gateway, vector_store):
        policy_id = uuid4()
        extractor = MagicMock()
        extractor.extract = AsyncMock(return_value=[PageText(page_number=1, text="Consent is required.")])
        processor = DocumentProcessor(
            embedding_client=_make_embedding_client(),
            vector_gateway=gateway,
            extractor=extractor,
        )
        context = PolicyContext(
            policy_id=policy_id, state_id=uuid4(), state_name="Texas", policy_title="Manual"
        )

        await processor.process(b"%PDF", context)
        await processor.process(b"%PDF", context)

        assert len(vector_store) == 1
