"""Assembles the ingestion and retrieval services from settings.

``PolicyPipeline`` owns one ingestion queue and exposes the operations a host
(CLI, web handler, script) calls: enqueue, search, rag_query, extract_facts
and delete_policy.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from policy_rag.core.config import Settings, settings as default_settings
from policy_rag.core.embedding_client import EmbeddingClient, create_embedding_client_from_settings
from policy_rag.core.unified_llm import UnifiedLLMClient, create_llm_client_from_settings
from policy_rag.database.models import PolicyFact
from policy_rag.schemas.ingestion import IngestionJob
from policy_rag.schemas.retrieval import ConversationMessage, RAGResponse, SearchResult
from policy_rag.services.generation.answer_generation import AnswerGenerationService
from policy_rag.services.generation.fact_extraction import FactExtractionService
from policy_rag.services.indexing.vector_index_gateway import VectorIndexGateway
from policy_rag.services.ingestion.chunker import TextChunker
from policy_rag.services.ingestion.document_processor import DocumentProcessor
from policy_rag.services.ingestion.job_queue import IngestionQueue
from policy_rag.services.policy_service import PolicyService
from policy_rag.services.retrieval.hybrid_search import HybridSearchService
from policy_rag.services.retrieval.rag_service import RAGService
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PolicyPipeline:
    """Facade over the ingestion queue and the retrieval services."""

    def __init__(
        self,
        queue: IngestionQueue,
        search_service: HybridSearchService,
        rag_service: RAGService,
        fact_extractor: FactExtractionService,
        policy_service: PolicyService,
        vector_gateway: VectorIndexGateway,
    ):
        self.queue = queue
        self.search_service = search_service
        self.rag_service = rag_service
        self.fact_extractor = fact_extractor
        self.policy_service = policy_service
        self.vector_gateway = vector_gateway

    def enqueue(
        self,
        policy_id: UUID,
        buffer: Optional[bytes] = None,
        file_path: Optional[Union[str, Path]] = None,
        delete_file_after: bool = False,
    ) -> IngestionJob:
        return self.queue.enqueue(
            policy_id,
            buffer=buffer,
            file_path=file_path,
            delete_file_after=delete_file_after,
        )

    async def search(
        self,
        query: str,
        state_filter: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
    ) -> List[SearchResult]:
        return await self.search_service.search(query, state_filter=state_filter, top_k=top_k)

    async def rag_query(
        self,
        query: str,
        state_filter: Optional[Sequence[str]] = None,
        history: Sequence[ConversationMessage] = (),
    ) -> RAGResponse:
        return await self.rag_service.rag_query(query, state_filter=state_filter, history=history)

    async def extract_facts(self, policy_id: UUID) -> List[PolicyFact]:
        return await self.fact_extractor.extract_facts(policy_id)

    async def delete_policy(self, policy_id: UUID) -> int:
        return await self.policy_service.delete_policy(policy_id)

    async def shutdown(self, drain: Optional[bool] = None) -> int:
        return await self.queue.shutdown(drain=drain)


def build_pipeline(
    config: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    vector_gateway: Optional[VectorIndexGateway] = None,
    llm_client: Optional[UnifiedLLMClient] = None,
    embedding_client: Optional[EmbeddingClient] = None,
) -> PolicyPipeline:
    """Wire every service from settings, accepting pre-built collaborators."""
    config = config or default_settings

    if session_factory is None:
        from policy_rag.core.database import async_session_maker
        session_factory = async_session_maker

    llm_client = llm_client or create_llm_client_from_settings(config.llm)
    embedding_client = embedding_client or create_embedding_client_from_settings(
        config.embedding, config.llm
    )
    vector_gateway = vector_gateway or VectorIndexGateway(
        dimensions=config.vector.dimensions,
        delete_scan_ceiling=config.vector.delete_scan_ceiling,
        upsert_batch_size=config.vector.upsert_batch_size,
    )

    document_processor = DocumentProcessor(
        embedding_client=embedding_client,
        vector_gateway=vector_gateway,
        chunker=TextChunker(
            chunk_size=config.ingestion.chunk_size_chars,
            chunk_overlap=config.ingestion.chunk_overlap_chars,
        ),
        content_preview_chars=config.vector.content_preview_chars,
    )
    fact_extractor = FactExtractionService(
        session_factory=session_factory,
        llm_client=llm_client,
        char_budget=config.ingestion.fact_char_budget,
        temperature=config.ingestion.fact_temperature,
        max_tokens=config.ingestion.fact_max_tokens,
        write_mode=config.ingestion.fact_write_mode,
    )
    queue = IngestionQueue(
        session_factory=session_factory,
        document_processor=document_processor,
        fact_extractor=fact_extractor,
        job_timeout_seconds=config.ingestion.job_timeout_seconds,
        shutdown_mode=config.ingestion.shutdown_mode,
    )
    search_service = HybridSearchService(
        embedding_client=embedding_client,
        vector_gateway=vector_gateway,
        similarity_threshold=config.retrieval.similarity_threshold,
        overfetch_factor=config.retrieval.overfetch_factor,
        default_top_k=config.retrieval.default_top_k,
    )
    answer_service = AnswerGenerationService(
        llm_client=llm_client,
        temperature=config.retrieval.answer_temperature,
        max_tokens=config.retrieval.answer_max_tokens,
        history_limit=config.retrieval.history_limit,
    )
    rag_service = RAGService(
        session_factory=session_factory,
        search_service=search_service,
        answer_service=answer_service,
        confidence_scale=config.retrieval.confidence_scale,
    )
    policy_service = PolicyService(
        session_factory=session_factory,
        vector_gateway=vector_gateway,
        document_processor=document_processor,
    )

    LOGGER.info(
        "Policy pipeline ready",
        extra={"llm_provider": config.llm.provider, "embedding_provider": config.embedding.provider}
    )
    return PolicyPipeline(
        queue=queue,
        search_service=search_service,
        rag_service=rag_service,
        fact_extractor=fact_extractor,
        policy_service=policy_service,
        vector_gateway=vector_gateway,
    )
