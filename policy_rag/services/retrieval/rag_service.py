"""Retrieval-augmented answering over policy chunks."""

from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from policy_rag.core.config import settings
from policy_rag.core.exceptions import AppError, RetrievalError
from policy_rag.repositories.chunk_repository import ChunkRepository
from policy_rag.schemas.retrieval import Citation, ConversationMessage, RAGResponse, SearchResult
from policy_rag.schemas.vector import parse_vector_id
from policy_rag.services.generation.answer_generation import AnswerGenerationService
from policy_rag.services.retrieval.hybrid_search import HybridSearchService
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)

NO_RESULTS_ANSWER = (
    "I couldn't find relevant information to answer your question. Try rephrasing "
    "or asking about specific telehealth modalities, billing codes, or state requirements."
)

SUGGESTED_QUERIES = [
    "What are the live video requirements?",
    "Does this state allow store-and-forward?",
    "What are the consent requirements?",
]


def build_context(results: Sequence[SearchResult], contents: Sequence[str]) -> str:
    """Numbered context block, one entry per result."""
    return "\n\n".join(
        f"[{idx}] From {result.state_name} (Page {result.page_number}):\n{content}"
        for idx, (result, content) in enumerate(zip(results, contents), start=1)
    )


def compute_confidence(results: Sequence[SearchResult], scale: float) -> float:
    """Average similarity scaled up and clamped to 1.0. Not a probability."""
    if not results:
        return 0.0
    average = sum(result.similarity for result in results) / len(results)
    return max(0.0, min(average * scale, 1.0))


class RAGService:
    """Answers questions from retrieved policy context with citations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        search_service: HybridSearchService,
        answer_service: AnswerGenerationService,
        confidence_scale: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.search_service = search_service
        self.answer_service = answer_service
        self.confidence_scale = confidence_scale or settings.retrieval.confidence_scale

    async def rag_query(
        self,
        query: str,
        state_filter: Optional[Sequence[str]] = None,
        history: Sequence[ConversationMessage] = (),
    ) -> RAGResponse:
        """Search, hydrate full chunk content and generate a cited answer.

        When nothing clears the similarity threshold, a canned response with
        zero confidence is returned and the generator is not called.

        Raises:
            RetrievalError: If search, hydration or generation fails
        """
        try:
            results = await self.search_service.search(query, state_filter=state_filter)

            if not results:
                LOGGER.info("No qualifying search results, returning canned response")
                return RAGResponse(
                    answer=NO_RESULTS_ANSWER,
                    confidence=0.0,
                    citations=[],
                    suggested_queries=list(SUGGESTED_QUERIES),
                )

            contents = await self._hydrate(results)
            context = build_context(results, contents)
            answer = await self.answer_service.generate_answer(query, context, history)
        except (AppError, SQLAlchemyError) as e:
            LOGGER.error(f"Error in RAG query: {e}", exc_info=True)
            raise RetrievalError("Failed to generate answer", original_error=e) from e

        confidence = compute_confidence(results, self.confidence_scale)
        LOGGER.info(
            "RAG answer generated",
            extra={"results": len(results), "confidence": round(confidence, 3)}
        )

        return RAGResponse(
            answer=answer,
            confidence=confidence,
            citations=[
                Citation(
                    content=content,
                    page_number=result.page_number,
                    state_name=result.state_name,
                    policy_title=result.policy_title,
                )
                for result, content in zip(results, contents)
            ],
        )

    async def _hydrate(self, results: Sequence[SearchResult]) -> List[str]:
        """Full chunk content per result, falling back to the stored preview."""
        positions: Dict[str, Tuple[UUID, int]] = {}
        for result in results:
            parsed = parse_vector_id(result.chunk_id)
            if not parsed:
                continue
            try:
                positions[result.chunk_id] = (UUID(parsed[0]), parsed[1])
            except ValueError:
                continue

        chunks = {}
        if positions:
            async with self.session_factory() as session:
                chunks = await ChunkRepository(session).get_by_positions(positions.values())

        contents = []
        misses = 0
        for result in results:
            chunk = chunks.get(positions.get(result.chunk_id))
            if chunk and chunk.content:
                contents.append(chunk.content)
            else:
                misses += 1
                contents.append(result.content)

        if misses:
            LOGGER.warning(f"{misses} results fell back to the index content preview")
        return contents
