"""
Hybrid Search Service

Vector similarity search fused with exact metadata filtering:
1. Embed the query into the chunk vector space
2. Query the index for ``top_k * overfetch_factor`` candidates, restricted by state
3. Drop candidates below the similarity threshold
4. Sort by similarity and truncate to ``top_k``
5. Normalize each candidate's metadata into a SearchResult
"""

from typing import Any, Dict, List, Optional, Sequence

from policy_rag.core.config import settings
from policy_rag.core.embedding_client import EmbeddingClient
from policy_rag.core.exceptions import AppError, RetrievalError
from policy_rag.schemas.retrieval import SearchResult
from policy_rag.schemas.vector import VectorMatch, parse_vector_id
from policy_rag.services.indexing.vector_index_gateway import VectorIndexGateway
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


def _as_int(value: Any, default: Optional[int]) -> Optional[int]:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def to_search_result(match: VectorMatch) -> SearchResult:
    """Build a SearchResult, degrading bad metadata to safe defaults."""
    metadata: Dict[str, Any] = match.metadata or {}

    content = metadata.get("content")
    state_name = metadata.get("stateName")
    policy_title = metadata.get("policyTitle")
    policy_id = metadata.get("policyId")

    page_number = _as_int(metadata.get("pageNumber"), 1)
    chunk_index = _as_int(metadata.get("chunkIndex"), None)
    if chunk_index is None:
        parsed = parse_vector_id(match.id)
        chunk_index = parsed[1] if parsed else None

    return SearchResult(
        chunk_id=str(match.id),
        content=content if isinstance(content, str) else ("" if content is None else str(content)),
        page_number=page_number if page_number and page_number > 0 else 1,
        chunk_index=chunk_index,
        similarity=match.score,
        policy_id=policy_id if isinstance(policy_id, str) else ("" if policy_id is None else str(policy_id)),
        state_name=state_name if isinstance(state_name, str) else "Unknown",
        policy_title=policy_title if isinstance(policy_title, str) else "Unknown Policy",
    )


class HybridSearchService:
    """Ranked, threshold-filtered semantic search over policy chunks."""

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        vector_gateway: VectorIndexGateway,
        similarity_threshold: Optional[float] = None,
        overfetch_factor: Optional[int] = None,
        default_top_k: Optional[int] = None,
    ):
        """Initialize the search service.

        Args:
            embedding_client: Embeds query text
            vector_gateway: Vector index access
            similarity_threshold: Minimum similarity a result must reach
            overfetch_factor: Multiplier on ``top_k`` for the candidate pool
            default_top_k: Result count when none is requested
        """
        self.embedding_client = embedding_client
        self.vector_gateway = vector_gateway
        self.similarity_threshold = (
            settings.retrieval.similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self.overfetch_factor = overfetch_factor or settings.retrieval.overfetch_factor
        self.default_top_k = default_top_k or settings.retrieval.default_top_k

    async def search(
        self,
        query: str,
        state_filter: Optional[Sequence[str]] = None,
        top_k: Optional[int] = None,
    ) -> List[SearchResult]:
        """Search policy chunks for a natural-language query.

        Args:
            query: Question or search text
            state_filter: State names to restrict results to
            top_k: Maximum number of results

        Returns:
            Results sorted by similarity descending; empty when nothing clears
            the threshold

        Raises:
            RetrievalError: If embedding or the index query fails
        """
        top_k = top_k or self.default_top_k
        metadata_filter = {"stateName": {"$in": list(state_filter)}} if state_filter else None

        try:
            query_vector = await self.embedding_client.embed(query)
            matches = await self.vector_gateway.query(
                query_vector,
                top_k=top_k * self.overfetch_factor,
                metadata_filter=metadata_filter,
            )
        except AppError as e:
            LOGGER.error(f"Error in hybrid search: {e}", exc_info=True)
            raise RetrievalError("Search failed", original_error=e) from e

        qualifying = [m for m in matches if m.score >= self.similarity_threshold]
        qualifying.sort(key=lambda m: m.score, reverse=True)
        results = [to_search_result(m) for m in qualifying[:top_k]]

        LOGGER.info(
            f"Hybrid search returned {len(results)} results",
            extra={
                "candidates": len(matches),
                "above_threshold": len(qualifying),
                "top_k": top_k,
                "state_filter": list(state_filter) if state_filter else None,
            }
        )
        return results
