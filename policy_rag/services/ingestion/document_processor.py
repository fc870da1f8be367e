"""Extract, chunk, embed and index a policy document."""

from typing import List, Optional, Protocol, Sequence

from policy_rag.core.config import settings
from policy_rag.core.embedding_client import EmbeddingClient
from policy_rag.core.exceptions import IngestionError
from policy_rag.schemas.ingestion import ChunkPayload, PolicyContext
from policy_rag.schemas.vector import VectorEntry, VectorMetadata, vector_id_for
from policy_rag.services.indexing.vector_index_gateway import VectorIndexGateway
from policy_rag.services.ingestion.chunker import TextChunker
from policy_rag.services.ingestion.pdf_extractor import PdfTextExtractor
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ChunkLike(Protocol):
    content: str
    page_number: int
    chunk_index: int


class DocumentProcessor:
    """Turns document bytes into indexed chunks.

    Embeddings only ever go to the vector index; callers persist the
    returned chunk positions to the relational store themselves.
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        vector_gateway: VectorIndexGateway,
        extractor: Optional[PdfTextExtractor] = None,
        chunker: Optional[TextChunker] = None,
        content_preview_chars: Optional[int] = None,
    ):
        self.embedding_client = embedding_client
        self.vector_gateway = vector_gateway
        self.extractor = extractor or PdfTextExtractor()
        self.chunker = chunker or TextChunker()
        self.content_preview_chars = content_preview_chars or settings.vector.content_preview_chars

    async def process(self, document: bytes, context: PolicyContext) -> List[ChunkPayload]:
        """Extract and chunk a document, then embed and upsert every chunk.

        Returns:
            Chunks ordered by ``chunk_index``

        Raises:
            IngestionError: If the document yields no text
        """
        LOGGER.info(
            "Extracting document text",
            extra={"policy_id": str(context.policy_id), "size_bytes": len(document)}
        )
        pages = await self.extractor.extract(document)
        chunks = self.chunker.split(pages)
        if not chunks:
            raise IngestionError(f"No text could be extracted for policy {context.policy_id}")

        await self.embed_and_store(chunks, context)
        return chunks

    async def embed_and_store(self, chunks: Sequence[ChunkLike], context: PolicyContext) -> int:
        """Embed chunks in order and upsert one vector entry per chunk.

        Re-running for the same chunks overwrites the existing entries.
        """
        if not chunks:
            return 0

        vectors = await self.embedding_client.embed_many([chunk.content for chunk in chunks])

        entries = [
            VectorEntry(
                id=vector_id_for(context.policy_id, chunk.chunk_index),
                values=vector,
                metadata=VectorMetadata(
                    policy_id=str(context.policy_id),
                    state_id=str(context.state_id),
                    state_name=context.state_name,
                    policy_title=context.policy_title,
                    page_number=chunk.page_number,
                    chunk_index=chunk.chunk_index,
                    content=chunk.content[:self.content_preview_chars],
                ),
            )
            for chunk, vector in zip(chunks, vectors)
        ]

        written = await self.vector_gateway.upsert(entries)
        LOGGER.info(
            f"Embedded and indexed {written} chunks",
            extra={"policy_id": str(context.policy_id)}
        )
        return written
