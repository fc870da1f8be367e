"""Repository for page-addressable policy chunks."""

from typing import Dict, Iterable, List, Tuple
from uuid import UUID

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from policy_rag.database.models import PolicyChunk
from policy_rag.repositories.base_repository import BaseRepository
from policy_rag.schemas.ingestion import ChunkPayload


class ChunkRepository(BaseRepository[PolicyChunk]):
    """Repository for PolicyChunk records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, PolicyChunk)

    async def create_many(self, policy_id: UUID, chunks: List[ChunkPayload]) -> List[PolicyChunk]:
        """Insert chunks for a policy in one flush."""
        records = [
            PolicyChunk(
                policy_id=policy_id,
                content=chunk.content,
                page_number=chunk.page_number,
                chunk_index=chunk.chunk_index,
            )
            for chunk in chunks
        ]
        async with self._translate_errors(f"store chunks for policy {policy_id}"):
            self.session.add_all(records)
            await self.session.flush()

        self.logger.info(
            f"Stored {len(records)} chunks",
            extra={"policy_id": str(policy_id)}
        )
        return records

    async def get_by_policy(self, policy_id: UUID) -> List[PolicyChunk]:
        """All chunks of a policy ordered by chunk index."""
        query = (
            select(PolicyChunk)
            .where(PolicyChunk.policy_id == policy_id)
            .order_by(PolicyChunk.chunk_index)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_by_positions(
        self, positions: Iterable[Tuple[UUID, int]]
    ) -> Dict[Tuple[UUID, int], PolicyChunk]:
        """Fetch chunks by ``(policy_id, chunk_index)`` pairs.

        Pairs with no stored chunk are absent from the result.
        """
        positions = list(dict.fromkeys(positions))
        if not positions:
            return {}

        conditions = [
            and_(PolicyChunk.policy_id == policy_id, PolicyChunk.chunk_index == chunk_index)
            for policy_id, chunk_index in positions
        ]
        query = select(PolicyChunk).where(or_(*conditions))
        result = await self.session.execute(query)
        return {
            (chunk.policy_id, chunk.chunk_index): chunk
            for chunk in result.scalars().all()
        }

    async def delete_by_policy(self, policy_id: UUID) -> int:
        result = await self.session.execute(
            delete(PolicyChunk).where(PolicyChunk.policy_id == policy_id)
        )
        await self.session.flush()
        return result.rowcount
