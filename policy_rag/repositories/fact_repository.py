"""Repository for extracted policy facts."""

from typing import List
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from policy_rag.database.models import PolicyFact
from policy_rag.repositories.base_repository import BaseRepository
from policy_rag.schemas.ingestion import ExtractedFact


class FactRepository(BaseRepository[PolicyFact]):
    """Repository for PolicyFact records."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, PolicyFact)

    async def create_many(
        self,
        policy_id: UUID,
        state_id: UUID,
        facts: List[ExtractedFact],
    ) -> List[PolicyFact]:
        records = [
            PolicyFact(
                policy_id=policy_id,
                state_id=state_id,
                category=fact.category,
                field=fact.field,
                value=fact.value,
                confidence=fact.confidence,
                page_number=fact.page,
            )
            for fact in facts
        ]
        if not records:
            return []

        async with self._translate_errors(f"store facts for policy {policy_id}"):
            self.session.add_all(records)
            await self.session.flush()
        return records

    async def get_by_policy(self, policy_id: UUID) -> List[PolicyFact]:
        query = (
            select(PolicyFact)
            .where(PolicyFact.policy_id == policy_id)
            .order_by(PolicyFact.category, PolicyFact.field)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def delete_by_policy(self, policy_id: UUID) -> int:
        """Remove every fact of a policy; returns the number removed."""
        result = await self.session.execute(
            delete(PolicyFact).where(PolicyFact.policy_id == policy_id)
        )
        await self.session.flush()
        return result.rowcount
