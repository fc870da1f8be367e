"""Repository for states and policy documents."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from policy_rag.database.models import Policy, PolicyStatus, State
from policy_rag.repositories.base_repository import BaseRepository


class StateRepository(BaseRepository[State]):
    """Repository for jurisdictions."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, State)

    async def get_by_name(self, name: str) -> Optional[State]:
        query = select(State).where(State.name == name)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_or_create(self, name: str, code: Optional[str] = None) -> State:
        """Return the state with this name, creating it on first use."""
        state = await self.get_by_name(name)
        if state:
            return state
        return await self.create(name=name, code=code)


class PolicyRepository(BaseRepository[Policy]):
    """Repository for policy documents and their lifecycle status."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, Policy)

    async def get_with_state(self, policy_id: UUID) -> Optional[Policy]:
        """Load a policy with its owning state eagerly attached."""
        query = (
            select(Policy)
            .options(selectinload(Policy.state))
            .where(Policy.id == policy_id)
        )
        async with self._translate_errors(f"load policy {policy_id}"):
            result = await self.session.execute(query)
            return result.scalar_one_or_none()

    async def get_many_with_state(self, policy_ids: List[UUID]) -> List[Policy]:
        if not policy_ids:
            return []
        query = (
            select(Policy)
            .options(selectinload(Policy.state))
            .where(Policy.id.in_(policy_ids))
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_by_upload_order(self) -> List[Policy]:
        """All policies, oldest upload first."""
        query = (
            select(Policy)
            .options(selectinload(Policy.state))
            .order_by(Policy.uploaded_at.asc())
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def set_status(self, policy_id: UUID, status: PolicyStatus) -> Optional[Policy]:
        """Move a policy to a new lifecycle status.

        Completing a policy stamps ``processed_at``.
        """
        policy = await self.get_by_id(policy_id)
        if not policy:
            return None

        policy.status = status.value
        if status == PolicyStatus.COMPLETED:
            policy.processed_at = datetime.now(timezone.utc)

        async with self._translate_errors(f"update status of policy {policy_id}"):
            await self.session.flush()
        return policy
