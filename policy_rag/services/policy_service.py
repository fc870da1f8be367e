"""Policy lifecycle operations spanning both stores."""

from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from policy_rag.core.exceptions import AppError, PolicyNotFoundError
from policy_rag.database.models import Policy
from policy_rag.repositories.chunk_repository import ChunkRepository
from policy_rag.repositories.policy_repository import PolicyRepository, StateRepository
from policy_rag.schemas.ingestion import PolicyContext
from policy_rag.services.indexing.vector_index_gateway import VectorIndexGateway
from policy_rag.services.ingestion.document_processor import DocumentProcessor
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PolicyService:
    """Registers, deletes and re-embeds policies."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        vector_gateway: VectorIndexGateway,
        document_processor: Optional[DocumentProcessor] = None,
    ):
        self.session_factory = session_factory
        self.vector_gateway = vector_gateway
        self.document_processor = document_processor

    async def register_policy(
        self,
        state_name: str,
        title: str,
        file_name: Optional[str] = None,
    ) -> Policy:
        """Create a pending policy, creating its state on first use."""
        async with self.session_factory() as session:
            state = await StateRepository(session).get_or_create(state_name)
            policy = await PolicyRepository(session).create(
                state_id=state.id,
                title=title,
                file_name=file_name,
            )
            await session.commit()

        LOGGER.info(
            "Registered policy",
            extra={"policy_id": str(policy.id), "state_name": state_name}
        )
        return policy

    async def delete_policy(self, policy_id: UUID) -> int:
        """Delete a policy and then its vector entries.

        The relational delete (cascading to chunks and facts) commits first.
        A failure afterwards leaves orphaned vectors, never chunk rows without
        vectors.

        Returns:
            Number of vector entries removed

        Raises:
            PolicyNotFoundError: If the policy does not exist
            VectorIndexError: If the vector cleanup fails
        """
        LOGGER.info("Deleting policy from relational store", extra={"policy_id": str(policy_id)})
        async with self.session_factory() as session:
            deleted = await PolicyRepository(session).delete(policy_id)
            if not deleted:
                raise PolicyNotFoundError(f"Policy {policy_id} not found")
            await session.commit()

        LOGGER.info("Deleting policy vectors", extra={"policy_id": str(policy_id)})
        removed = await self.vector_gateway.delete_by_policy(policy_id)

        LOGGER.info(
            "Policy deleted",
            extra={"policy_id": str(policy_id), "vectors_removed": removed}
        )
        return removed

    async def reembed_all(self) -> Dict[str, int]:
        """Rebuild every policy's vector entries from its stored chunks.

        Policies are processed oldest upload first. A policy with no chunks
        is skipped; a failing policy is logged and the run continues.
        """
        if self.document_processor is None:
            raise AppError("Re-embedding requires a document processor")

        summary = {"processed": 0, "skipped": 0, "failed": 0}

        async with self.session_factory() as session:
            policies = await PolicyRepository(session).list_by_upload_order()
            chunk_repo = ChunkRepository(session)

            LOGGER.info(f"Re-embedding {len(policies)} policies")

            for policy in policies:
                policy_id = str(policy.id)
                chunks = await chunk_repo.get_by_policy(policy.id)
                if not chunks:
                    LOGGER.info("Skipping policy with no chunks", extra={"policy_id": policy_id})
                    summary["skipped"] += 1
                    continue

                context = PolicyContext(
                    policy_id=policy.id,
                    state_id=policy.state_id,
                    state_name=policy.state.name,
                    policy_title=policy.title,
                )
                try:
                    await self.vector_gateway.delete_by_policy(policy.id)
                    await self.document_processor.embed_and_store(chunks, context)
                except AppError as e:
                    LOGGER.error(
                        f"Failed to re-embed policy {policy_id}: {e}",
                        exc_info=True,
                        extra={"policy_id": policy_id}
                    )
                    summary["failed"] += 1
                    continue

                summary["processed"] += 1
                LOGGER.info(
                    f"Re-embedded {len(chunks)} chunks",
                    extra={"policy_id": policy_id}
                )

        LOGGER.info("Re-embedding complete", extra=summary)
        return summary
