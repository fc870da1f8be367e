"""Gateway to the approximate-nearest-neighbor policy index.

Wraps the pgvector repository with the operations ingestion and retrieval
need: idempotent upsert, filtered similarity query, delete by ids and the
scan-then-delete removal of a whole policy. Every index or transport failure
surfaces as ``VectorIndexError``; dimension mismatches surface as
``DimensionMismatchError`` before anything is written.
"""

from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from policy_rag.core.config import settings
from policy_rag.core.exceptions import DimensionMismatchError, VectorIndexError
from policy_rag.repositories.vector_repository import VectorRepository
from policy_rag.schemas.vector import VectorEntry, VectorMatch
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


class VectorIndexGateway:
    """Failure-aware access to the policy vector index."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        engine: Optional[AsyncEngine] = None,
        dimensions: Optional[int] = None,
        delete_scan_ceiling: Optional[int] = None,
        upsert_batch_size: Optional[int] = None,
    ):
        """Initialize the gateway.

        Args:
            session_factory: Session factory bound to the vector database
            engine: Engine used for index setup
            dimensions: Fixed vector length for the whole index
            delete_scan_ceiling: Maximum ids enumerated by ``delete_by_policy``
            upsert_batch_size: Entries written per statement
        """
        if session_factory is None or engine is None:
            from policy_rag.core.database import vector_engine, vector_session_maker
            session_factory = session_factory or vector_session_maker
            engine = engine or vector_engine

        self.session_factory = session_factory
        self.engine = engine
        self.dimensions = dimensions or settings.vector.dimensions
        self.delete_scan_ceiling = delete_scan_ceiling or settings.vector.delete_scan_ceiling
        self.upsert_batch_size = upsert_batch_size or settings.vector.upsert_batch_size

    async def ensure_index(self) -> None:
        """Create the pgvector extension and index table if missing."""
        from policy_rag.core.database import DatabaseClient, VectorBase

        # Registers the table on VectorBase.metadata
        from policy_rag.database import vector_models  # noqa: F401

        client = DatabaseClient(self.engine, VectorBase, label="vector", extensions=("vector",))
        try:
            await client.create_tables()
        except (SQLAlchemyError, OSError) as e:
            LOGGER.error("Failed to set up vector index", exc_info=True)
            raise VectorIndexError("Failed to set up vector index", original_error=e) from e

        LOGGER.info(
            "Vector index ready",
            extra={"dimensions": self.dimensions, "metric": "cosine"}
        )

    async def upsert(self, entries: Sequence[VectorEntry]) -> int:
        """Write entries, replacing any existing entry with the same id.

        Raises:
            DimensionMismatchError: If any vector length differs from the index
            VectorIndexError: If the index rejects the write
        """
        for entry in entries:
            if len(entry.values) != self.dimensions:
                raise DimensionMismatchError(
                    expected=self.dimensions,
                    actual=len(entry.values),
                    vector_id=entry.id,
                )

        if not entries:
            return 0

        written = 0
        try:
            async with self.session_factory() as session:
                repo = VectorRepository(session)
                for start in range(0, len(entries), self.upsert_batch_size):
                    batch = entries[start:start + self.upsert_batch_size]
                    written += await repo.upsert(batch)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            LOGGER.error(f"Vector upsert failed: {e}", exc_info=True)
            raise VectorIndexError("Vector upsert failed", original_error=e) from e

        LOGGER.info(f"Upserted {written} vectors")
        return written

    async def query(
        self,
        vector: List[float],
        top_k: int,
        metadata_filter: Optional[Dict[str, Any]] = None,
        include_metadata: bool = True,
    ) -> List[VectorMatch]:
        """Return up to ``top_k`` nearest entries matching the filter.

        Raises:
            DimensionMismatchError: If the query vector has the wrong length
            VectorIndexError: If the index query fails
        """
        if len(vector) != self.dimensions:
            raise DimensionMismatchError(expected=self.dimensions, actual=len(vector))

        try:
            async with self.session_factory() as session:
                matches = await VectorRepository(session).query(
                    vector,
                    top_k=top_k,
                    metadata_filter=metadata_filter,
                    include_metadata=include_metadata,
                )
        except (SQLAlchemyError, OSError) as e:
            LOGGER.error(f"Vector query failed: {e}", exc_info=True)
            raise VectorIndexError("Vector query failed", original_error=e) from e

        LOGGER.debug(
            "Vector query complete",
            extra={"top_k": top_k, "matches": len(matches), "filter": metadata_filter}
        )
        return matches

    async def delete_by_ids(self, ids: Sequence[str]) -> int:
        if not ids:
            return 0

        try:
            async with self.session_factory() as session:
                deleted = await VectorRepository(session).delete_by_ids(ids)
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            LOGGER.error(f"Vector delete failed: {e}", exc_info=True)
            raise VectorIndexError("Vector delete failed", original_error=e) from e

        LOGGER.info(f"Deleted {deleted} vectors")
        return deleted

    async def delete_by_policy(self, policy_id: Any) -> int:
        """Remove every entry whose metadata names this policy.

        Enumerates matching ids with a zero-vector query capped at
        ``delete_scan_ceiling`` and then deletes them. Not atomic: a crash
        between the two steps leaves orphaned entries.
        """
        matches = await self.query(
            [0.0] * self.dimensions,
            top_k=self.delete_scan_ceiling,
            metadata_filter={"policyId": str(policy_id)},
            include_metadata=False,
        )
        if len(matches) >= self.delete_scan_ceiling:
            LOGGER.warning(
                "Policy vector count reached the delete scan ceiling; some entries may remain",
                extra={"policy_id": str(policy_id), "ceiling": self.delete_scan_ceiling}
            )

        ids = [match.id for match in matches]
        if not ids:
            LOGGER.info("No vectors to delete", extra={"policy_id": str(policy_id)})
            return 0

        deleted = await self.delete_by_ids(ids)
        LOGGER.info(
            f"Deleted {deleted} vectors for policy",
            extra={"policy_id": str(policy_id)}
        )
        return deleted
