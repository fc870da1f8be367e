"""SQL access to the pgvector-backed policy index."""

import math
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import and_, delete, false, func, or_, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from policy_rag.core.config import settings
from policy_rag.core.exceptions import ValidationError
from policy_rag.database.vector_models import PolicyVector
from policy_rag.schemas.vector import VectorEntry, VectorMatch
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)

HNSW_ITERATIVE_SCAN_MODES = frozenset({"strict_order", "relaxed_order"})
HNSW_EF_SEARCH_LIMIT = 1000


def build_metadata_filter(metadata_filter: Optional[Dict[str, Any]]) -> Optional[ColumnElement]:
    """Translate a metadata filter document into a JSONB predicate.

    Supports exact matches (``{"policyId": "..."}`` or ``{"field": {"$eq": v}}``)
    and set membership (``{"stateName": {"$in": ["Texas", "Ohio"]}}``). Each
    clause compiles to JSONB containment so the GIN index applies and
    comparisons keep the stored value's type.
    """
    if not metadata_filter:
        return None

    metadata = PolicyVector.vector_metadata
    clauses = []
    for field, condition in metadata_filter.items():
        if isinstance(condition, dict):
            unknown = set(condition) - {"$eq", "$in"}
            if unknown:
                raise ValidationError(f"Unsupported metadata filter operator(s): {sorted(unknown)}")
            if "$eq" in condition:
                clauses.append(metadata.contains({field: condition["$eq"]}))
            if "$in" in condition:
                values = list(condition["$in"])
                if not values:
                    # Empty membership set matches nothing
                    clauses.append(false())
                else:
                    clauses.append(or_(*[metadata.contains({field: value}) for value in values]))
        else:
            clauses.append(metadata.contains({field: condition}))

    return and_(*clauses)


class VectorRepository:
    """Repository for PolicyVector rows.

    Ranking and metadata filtering happen in one statement; nothing is
    over-fetched and discarded here. Ranked queries run an iterative HNSW
    scan (pgvector 0.8+) so the filter is applied while the index is walked.
    """

    def __init__(
        self,
        session: AsyncSession,
        iterative_scan: Optional[str] = None,
        ef_search: Optional[int] = None,
    ):
        self.session = session
        self.iterative_scan = settings.vector.hnsw_iterative_scan if iterative_scan is None else iterative_scan
        self.ef_search = ef_search or settings.vector.hnsw_ef_search

    async def upsert(self, entries: Sequence[VectorEntry]) -> int:
        """Insert entries, replacing values and metadata of existing ids."""
        if not entries:
            return 0

        table = PolicyVector.__table__
        stmt = pg_insert(table).values([
            {
                "id": entry.id,
                "embedding": entry.values,
                "metadata": entry.metadata.to_document(),
            }
            for entry in entries
        ])
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.id],
            set_={
                "embedding": stmt.excluded.embedding,
                "metadata": stmt.excluded["metadata"],
                "updated_at": func.now(),
            },
        )
        await self.session.execute(stmt)
        return len(entries)

    async def _configure_hnsw_scan(self, top_k: int) -> None:
        """Make the HNSW scan honor the metadata filter and cover ``top_k``.

        Without an iterative scan, pgvector stops after ``hnsw.ef_search``
        candidates and applies the filter afterwards, so a selective filter can
        return fewer rows than exist. Settings are transaction-local.
        """
        if self.iterative_scan and self.iterative_scan not in HNSW_ITERATIVE_SCAN_MODES:
            raise ValidationError(f"Unsupported hnsw.iterative_scan mode: {self.iterative_scan}")

        ef_search = min(max(self.ef_search, top_k), HNSW_EF_SEARCH_LIMIT)
        await self.session.execute(text(f"SET LOCAL hnsw.ef_search = {int(ef_search)}"))
        if self.iterative_scan:
            await self.session.execute(text(f"SET LOCAL hnsw.iterative_scan = {self.iterative_scan}"))

    async def query(
        self,
        vector: List[float],
        top_k: int,
        metadata_filter: Optional[Dict[str, Any]] = None,
        include_metadata: bool = True,
    ) -> List[VectorMatch]:
        """Nearest entries by cosine similarity, best first.

        A zero vector has no direction to rank by: every score is 0 and the
        statement becomes an exact filtered scan with no distance ordering,
        which is how a whole policy's ids are enumerated.
        """
        ranked = any(component != 0 for component in vector)

        columns = [PolicyVector.id]
        if ranked:
            distance = PolicyVector.embedding.cosine_distance(vector)
            columns.append((1 - distance).label("score"))
        if include_metadata:
            columns.append(PolicyVector.vector_metadata)

        query = select(*columns)
        predicate = build_metadata_filter(metadata_filter)
        if predicate is not None:
            query = query.where(predicate)
        if ranked:
            query = query.order_by(distance)
            await self._configure_hnsw_scan(top_k)
        else:
            query = query.order_by(PolicyVector.id)
        query = query.limit(top_k)

        result = await self.session.execute(query)
        matches = []
        for row in result.all():
            score = 0.0
            if ranked and row.score is not None:
                score = float(row.score)
                # Cosine distance against a vector with no usable norm is NaN
                if not math.isfinite(score):
                    score = 0.0
            matches.append(
                VectorMatch(
                    id=row.id,
                    score=score,
                    metadata=row.vector_metadata if include_metadata else None,
                )
            )
        return matches

    async def delete_by_ids(self, ids: Sequence[str]) -> int:
        if not ids:
            return 0
        result = await self.session.execute(
            delete(PolicyVector).where(PolicyVector.id.in_(list(ids)))
        )
        return result.rowcount
