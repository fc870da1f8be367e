"""pgvector table backing the approximate-nearest-neighbor index."""

from datetime import datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import Index, String, TIMESTAMP, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from policy_rag.core.config import settings
from policy_rag.core.database import VectorBase


class PolicyVector(VectorBase):
    """One embedded chunk, keyed by ``{policy_id}-chunk-{chunk_index}``.

    ``vector_metadata`` mirrors the chunk's policy/state/page context plus a
    truncated content preview. The table has no foreign keys and no policy
    column: filtering goes through the metadata document only.
    """

    __tablename__ = settings.vector.table_name

    id: Mapped[str] = mapped_column(String, primary_key=True)
    embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.vector.dimensions), nullable=False
    )
    vector_metadata: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index(
            f"ix_{settings.vector.table_name}_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
        Index(
            f"ix_{settings.vector.table_name}_metadata",
            "metadata",
            postgresql_using="gin",
        ),
        {"comment": "ANN index for policy chunk embeddings"},
    )
