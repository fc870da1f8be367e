"""Vector index entry and match shapes."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class VectorMetadata(BaseModel):
    """Metadata mirrored next to each embedding.

    Serialized with camelCase keys so filters such as
    ``{"stateName": {"$in": [...]}}`` address the stored document directly.
    """

    model_config = ConfigDict(populate_by_name=True)

    policy_id: str = Field(alias="policyId")
    state_id: str = Field(alias="stateId")
    state_name: str = Field(alias="stateName")
    policy_title: str = Field(alias="policyTitle")
    page_number: int = Field(alias="pageNumber")
    chunk_index: int = Field(alias="chunkIndex")
    content: str = ""

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class VectorEntry(BaseModel):
    """Record written to the vector index."""

    id: str
    values: list[float]
    metadata: VectorMetadata


class VectorMatch(BaseModel):
    """Nearest-neighbor hit returned by the index."""

    id: str
    score: float
    metadata: Optional[dict[str, Any]] = None


def vector_id_for(policy_id: Any, chunk_index: int) -> str:
    """Deterministic key that makes re-upserting a chunk idempotent."""
    return f"{policy_id}-chunk-{chunk_index}"


def parse_vector_id(vector_id: str) -> Optional[tuple[str, int]]:
    """Split a vector key back into ``(policy_id, chunk_index)``."""
    policy_id, sep, index = vector_id.rpartition("-chunk-")
    if not sep or not policy_id:
        return None
    try:
        return policy_id, int(index)
    except ValueError:
        return None
