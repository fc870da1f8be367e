"""Shared fixtures for unit tests.

Nothing here touches a live database, model or vector index: sessions are
mocks and the vector index is replaced by an in-memory store with the same
upsert/query/delete semantics as the pgvector repository.
"""

import math
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from policy_rag.schemas.vector import VectorMatch

DIMENSIONS = 768


class FakeSessionFactory:
    """Callable returning an async context manager that yields one session."""

    def __init__(self, session):
        self.session = session
        self.opened = 0

    def __call__(self):
        self.opened += 1
        return self

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, exc_type, exc, tb):
        return False


def _matches_filter(metadata: Dict[str, Any], metadata_filter: Optional[Dict[str, Any]]) -> bool:
    for field, condition in (metadata_filter or {}).items():
        value = metadata.get(field)
        if isinstance(condition, dict):
            if "$eq" in condition and value != condition["$eq"]:
                return False
            if "$in" in condition and value not in condition["$in"]:
                return False
        elif value != condition:
            return False
    return True


def _cosine(a: List[float], b: List[float]) -> float:
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if not norm_a or not norm_b:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / (norm_a * norm_b)


class InMemoryVectorRepository:
    """Dict-backed stand-in for VectorRepository."""

    def __init__(self, store: Dict[str, Dict[str, Any]]):
        self.store = store

    async def upsert(self, entries) -> int:
        for entry in entries:
            self.store[entry.id] = {
                "values": list(entry.values),
                "metadata": entry.metadata.to_document(),
            }
        return len(entries)

    async def query(self, vector, top_k, metadata_filter=None, include_metadata=True):
        scored = [
            (vector_id, _cosine(vector, item["values"]), item["metadata"])
            for vector_id, item in self.store.items()
            if _matches_filter(item["metadata"], metadata_filter)
        ]
        scored.sort(key=lambda row: row[1], reverse=True)
        return [
            VectorMatch(id=vector_id, score=score, metadata=metadata if include_metadata else None)
            for vector_id, score, metadata in scored[:top_k]
        ]

    async def delete_by_ids(self, ids) -> int:
        removed = 0
        for vector_id in ids:
            if self.store.pop(vector_id, None) is not None:
                removed += 1
        return removed


def make_vector(*head: float) -> List[float]:
    """768-dim vector whose leading components are ``head``."""
    return list(head) + [0.0] * (DIMENSIONS - len(head))


@pytest.fixture
def mock_session():
    session = AsyncMock()
    session.add = MagicMock()
    session.add_all = MagicMock()
    return session


@pytest.fixture
def session_factory(mock_session):
    return FakeSessionFactory(mock_session)


@pytest.fixture
def vector_store():
    """Patch the gateway's repository with an in-memory store and return the backing dict."""
    store: Dict[str, Dict[str, Any]] = {}
    with patch(
        "policy_rag.services.indexing.vector_index_gateway.VectorRepository",
        side_effect=lambda session: InMemoryVectorRepository(store),
    ):
        yield store


@pytest.fixture
def gateway(session_factory, vector_store):
    from policy_rag.services.indexing.vector_index_gateway import VectorIndexGateway

    return VectorIndexGateway(
        session_factory=session_factory,
        engine=MagicMock(),
        dimensions=DIMENSIONS,
        delete_scan_ceiling=10000,
        upsert_batch_size=100,
    )
