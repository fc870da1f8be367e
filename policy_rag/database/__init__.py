"""Database models."""

from policy_rag.database.models import Policy, PolicyChunk, PolicyFact, PolicyStatus, State
from policy_rag.database.vector_models import PolicyVector

__all__ = ["State", "Policy", "PolicyChunk", "PolicyFact", "PolicyStatus", "PolicyVector"]
