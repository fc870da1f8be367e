"""Search and RAG response models."""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """A ranked chunk that cleared the similarity threshold."""

    chunk_id: str = Field(..., description="Vector index key of the chunk")
    content: str = Field(..., description="Content preview stored with the vector")
    page_number: int = 1
    chunk_index: Optional[int] = None
    similarity: float
    policy_id: str = ""
    state_name: str = "Unknown"
    policy_title: str = "Unknown Policy"


class ConversationMessage(BaseModel):
    """Prior turn passed along with a question."""

    role: Literal["user", "assistant"]
    content: str


class Citation(BaseModel):
    """Source passage backing an answer."""

    content: str
    page_number: int
    state_name: str
    policy_title: str


class RAGResponse(BaseModel):
    """Answer with its heuristic confidence and cited sources."""

    answer: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    citations: list[Citation] = Field(default_factory=list)
    suggested_queries: list[str] = Field(default_factory=list)
