"""Shapes that cross the ingestion pipeline's component boundaries."""

import math
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class IngestionJob(BaseModel):
    """In-process unit of work. Consumed exactly once and never persisted.

    An in-memory ``buffer`` takes precedence over ``file_path``.
    """

    policy_id: UUID
    buffer: Optional[bytes] = None
    file_path: Optional[Path] = None
    delete_file_after: bool = False

    @property
    def is_file_backed(self) -> bool:
        return self.file_path is not None


class PageText(BaseModel):
    """Text extracted from a single 1-indexed page."""

    page_number: int = Field(ge=1)
    text: str


class ChunkPayload(BaseModel):
    """Ordered chunk produced by the chunker, before persistence."""

    content: str
    page_number: int = Field(ge=1)
    chunk_index: int = Field(ge=0)


class PolicyContext(BaseModel):
    """Policy attributes mirrored into vector metadata."""

    policy_id: UUID
    state_id: UUID
    state_name: str
    policy_title: str


class ExtractedFact(BaseModel):
    """One structured fact as returned by the extraction prompt."""

    category: str
    field: str
    value: str
    confidence: float = 0.5
    page: Optional[int] = None

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, value: Any) -> Any:
        # Models sometimes answer with booleans or numbers
        if value is None:
            return value
        return value if isinstance(value, str) else str(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if value in (None, "", 0):
            return 0.5
        try:
            confidence = float(value)
        except (TypeError, ValueError):
            return 0.5
        if not math.isfinite(confidence):
            return 0.5
        return min(max(confidence, 0.0), 1.0)

    @field_validator("page", mode="before")
    @classmethod
    def _coerce_page(cls, value: Any) -> Any:
        if value in (None, ""):
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
