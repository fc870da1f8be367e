"""Character-window chunking of extracted page text."""

import re
from typing import List

from policy_rag.core.config import settings
from policy_rag.schemas.ingestion import ChunkPayload, PageText
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Preferred split points, strongest first
BOUNDARY_PATTERNS = [
    re.compile(r"\n\s*\n"),
    re.compile(r"(?<=[.!?])\s+"),
    re.compile(r"\s+"),
]


class TextChunker:
    """Splits pages into overlapping chunks under a target size.

    Chunks never span pages, so each carries exactly one page number.
    ``chunk_index`` runs from 0 across the whole document and is
    deterministic for a given input.
    """

    def __init__(self, chunk_size: int = None, chunk_overlap: int = None):
        self.chunk_size = chunk_size or settings.ingestion.chunk_size_chars
        self.chunk_overlap = (
            settings.ingestion.chunk_overlap_chars if chunk_overlap is None else chunk_overlap
        )
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

    def split(self, pages: List[PageText]) -> List[ChunkPayload]:
        chunks: List[ChunkPayload] = []
        for page in pages:
            for content in self._split_text(page.text):
                chunks.append(
                    ChunkPayload(
                        content=content,
                        page_number=page.page_number,
                        chunk_index=len(chunks),
                    )
                )

        LOGGER.info(
            f"Split {len(pages)} pages into {len(chunks)} chunks",
            extra={"chunk_size": self.chunk_size, "chunk_overlap": self.chunk_overlap}
        )
        return chunks

    def _split_text(self, text: str) -> List[str]:
        text = text.strip()
        if not text:
            return []

        pieces: List[str] = []
        start = 0
        while start < len(text):
            end = min(start + self.chunk_size, len(text))
            if end < len(text):
                end = self._find_boundary(text, start, end)

            piece = text[start:end].strip()
            if piece:
                pieces.append(piece)

            if end >= len(text):
                break
            start = max(end - self.chunk_overlap, start + 1)
            # Do not start a window mid-word
            while start < end and not text[start - 1].isspace():
                start += 1
        return pieces

    def _find_boundary(self, text: str, start: int, end: int) -> int:
        """Latest boundary in the back half of the window, else ``end``."""
        floor = start + self.chunk_size // 2
        window = text[floor:end]
        for pattern in BOUNDARY_PATTERNS:
            matches = list(pattern.finditer(window))
            if matches:
                return floor + matches[-1].end()
        return end
