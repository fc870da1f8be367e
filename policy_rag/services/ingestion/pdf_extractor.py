"""PDF text extraction adapter.

Turns raw PDF bytes into ordered per-page text using pdfplumber. Parsing
runs in a worker thread so it never blocks the event loop.
"""

import asyncio
from io import BytesIO
from typing import List

from policy_rag.core.exceptions import IngestionError
from policy_rag.schemas.ingestion import PageText
from policy_rag.utils.logging import get_logger

LOGGER = get_logger(__name__)


class PdfTextExtractor:
    """Extracts page-numbered text from PDF documents."""

    def __init__(self):
        self._pdfplumber = None

    @property
    def pdfplumber(self):
        """Lazy-load pdfplumber to avoid import overhead."""
        if self._pdfplumber is None:
            import pdfplumber
            self._pdfplumber = pdfplumber
        return self._pdfplumber

    async def extract(self, pdf_bytes: bytes) -> List[PageText]:
        """Extract text for every page, 1-indexed.

        Raises:
            IngestionError: If the document cannot be parsed
        """
        if not pdf_bytes:
            raise IngestionError("Cannot extract text from an empty document")
        return await asyncio.to_thread(self._extract_sync, pdf_bytes)

    def _extract_sync(self, pdf_bytes: bytes) -> List[PageText]:
        pages: List[PageText] = []
        try:
            with self.pdfplumber.open(BytesIO(pdf_bytes)) as pdf:
                for page_num, page in enumerate(pdf.pages, start=1):
                    pages.append(PageText(page_number=page_num, text=page.extract_text() or ""))
        except Exception as e:
            # pdfminer raises a wide range of parser-specific exceptions
            LOGGER.error(f"PDF text extraction failed: {e}", exc_info=True)
            raise IngestionError(f"PDF text extraction failed: {e}", original_error=e) from e

        LOGGER.info(
            f"Extracted text from {len(pages)} pages",
            extra={"total_pages": len(pages), "empty_pages": sum(1 for p in pages if not p.text.strip())}
        )
        return pages
