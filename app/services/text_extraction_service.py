"""
Text Extraction Service
Turns an uploaded PDF into plain text with Mistral OCR.
"""

import base64
import logging
from typing import Any, Optional

from mistralai import Mistral

from app.core.config import settings
from app.core.errors import ExtractionFailure

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"


class TextExtractionService:
    """
    PDF → text via Mistral OCR.

    Any provider error or an empty result is reported as ExtractionFailure.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Optional[Mistral] = None):
        """
        Initialize text extraction service.

        Args:
            api_key: Mistral API key (defaults to MISTRAL_API_KEY from settings)
            model: OCR model (defaults to MISTRAL_OCR_MODEL)
            client: Pre-built Mistral client
        """
        self.api_key = api_key or settings.MISTRAL_API_KEY
        if client is None and not self.api_key:
            raise ValueError("Mistral API key is required. Set MISTRAL_API_KEY in environment variables.")
        self.model = model or settings.MISTRAL_OCR_MODEL
        self.client = client or Mistral(api_key=self.api_key)

    @staticmethod
    def is_pdf(content: bytes) -> bool:
        return content[:1024].lstrip().startswith(PDF_MAGIC)

    async def extract_text(self, pdf_bytes: bytes) -> str:
        """
        Extract text from a PDF.

        Args:
            pdf_bytes: Raw PDF content

        Returns:
            Text of all pages joined by blank lines

        Raises:
            ExtractionFailure: If OCR fails or yields no text
        """
        document = {
            "type": "document_url",
            "document_url": f"data:application/pdf;base64,{base64.b64encode(pdf_bytes).decode('ascii')}"
        }
        try:
            ocr_result = await self.client.ocr.process_async(model=self.model, document=document)
        except Exception as e:
            logger.error(f"OCR request failed: {e}", exc_info=True)
            raise ExtractionFailure(f"Could not extract text from the document: {e}") from e

        text = self._extract_text_from_ocr(ocr_result)
        if not text:
            raise ExtractionFailure("No text could be extracted from the document")
        logger.info(f"Extracted {len(text)} characters from PDF")
        return text

    def _extract_text_from_ocr(self, ocr_result: Any) -> str:
        """
        Collect page text from a Mistral OCR result.

        Mistral OCR returns `pages`, each with a `markdown` attribute; dict
        shaped results are accepted as well.
        """
        pages = getattr(ocr_result, "pages", None)
        if pages is None and isinstance(ocr_result, dict):
            pages = ocr_result.get("pages")

        text_parts = []
        for page in pages or []:
            if isinstance(page, dict):
                page_text = page.get("markdown") or page.get("text")
            else:
                page_text = getattr(page, "markdown", None) or getattr(page, "text", None)
            if page_text:
                text_parts.append(str(page_text))

        return "\n\n".join(text_parts).strip()
