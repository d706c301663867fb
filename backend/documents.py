"""
Document text extraction for uploaded PDFs (PyMuPDF).
"""
from __future__ import annotations

import structlog
from dataclasses import dataclass

import fitz  # PyMuPDF

from models.errors import DocumentExtractionError

logger = structlog.get_logger()

PDF_CONTENT_TYPE = "application/pdf"


@dataclass
class ExtractedDocument:
    text: str
    pages: int


def extract_pdf_text(data: bytes) -> ExtractedDocument:
    """Extract plain text from an in-memory PDF. Raises DocumentExtractionError."""
    if not data:
        raise DocumentExtractionError("The uploaded file is empty")

    try:
        with fitz.open(stream=data, filetype="pdf") as doc:
            pages = doc.page_count
            text = "\n".join(page.get_text("text") for page in doc)
    except Exception as e:
        logger.error("pdf_parse_failed", error=str(e))
        raise DocumentExtractionError("Could not read the PDF file") from e

    text = text.strip()
    if not text:
        raise DocumentExtractionError("The PDF appears to be empty or contains only images")

    logger.info("pdf_extracted", pages=pages, chars=len(text))
    return ExtractedDocument(text=text, pages=pages)
