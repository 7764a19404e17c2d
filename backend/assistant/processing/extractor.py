"""
Text Extraction
═══════════════

Turns a stored blob into plain text for the chunker.

  text/plain, text/markdown   → decoded as UTF-8, Latin-1 fallback
  application/pdf             → pypdf, pages joined with a blank line
  .docx (wordprocessingml)    → python-docx, non-empty paragraphs
  anything else (incl. .doc)  → UnsupportedFormatError

Unsupported formats fail loudly. Returning placeholder text would let a
document reach PROCESSED with content nobody can retrieve.
"""

from __future__ import annotations

import io
import logging

import docx
from pypdf import PdfReader

from assistant.core.errors import UnsupportedFormatError

logger = logging.getLogger(__name__)

MIME_PDF      = "application/pdf"
MIME_DOCX     = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_DOC      = "application/msword"
MIME_TEXT     = "text/plain"
MIME_MARKDOWN = "text/markdown"

TEXT_MIME_TYPES: frozenset[str] = frozenset({MIME_TEXT, MIME_MARKDOWN})


def extract_text(data: bytes, mime_type: str) -> str:
    """
    Extract plain text from raw bytes.

    Raises:
        UnsupportedFormatError: for content types the core cannot read.
    """
    if mime_type in TEXT_MIME_TYPES:
        return _decode_text(data)
    if mime_type == MIME_PDF:
        return _extract_pdf(data)
    if mime_type == MIME_DOCX:
        return _extract_docx(data)

    logger.warning("Text extraction unsupported | mime=%s size=%d", mime_type, len(data))
    raise UnsupportedFormatError(f"Text extraction is not supported for '{mime_type}'.")


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("latin-1", errors="replace")


def _extract_pdf(data: bytes) -> str:
    """Extract text from PDF bytes using pypdf."""
    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(pages)


def _extract_docx(data: bytes) -> str:
    """Extract text from DOCX bytes using python-docx."""
    document = docx.Document(io.BytesIO(data))
    return "\n".join(para.text for para in document.paragraphs if para.text.strip())
