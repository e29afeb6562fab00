"""Resume text extraction from an uploaded document URL.

Supports PDF (pdfplumber with pypdf fallback) and Word documents
(python-docx). Downloads go through aiohttp; parsing runs in a worker thread.
"""
from __future__ import annotations

import asyncio
import io
import logging
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

import aiohttp
import pdfplumber
from docx import Document
from pypdf import PdfReader

from .config import settings
from .pipelines.normalization import normalize_resume_text

logger = logging.getLogger(__name__)


class FileType(str, Enum):
    """Supported file types."""
    PDF = "pdf"
    DOCX = "docx"
    UNKNOWN = "unknown"


class ResumeExtractionError(Exception):
    """Raised when a resume cannot be fetched or turned into text."""
    pass


@dataclass
class ExtractedResume:
    """Result of resume extraction."""
    plain_text: str
    normalized_text: str
    file_type: FileType
    metadata: dict[str, object]


def detect_file_type(url: str, content_type: str = "", content: bytes | None = None) -> FileType:
    """Detect file type from content type, URL suffix or magic number.

    Args:
        url: Document URL
        content_type: HTTP Content-Type header
        content: Optional file content for magic number detection

    Returns:
        Detected FileType
    """
    content_type = (content_type or "").lower()
    path = url.lower().split("?", 1)[0]

    if "pdf" in content_type or path.endswith(".pdf"):
        return FileType.PDF
    if "word" in content_type or "document" in content_type or path.endswith((".doc", ".docx")):
        return FileType.DOCX

    # Magic number detection if content provided
    if content:
        if content.startswith(b'%PDF'):
            return FileType.PDF
        elif content.startswith(b'PK\x03\x04'):  # ZIP/Office
            return FileType.DOCX

    return FileType.UNKNOWN


def extract_text_from_pdf(file_obj: BinaryIO) -> str:
    """Extract text from PDF using native text extraction.

    Args:
        file_obj: Binary file object

    Returns:
        Extracted text (may be empty)
    """
    try:
        # Try pdfplumber first (better text extraction)
        with pdfplumber.open(file_obj) as pdf:
            text_parts = [page.extract_text() or "" for page in pdf.pages]
            return "\n\n".join(part for part in text_parts if part)

    except Exception as e:
        logger.warning(f"pdfplumber extraction failed: {e}, trying pypdf")

        # Fallback to pypdf
        try:
            file_obj.seek(0)
            reader = PdfReader(file_obj)
            text_parts = [page.extract_text() or "" for page in reader.pages]
            return "\n\n".join(part for part in text_parts if part)

        except Exception as e2:
            logger.error(f"pypdf extraction also failed: {e2}")
            raise ResumeExtractionError(f"Failed to parse PDF: {e2}") from e2


def extract_text_from_docx(file_obj: BinaryIO) -> str:
    """Extract paragraph and table text from a Word document."""
    try:
        document = Document(file_obj)
    except Exception as e:
        logger.error(f"DOCX parsing failed: {e}")
        raise ResumeExtractionError(f"Failed to parse Word document: {e}") from e

    lines = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append(" | ".join(cells))
    return "\n".join(lines)


def parse_resume_bytes(content: bytes, url: str, content_type: str = "") -> ExtractedResume:
    """Turn downloaded resume bytes into plain and normalized text.

    Raises:
        ResumeExtractionError: If the format is unsupported or too little text is found
    """
    file_type = detect_file_type(url, content_type, content)

    if file_type == FileType.PDF:
        text = extract_text_from_pdf(io.BytesIO(content))
    elif file_type == FileType.DOCX:
        text = extract_text_from_docx(io.BytesIO(content))
    else:
        raise ResumeExtractionError("Unsupported file format. Only PDF and DOCX are supported.")

    if len(text.strip()) < settings.resume.min_text_length:
        raise ResumeExtractionError("Failed to extract meaningful text from resume")

    normalized = normalize_resume_text(text)
    return ExtractedResume(
        plain_text=text,
        normalized_text=normalized,
        file_type=file_type,
        metadata={
            "url": url,
            "content_type": content_type,
            "text_length": len(text),
            "normalized_length": len(normalized),
        },
    )


class ResumeTextExtractor:
    """Fetches a resume by URL and extracts its text."""

    def __init__(self, timeout_s: float | None = None) -> None:
        self.timeout_s = timeout_s or settings.resume.fetch_timeout_s

    async def fetch(self, url: str) -> tuple[bytes, str]:
        timeout = aiohttp.ClientTimeout(total=self.timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as http:
                async with http.get(url) as response:
                    if response.status >= 400:
                        raise ResumeExtractionError(f"Failed to fetch resume: HTTP {response.status}")
                    content = await response.read()
                    return content, response.headers.get("Content-Type", "")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ResumeExtractionError(f"Failed to fetch resume: {e}") from e

    async def extract(self, url: str) -> ExtractedResume:
        """Download and parse one resume.

        Raises:
            ResumeExtractionError: On fetch, format or parsing failure
        """
        if not url:
            raise ResumeExtractionError("resume_url required")

        content, content_type = await self.fetch(url)
        logger.debug(f"Fetched {len(content)} bytes ({content_type or 'no content type'}) from {url}")
        return await asyncio.to_thread(parse_resume_bytes, content, url, content_type)
