"""
Extractor - Text and metadata extraction from raw file bytes.

The crawler only depends on BaseExtractor. DefaultExtractor covers PDF
(pypdf), Word documents (python-docx) and text: UTF-8, or latin-1 for
files named as text. Any other binary is indexed by its file attributes
only.
"""

import io
import logging
import mimetypes
import zipfile
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .errors import ExtractionError
from .models import ExtractorResult, Meta


logger = logging.getLogger(__name__)

DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
OCTET_STREAM = "application/octet-stream"


class BaseExtractor(ABC):
    """
    Base class for content extractors.

    Implementations must be thread-safe: the orchestrator calls extract()
    from a worker pool.
    """

    @abstractmethod
    def extract(self, data: bytes, name: Optional[str] = None) -> ExtractorResult:
        """
        Extract text and metadata from file bytes.

        Args:
            data: Raw file content
            name: File name, used as a content type hint

        Returns:
            ExtractorResult with content, meta and content_type

        Raises:
            ExtractionError: the bytes could not be parsed
        """
        pass


class DefaultExtractor(BaseExtractor):
    """Extension/magic-number routing to the matching parser."""

    def extract(self, data: bytes, name: Optional[str] = None) -> ExtractorResult:
        hinted = self._guess_type(data, name)
        content_type = hinted or "text/plain"

        if content_type == "application/pdf":
            return self._extract_pdf(data)
        if content_type == DOCX_MIME:
            return self._extract_docx(data)
        return self._extract_text(data, content_type, hinted is not None)

    @staticmethod
    def _guess_type(data: bytes, name: Optional[str]) -> Optional[str]:
        if data.startswith(b"%PDF-"):
            return "application/pdf"
        if name:
            guessed, _ = mimetypes.guess_type(name)
            if guessed:
                return guessed
            if name.lower().endswith(".docx"):
                return DOCX_MIME
        return None

    def _extract_pdf(self, data: bytes) -> ExtractorResult:
        from pypdf import PdfReader
        from pypdf.errors import PyPdfError

        try:
            reader = PdfReader(io.BytesIO(data))
            parts = [text for page in reader.pages if (text := page.extract_text())]
            info = reader.metadata
            meta = Meta()
            if info is not None:
                meta = Meta(
                    author=info.author,
                    title=info.title,
                    date=info.creation_date,
                    keywords=_split_keywords(info.get("/Keywords")),
                )
        except (PyPdfError, ValueError, KeyError) as e:
            raise ExtractionError(f"Unreadable PDF: {e}") from e

        return ExtractorResult(content="\n".join(parts), content_type="application/pdf", meta=meta)

    def _extract_docx(self, data: bytes) -> ExtractorResult:
        from docx import Document
        from docx.opc.exceptions import PackageNotFoundError

        try:
            doc = Document(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, ValueError, KeyError) as e:
            raise ExtractionError(f"Unreadable Word document: {e}") from e

        props = doc.core_properties
        meta = Meta(
            author=props.author or None,
            title=props.title or None,
            date=props.created if isinstance(props.created, datetime) else None,
            keywords=_split_keywords(props.keywords),
        )
        text = "\n".join(p.text for p in doc.paragraphs if p.text)
        return ExtractorResult(content=text, content_type=DOCX_MIME, meta=meta)

    def _extract_text(self, data: bytes, content_type: str, hinted: bool = False) -> ExtractorResult:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            if hinted and content_type.startswith("text/") and b"\x00" not in data:
                # Legacy 8-bit text; latin-1 maps every byte
                logger.debug(f"Non UTF-8 {content_type} content, decoded as latin-1")
                return ExtractorResult(content=data.decode("latin-1"), content_type=content_type)
            # Binary we have no parser for: index attributes only
            logger.debug(f"No text layer for {content_type} content")
            if content_type == "text/plain":
                content_type = OCTET_STREAM
            return ExtractorResult(content="", content_type=content_type)
        return ExtractorResult(content=text, content_type=content_type)


def _split_keywords(raw) -> Optional[List[str]]:
    if not raw or not isinstance(raw, str):
        return None
    keywords = [k.strip() for k in raw.replace(";", ",").split(",") if k.strip()]
    return keywords or None
