"""
Document Builder - Materialize the canonical document for a file.

Pure: combines scanner attributes, the checksum and extractor output, and
applies the indexed-chars cap. No I/O happens here.
"""

import base64
import hashlib
from datetime import datetime
from typing import Optional

from .config import get_config, CrawlerConfig
from .models import (
    Attributes, Document, ExtractorResult, FileAttrs, FileInfo, PathInfo
)


def encode_path(real_path: str) -> str:
    """
    Stable document id for a real path.

    The same path always yields the same id across runs, so re-crawls
    overwrite and deletions target the right document.
    """
    return hashlib.md5(real_path.encode("utf-8")).hexdigest()


class DocumentBuilder:
    """Builds Document instances according to the configured limits."""

    def __init__(self, config: CrawlerConfig | None = None):
        self.config = config or get_config()

    def build(
        self,
        entry: FileInfo,
        extracted: ExtractorResult,
        checksum: Optional[str],
        raw: Optional[bytes] = None,
        indexing_date: Optional[datetime] = None,
    ) -> Document:
        """
        Build the document for one file.

        Args:
            entry: File attributes from the scanner
            extracted: Extractor output for the file bytes
            checksum: Digest of the raw bytes (None when disabled)
            raw: Raw bytes, only needed when store_source is on
            indexing_date: Overrides "now", for reproducible output

        Returns:
            The Document, id = path.encoded
        """
        content = self._truncate(extracted.content)
        real = str(entry.path)

        attachment = None
        if self.config.store_source and raw is not None:
            attachment = base64.b64encode(raw).decode("ascii")

        return Document(
            content=content,
            meta=extracted.meta,
            file=FileAttrs(
                content_type=extracted.content_type,
                last_modified=entry.mtime,
                indexing_date=indexing_date or datetime.now(),
                filesize=max(entry.size, 0),
                indexed_chars=len(content),
                filename=entry.name,
                extension=entry.extension,
                checksum=checksum,
                url=entry.path.as_uri(),
            ),
            path=PathInfo(
                root=encode_path(str(entry.root)),
                real=real,
                virtual=entry.virtual,
                encoded=encode_path(real),
            ),
            attributes=Attributes(owner=entry.owner, group=entry.group),
            attachment=attachment,
        )

    def _truncate(self, content: str) -> str:
        cap = self.config.indexed_chars
        if cap < 0 or len(content) <= cap:
            return content
        return content[:cap]
