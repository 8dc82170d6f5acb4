"""
Change Detector - Classify files against the recorded crawl state.

Checksums win over modification times: a touched-but-identical file is
unchanged, and clock skew never triggers reprocessing when a checksum is
available on both sides.
"""

import logging
from typing import Iterable, Iterator, Mapping, Optional, Set

from .models import ChangeKind, CrawlStateEntry, FileInfo


logger = logging.getLogger(__name__)


class ChangeDetector:
    """Stateless comparison of live files with committed state."""

    def classify(
        self,
        entry: FileInfo,
        prior: Optional[CrawlStateEntry],
        checksum: Optional[str] = None,
    ) -> ChangeKind:
        """
        Classify a live file.

        Args:
            entry: File as seen by the scanner
            prior: Last committed state for the same real path, if any
            checksum: Current content digest, None when disabled/unavailable

        Returns:
            NEW, UPDATED or UNCHANGED
        """
        if prior is None:
            return ChangeKind.NEW

        if checksum is not None and prior.checksum is not None:
            if checksum != prior.checksum:
                return ChangeKind.UPDATED
            return ChangeKind.UNCHANGED

        if entry.mtime > prior.last_modified:
            return ChangeKind.UPDATED
        return ChangeKind.UNCHANGED

    def find_deleted(
        self,
        state: Mapping[str, CrawlStateEntry],
        live_paths: Iterable[str],
    ) -> Iterator[CrawlStateEntry]:
        """Yield state entries with no live file, in path order."""
        live: Set[str] = set(live_paths)
        for path in sorted(state):
            if path not in live:
                logger.debug(f"Deleted since last crawl: {path}")
                yield state[path]
