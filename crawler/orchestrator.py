"""
Orchestrator - Main entry point for a crawl run.

Per crawl root:
- Stage 1: Scan the tree (streaming)
- Stage 2: Hash file bytes and classify against committed state
- Stage 3: Extract + build documents only for new/updated files
- Stage 4: Batch, send, reconcile, commit (BulkBatcher + RetryCoordinator)
- Stage 5: Delete documents whose files disappeared since the last crawl

Each root gets its own batcher, so ordering holds per root.
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .batcher import BulkBatcher
from .builder import DocumentBuilder, encode_path
from .config import get_config, set_config, CrawlerConfig
from .detector import ChangeDetector
from .errors import handle_error
from .extractor import BaseExtractor, DefaultExtractor
from .hasher import Hasher
from .models import (
    ChangeKind, CrawlStateEntry, CrawlStats, DeleteOperation, ExtractorResult,
    FileInfo, IndexOperation, StateUpdate
)
from .retry import RetryCoordinator
from .scanner import Scanner
from .state import CrawlState
from .transport import BaseTransport, open_transport
from .watcher import AsyncWatcher


logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Drives scanner → hasher → detector → extractor/builder → batcher.

    Collaborators can be injected (tests use in-memory transports);
    otherwise the HTTP transport is opened from config and owned here.
    """

    def __init__(
        self,
        config: Optional[CrawlerConfig] = None,
        transport: Optional[BaseTransport] = None,
        extractor: Optional[BaseExtractor] = None,
        state: Optional[CrawlState] = None,
    ):
        self.config = config or get_config()
        if config:
            set_config(config)

        self._scanner = Scanner(self.config)
        self._hasher = Hasher(self.config)
        self._detector = ChangeDetector()
        self._builder = DocumentBuilder(self.config)
        self._extractor = extractor or DefaultExtractor()
        self._state = state or CrawlState(self.config)
        self._transport = transport
        self._owns_transport = transport is None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._watcher: Optional[AsyncWatcher] = None

    @property
    def state(self) -> CrawlState:
        return self._state

    def _get_transport(self) -> BaseTransport:
        if self._transport is None:
            self._transport = open_transport(self.config)
        return self._transport

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.worker_concurrency,
                thread_name_prefix="extractor"
            )
        return self._executor

    async def run(self, roots: Optional[List[Path]] = None) -> CrawlStats:
        """
        Crawl every root once.

        Returns:
            Run summary. Item failures are listed in stats.failed and do not
            raise; RunAbortedError is raised only on escalation.
        """
        roots = [_normalize_root(r) for r in (roots or self.config.roots)]
        start_time = time.monotonic()
        stats = CrawlStats()

        logger.info(f"Starting crawl of {len(roots)} roots into index {self.config.index}")

        for root in roots:
            stats.merge(await self.crawl_root(root))

        stats.duration_seconds = time.monotonic() - start_time
        logger.info(f"Crawl complete: {stats}")
        for doc_id, op_type, reason in stats.failed:
            logger.info(f"  failed {op_type}/{doc_id}: {reason}")

        return stats

    async def crawl_root(self, root: Path) -> CrawlStats:
        """Incrementally sync one root. State for other roots is untouched."""
        root = _normalize_root(root)
        root_key = str(root)
        stats = CrawlStats()
        prior = self._state.load(root_key)
        coordinator = RetryCoordinator(self._state, stats, self.config.max_retries)
        batcher = BulkBatcher(self._get_transport(), coordinator, self.config)
        live: set[str] = set()

        logger.info(f"Crawling {root} ({len(prior)} files recorded)")

        await batcher.start()
        try:
            window: List[FileInfo] = []
            async for info in self._scanner.scan_iter(root):
                stats.files_scanned += 1
                live.add(str(info.path))
                window.append(info)
                if len(window) >= self.config.worker_concurrency:
                    await self._process_window(root_key, window, prior, batcher, stats)
                    window = []
            if window:
                await self._process_window(root_key, window, prior, batcher, stats)

            for entry in self._detector.find_deleted(prior, live):
                batcher.add(DeleteOperation(
                    id=encode_path(entry.path),
                    state=StateUpdate(root=root_key, path=entry.path, remove=True),
                ))

            await batcher.close()
        except BaseException:
            await batcher.abort()
            raise

        logger.info(f"Root {root} done: {stats}")
        return stats

    async def _process_window(
        self,
        root_key: str,
        window: List[FileInfo],
        prior: Dict[str, CrawlStateEntry],
        batcher: BulkBatcher,
        stats: CrawlStats,
    ) -> None:
        # Files without a prior entry are new whatever their checksum, so
        # only recorded files are hashed up front
        known = [info for info in window if str(info.path) in prior]
        hashed = await self._hasher.hash_files(known)
        stats.skipped_errors += len(known) - len(hashed)

        selected = {str(info.path) for info in window if str(info.path) not in prior}
        for info, checksum in hashed:
            kind = self._detector.classify(info, prior[str(info.path)], checksum)
            if kind is ChangeKind.UNCHANGED:
                stats.skipped_unchanged += 1
                continue
            logger.debug(f"{kind.value}: {info.path}")
            selected.add(str(info.path))

        changed = [info for info in window if str(info.path) in selected]
        if not changed:
            return

        loop = asyncio.get_running_loop()
        executor = self._get_executor()
        results = await asyncio.gather(
            *(loop.run_in_executor(executor, self._read_and_extract, info) for info in changed),
            return_exceptions=True,
        )

        for info, result in zip(changed, results):
            if isinstance(result, BaseException):
                # Not committed: the next crawl sees it as new/updated again
                handle_error(result, info.path, "extract")
                stats.skipped_errors += 1
                continue

            raw, checksum, extracted = result
            doc = self._builder.build(info, extracted, checksum, raw=raw)
            batcher.add(IndexOperation(
                doc=doc,
                id=doc.id,
                state=StateUpdate(
                    root=root_key,
                    path=str(info.path),
                    checksum=checksum,
                    last_modified=info.mtime,
                ),
            ))

    def _read_and_extract(self, info: FileInfo) -> Tuple[bytes, Optional[str], ExtractorResult]:
        """
        Runs in the worker pool.

        The checksum is taken from the same bytes that get indexed, so the
        recorded state always describes the indexed version of the file.
        """
        raw = info.path.read_bytes()
        return raw, self._hasher.compute_bytes(raw), self._extractor.extract(raw, info.name)

    async def start_watching(self, roots: Optional[List[Path]] = None):
        """
        Re-crawl roots whenever files under them change.

        Runs until stop_watching() is called.
        """
        roots = [_normalize_root(r) for r in (roots or self.config.roots)]

        self._watcher = AsyncWatcher(self.config)
        self._watcher.start(roots)

        logger.info("Started file watching")

        async for batch in self._watcher.changes():
            affected = [
                root for root in roots
                if any(change.path.is_relative_to(root) for change in batch)
            ]
            if affected:
                await self.run(affected)

    def stop_watching(self):
        if self._watcher:
            self._watcher.stop()
            self._watcher = None

    def close(self):
        """Clean up resources."""
        self.stop_watching()
        self._hasher.close()
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
        self._state.close()
        if self._owns_transport and self._transport is not None:
            self._transport.close()
            self._transport = None


async def run_crawl(
    roots: Optional[List[Path]] = None,
    config: Optional[CrawlerConfig] = None,
) -> CrawlStats:
    """
    Convenience function to run one crawl.

    Usage:
        stats = await run_crawl([Path.home() / "Documents"])
        print(stats)
    """
    orchestrator = Orchestrator(config)
    try:
        return await orchestrator.run(roots)
    finally:
        orchestrator.close()


def _normalize_root(root: Path) -> Path:
    """Absolute, symlink-free root, as CrawlerConfig stores its own roots."""
    return Path(root).expanduser().resolve()
