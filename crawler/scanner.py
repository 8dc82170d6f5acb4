"""
Scanner - Async file system traversal of a crawl root.

Uses os.scandir (cached stat) with a semaphore bounding concurrent stat
calls, and streams FileInfo objects as they are found.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import AsyncGenerator, List, Optional, Tuple

from .config import get_config, CrawlerConfig
from .models import FileInfo
from .errors import handle_error


logger = logging.getLogger(__name__)

SYSTEM_FILES = {".DS_Store", "Thumbs.db", "desktop.ini"}


class Scanner:
    """
    Recursive directory scanner.

    Yields FileInfo objects for each regular file, skipping hidden entries
    and anything matching the configured skip patterns.
    """

    def __init__(self, config: CrawlerConfig | None = None):
        self.config = config or get_config()
        self._semaphore: asyncio.Semaphore | None = None

    async def scan(self, root: Path) -> List[FileInfo]:
        """Scan one root and return every file found."""
        start_time = time.monotonic()
        files = [info async for info in self.scan_iter(root)]
        logger.info(f"Scanned {len(files)} files under {root} in {time.monotonic() - start_time:.1f}s")
        return files

    async def scan_iter(self, root: Path) -> AsyncGenerator[FileInfo, None]:
        """
        Iterate over files under a root.

        Streaming interface: files are yielded as they are found so the
        pipeline can start hashing before the walk completes.
        """
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.scanner_concurrency)

        if not root.is_dir():
            logger.warning(f"Root directory not found: {root}")
            return

        async for file_info in self._scan_directory(root, root):
            yield file_info

    async def _scan_directory(self, root: Path, directory: Path) -> AsyncGenerator[FileInfo, None]:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except OSError as e:
            handle_error(e, directory, "scan_directory")
            return

        subdirs: List[Path] = []

        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if self._should_skip_dir(entry.name):
                        continue
                    subdirs.append(Path(entry.path))

                elif entry.is_file(follow_symlinks=False):
                    if self._should_skip_file(entry.name):
                        continue

                    async with self._semaphore:
                        file_info = await self._get_file_info(root, entry)
                    if file_info:
                        yield file_info

            except OSError as e:
                handle_error(e, Path(entry.path), "scan_entry")
                continue

        for subdir in subdirs:
            async for file_info in self._scan_directory(root, subdir):
                yield file_info

    async def _get_file_info(self, root: Path, entry: os.DirEntry) -> Optional[FileInfo]:
        try:
            stat = entry.stat(follow_symlinks=False)
        except OSError as e:
            handle_error(e, Path(entry.path), "stat")
            return None

        path = Path(entry.path)
        owner, group = _owner_and_group(path)
        return FileInfo.from_path(
            path=path,
            root=root,
            mtime=stat.st_mtime,
            size=stat.st_size,
            owner=owner,
            group=group,
        )

    def _should_skip_dir(self, name: str) -> bool:
        if name.startswith("."):
            return True
        return name in self.config.skip_dirs

    def _should_skip_file(self, name: str) -> bool:
        if name in SYSTEM_FILES or name.startswith("."):
            return True
        return Path(name).suffix.lower() in self.config.skip_extensions


def _owner_and_group(path: Path) -> Tuple[Optional[str], Optional[str]]:
    """Best effort: unknown uids/gids and platforms without pwd/grp give None."""
    try:
        owner = path.owner()
    except (KeyError, NotImplementedError, OSError):
        owner = None
    try:
        group = path.group()
    except (KeyError, NotImplementedError, OSError):
        group = None
    return owner, group
