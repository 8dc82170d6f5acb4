"""
Hasher - Content checksums for change detection.

Uses xxHash (xxh64) by default since it is several times faster than the
cryptographic digests. md5/sha1/sha256 are available when the checksum is
also consumed outside the crawler. Hashes raw file bytes only.
"""

import asyncio
import hashlib
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Tuple

import xxhash

from .config import get_config, CrawlerConfig
from .models import FileInfo
from .errors import handle_error


logger = logging.getLogger(__name__)

READ_CHUNK = 65536


def new_digest(algorithm: str):
    """Return a fresh hash object for a supported algorithm name."""
    if algorithm == "xxh64":
        return xxhash.xxh64()
    return hashlib.new(algorithm)


class Hasher:
    """
    Parallel file hasher.

    Only reads bytes and computes the digest; text extraction happens later
    and only for files the change detector lets through.
    """

    def __init__(self, config: CrawlerConfig | None = None):
        self.config = config or get_config()
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.worker_concurrency,
                thread_name_prefix="hasher"
            )
        return self._executor

    @property
    def enabled(self) -> bool:
        return self.config.checksum is not None

    async def hash_files(
        self,
        files: List[FileInfo],
    ) -> List[Tuple[FileInfo, Optional[str]]]:
        """
        Hash multiple files in parallel, preserving input order.

        Files that cannot be read are logged and left out of the result.
        When checksums are disabled every file maps to None without reading.

        Args:
            files: Files to hash

        Returns:
            (FileInfo, checksum) pairs in input order
        """
        if not files:
            return []

        if not self.enabled:
            return [(info, None) for info in files]

        loop = asyncio.get_running_loop()
        executor = self._get_executor()

        tasks = [
            loop.run_in_executor(executor, self._hash_file_sync, info)
            for info in files
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        hashed: List[Tuple[FileInfo, Optional[str]]] = []
        for info, result in zip(files, results):
            if isinstance(result, BaseException):
                # Already logged in _hash_file_sync
                continue
            hashed.append((info, result))

        logger.debug(f"Hashed {len(hashed)}/{len(files)} files ({self.config.checksum})")
        return hashed

    def _hash_file_sync(self, file_info: FileInfo) -> str:
        """Synchronous file hashing (runs in thread pool)."""
        try:
            return self.compute(file_info.path)
        except Exception as e:
            handle_error(e, file_info.path, "hash_file")
            raise

    def compute(self, path: Path) -> str:
        """Compute the configured digest of a file, reading in 64KB chunks."""
        digest = new_digest(self.config.checksum)
        with open(path, "rb") as f:
            while chunk := f.read(READ_CHUNK):
                digest.update(chunk)
        return digest.hexdigest()

    def compute_bytes(self, data: bytes) -> Optional[str]:
        """Digest of bytes already in memory, None when checksums are disabled."""
        if not self.enabled:
            return None
        digest = new_digest(self.config.checksum)
        digest.update(data)
        return digest.hexdigest()

    def close(self):
        """Shutdown the thread pool."""
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None
