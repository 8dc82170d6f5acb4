"""
Hasher Tests - Verify content checksums.

Tests:
- xxh64 and hashlib digests
- Identical content, identical checksum
- Disabled checksums
- Error handling for unreadable files
"""

import hashlib

import pytest
import xxhash

from crawler.config import CrawlerConfig
from crawler.hasher import Hasher, new_digest
from crawler.models import FileInfo


def info_for(path, root):
    stat = path.stat()
    return FileInfo.from_path(path, root, stat.st_mtime, stat.st_size)


class TestHasher:
    """Tests for the Hasher class."""

    def test_xxh64_digest(self, sample_files, test_config):
        """Default checksum is the xxh64 hex digest of the raw bytes."""
        hasher = Hasher(test_config)
        expected = xxhash.xxh64(sample_files["txt"].read_bytes()).hexdigest()

        assert hasher.compute(sample_files["txt"]) == expected

    def test_hashlib_algorithm(self, sample_files, test_config):
        test_config.checksum = "sha256"
        hasher = Hasher(test_config)
        expected = hashlib.sha256(sample_files["txt"].read_bytes()).hexdigest()

        assert hasher.compute(sample_files["txt"]) == expected

    def test_new_digest_md5(self):
        digest = new_digest("md5")
        digest.update(b"abc")
        assert digest.hexdigest() == hashlib.md5(b"abc").hexdigest()

    def test_large_file_chunked(self, crawl_root, test_config):
        """Files larger than one read chunk hash the same as in one go."""
        big = crawl_root / "big.bin"
        data = bytes(range(256)) * 1024
        big.write_bytes(data)

        assert Hasher(test_config).compute(big) == xxhash.xxh64(data).hexdigest()

    @pytest.mark.asyncio
    async def test_identical_content_same_checksum(self, crawl_root, test_config):
        a = crawl_root / "a.txt"
        b = crawl_root / "b.txt"
        a.write_text("same")
        b.write_text("same")

        hasher = Hasher(test_config)
        results = await hasher.hash_files([info_for(a, crawl_root), info_for(b, crawl_root)])
        hasher.close()

        assert len(results) == 2
        assert results[0][1] == results[1][1]

    @pytest.mark.asyncio
    async def test_preserves_order(self, sample_files, crawl_root, test_config):
        files = [info_for(sample_files[k], crawl_root) for k in ("txt", "md", "nested")]

        hasher = Hasher(test_config)
        results = await hasher.hash_files(files)
        hasher.close()

        assert [info.path for info, _ in results] == [f.path for f in files]

    @pytest.mark.asyncio
    async def test_unreadable_file_left_out(self, sample_files, crawl_root, test_config):
        """A file that vanished before hashing is dropped, not fatal."""
        good = info_for(sample_files["txt"], crawl_root)
        gone = info_for(sample_files["md"], crawl_root)
        sample_files["md"].unlink()

        hasher = Hasher(test_config)
        results = await hasher.hash_files([good, gone])
        hasher.close()

        assert [info.path for info, _ in results] == [good.path]

    @pytest.mark.asyncio
    async def test_disabled_checksums(self, sample_files, crawl_root, temp_dir):
        config = CrawlerConfig(roots=[crawl_root], state_path=temp_dir / "s.db", checksum="")
        hasher = Hasher(config)

        results = await hasher.hash_files([info_for(sample_files["txt"], crawl_root)])

        assert hasher.enabled is False
        assert results[0][1] is None

    @pytest.mark.asyncio
    async def test_empty_input(self, test_config):
        assert await Hasher(test_config).hash_files([]) == []
