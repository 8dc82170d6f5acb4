"""
Integration Tests - Full crawl runs against an in-memory bulk endpoint.

Tests:
- First crawl indexes everything and records state
- Second crawl over an unchanged tree sends nothing
- Modified and deleted files
- Partial failures, retries and permanent rejections
- Extraction errors are not committed
- Relative roots, cancellation and read-once checksums
"""

import asyncio
import threading
from pathlib import Path

import pytest
import xxhash

from crawler.builder import encode_path
from crawler.errors import ExtractionError, RunAbortedError, TransportAuthError
from crawler.extractor import DefaultExtractor
from crawler.hasher import Hasher
from crawler.orchestrator import Orchestrator


@pytest.fixture
def orchestrator(test_config, fake_transport):
    o = Orchestrator(test_config, transport=fake_transport)
    yield o
    o.close()


def write_files(root, count):
    paths = []
    for i in range(count):
        path = root / f"file{i}.txt"
        path.write_text(f"content {i}")
        paths.append(path)
    return paths


class TestFullCrawl:
    """Tests for first and repeated crawls."""

    @pytest.mark.asyncio
    async def test_first_crawl_batches_and_commits(self, orchestrator, fake_transport, crawl_root, test_config):
        """Three new files with bulk_size 2 go out as [2, 1] and are all recorded."""
        test_config.bulk_size = 2
        write_files(crawl_root, 3)

        stats = await orchestrator.run()

        assert [len(b) for b in fake_transport.batches] == [2, 1]
        assert stats.indexed == 3
        assert stats.failed == []

        recorded = orchestrator.state.load(str(crawl_root))
        assert len(recorded) == 3
        assert all(entry.checksum for entry in recorded.values())

    @pytest.mark.asyncio
    async def test_second_crawl_sends_nothing(self, orchestrator, fake_transport, crawl_root):
        write_files(crawl_root, 3)
        await orchestrator.run()
        fake_transport.batches.clear()

        stats = await orchestrator.run()

        assert fake_transport.batches == []
        assert stats.skipped_unchanged == 3
        assert stats.indexed == 0

    @pytest.mark.asyncio
    async def test_document_shape(self, orchestrator, fake_transport, sample_files, crawl_root):
        await orchestrator.run()

        doc = next(d for d in fake_transport.documents if d["file"]["filename"] == "deep.txt")
        assert doc["content"] == "A deeply nested file."
        assert doc["path"]["virtual"] == "/subdir/nested/deep.txt"
        assert doc["path"]["encoded"] == encode_path(str(sample_files["nested"]))
        assert doc["file"]["extension"] == "txt"
        assert len(fake_transport.documents) == 3

    @pytest.mark.asyncio
    async def test_modified_file_reindexed_with_same_id(self, orchestrator, fake_transport, crawl_root):
        path, = write_files(crawl_root, 1)
        await orchestrator.run()
        first_id = fake_transport.batches[0][0][1]
        fake_transport.batches.clear()

        path.write_text("changed content")
        stats = await orchestrator.run()

        assert fake_transport.batches == [[("index", first_id)]]
        assert stats.indexed == 1

    @pytest.mark.asyncio
    async def test_deleted_file_removed(self, orchestrator, fake_transport, crawl_root):
        """A file gone since the last crawl produces a delete and loses its state."""
        paths = write_files(crawl_root, 2)
        await orchestrator.run()
        fake_transport.batches.clear()

        paths[0].unlink()
        stats = await orchestrator.run()

        assert fake_transport.batches == [[("delete", encode_path(str(paths[0])))]]
        assert stats.deleted == 1
        assert orchestrator.state.get(str(crawl_root), str(paths[0])) is None
        assert orchestrator.state.count(str(crawl_root)) == 1


class TestPartialFailures:
    """Tests for per-item failures flowing through a full run."""

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, orchestrator, fake_transport, crawl_root, bulk_ok):
        """Two rejected items out of five are retried and everything ends up committed."""
        write_files(crawl_root, 5)

        def reject_two(batch):
            response = bulk_ok(batch)
            response["errors"] = True
            for i in (1, 3):
                op_type, doc_id = batch[i]
                response["items"][i] = {op_type: {
                    "_id": doc_id, "status": 429,
                    "error": {"type": "es_rejected_execution_exception", "reason": "queue full"},
                }}
            return response

        fake_transport.script = [reject_two]

        stats = await orchestrator.run()

        assert [len(b) for b in fake_transport.batches] == [5, 2]
        assert stats.retried == 2
        assert stats.indexed == 5
        assert orchestrator.state.count() == 5

    @pytest.mark.asyncio
    async def test_permanent_failure_reported_and_not_committed(
        self, orchestrator, fake_transport, crawl_root, bulk_ok
    ):
        paths = write_files(crawl_root, 2)

        def reject_first(batch):
            response = bulk_ok(batch)
            op_type, doc_id = batch[0]
            response["items"][0] = {op_type: {
                "_id": doc_id, "status": 400,
                "error": "MapperParsingException[failed to parse]",
            }}
            return response

        fake_transport.script = [reject_first]

        stats = await orchestrator.run()

        assert len(fake_transport.batches) == 1
        assert len(stats.failed) == 1
        assert stats.failed[0][2] == "MapperParsingException[failed to parse]"
        assert orchestrator.state.get(str(crawl_root), str(paths[0])) is None
        assert orchestrator.state.get(str(crawl_root), str(paths[1])) is not None

        # Not committed, so the next crawl tries again
        fake_transport.batches.clear()
        await orchestrator.run()
        assert fake_transport.batches == [[("index", encode_path(str(paths[0])))]]

    @pytest.mark.asyncio
    async def test_auth_failure_aborts_run(self, orchestrator, fake_transport, crawl_root):
        write_files(crawl_root, 2)
        fake_transport.script = [TransportAuthError(401)]

        with pytest.raises(RunAbortedError):
            await orchestrator.run()

        assert orchestrator.state.count() == 0


class FlakyExtractor(DefaultExtractor):
    """Fails on files named broken.*"""

    def extract(self, data, name=None):
        if name and name.startswith("broken"):
            raise ExtractionError(f"cannot parse {name}")
        return super().extract(data, name)


class TestExtractionErrors:
    """Tests for files the extractor cannot parse."""

    @pytest.mark.asyncio
    async def test_extraction_error_skipped_and_retried_next_crawl(
        self, test_config, fake_transport, crawl_root
    ):
        (crawl_root / "good.txt").write_text("fine")
        (crawl_root / "broken.txt").write_text("bad")

        orchestrator = Orchestrator(test_config, transport=fake_transport, extractor=FlakyExtractor())
        try:
            stats = await orchestrator.run()

            assert stats.skipped_errors == 1
            assert stats.indexed == 1
            assert orchestrator.state.count() == 1

            fake_transport.batches.clear()
            stats = await orchestrator.run()
            assert stats.skipped_errors == 1
            assert fake_transport.batches == []
        finally:
            orchestrator.close()


class TestRoots:
    """Tests for how crawl roots are interpreted."""

    @pytest.mark.asyncio
    async def test_relative_root_is_made_absolute(
        self, orchestrator, fake_transport, temp_dir, crawl_root, monkeypatch
    ):
        path, = write_files(crawl_root, 1)
        monkeypatch.chdir(temp_dir)

        stats = await orchestrator.run([Path("root")])

        assert stats.indexed == 1
        doc, = fake_transport.documents
        assert doc["path"]["real"] == str(path)
        assert doc["file"]["url"] == path.as_uri()
        assert orchestrator.state.get(str(crawl_root), str(path)) is not None


class TestCancellation:
    """Tests for a run cancelled while batches are outstanding."""

    @pytest.mark.asyncio
    async def test_cancel_sends_nothing_after_in_flight_batch(
        self, orchestrator, fake_transport, crawl_root, test_config, bulk_ok
    ):
        """The batch on the wire is committed; queued batches are dropped."""
        test_config.bulk_size = 1
        write_files(crawl_root, 3)
        release = threading.Event()

        def slow(batch):
            release.wait(5)
            return bulk_ok(batch)

        fake_transport.script = [slow]

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.2)
        asyncio.get_running_loop().call_later(0.05, release.set)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(fake_transport.batches) == 1
        assert orchestrator.state.count() == 1


class TestReadOnce:
    """Tests for how often file bytes are read and what checksum is recorded."""

    @pytest.fixture
    def compute_calls(self, monkeypatch):
        calls = []
        original = Hasher.compute

        def counting(self, path):
            calls.append(path)
            return original(self, path)

        monkeypatch.setattr(Hasher, "compute", counting)
        return calls

    @pytest.mark.asyncio
    async def test_new_files_not_hashed_separately(self, orchestrator, crawl_root, compute_calls):
        write_files(crawl_root, 2)

        stats = await orchestrator.run()

        assert stats.indexed == 2
        assert compute_calls == []

    @pytest.mark.asyncio
    async def test_recorded_checksum_matches_indexed_bytes(
        self, orchestrator, fake_transport, crawl_root, compute_calls
    ):
        paths = write_files(crawl_root, 2)
        await orchestrator.run()
        fake_transport.documents.clear()

        paths[0].write_text("changed content, longer than before")
        stats = await orchestrator.run()

        assert stats.indexed == 1
        assert len(compute_calls) == 2
        expected = xxhash.xxh64(paths[0].read_bytes()).hexdigest()
        doc, = fake_transport.documents
        assert doc["file"]["checksum"] == expected
        assert orchestrator.state.get(str(crawl_root), str(paths[0])).checksum == expected
