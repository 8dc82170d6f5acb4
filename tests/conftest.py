"""
Test Configuration - Shared fixtures for crawler tests.

Uses pytest fixtures to create isolated crawl roots, state databases and an
in-memory bulk transport.
"""

import json
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Generator, List, Tuple

import pytest

from crawler.builder import DocumentBuilder
from crawler.config import CrawlerConfig, set_config
from crawler.models import Document, ExtractorResult, FileInfo
from crawler.transport import BaseTransport


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="crawler_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def crawl_root(temp_dir: Path) -> Path:
    root = temp_dir / "root"
    root.mkdir()
    return root


@pytest.fixture
def test_config(temp_dir: Path, crawl_root: Path) -> CrawlerConfig:
    """Create an isolated test configuration."""
    config = CrawlerConfig(
        roots=[crawl_root],
        state_path=temp_dir / "state.db",
        index="test-docs",
        bulk_size=10,
        flush_interval=60.0,
        request_timeout=5.0,
        max_retries=3,
        retry_backoff=0.0,
        scanner_concurrency=4,
        worker_concurrency=2,
    )
    set_config(config)
    return config


@pytest.fixture
def sample_files(crawl_root: Path) -> dict[str, Path]:
    """Create sample files for testing."""
    files = {}

    txt = crawl_root / "sample.txt"
    txt.write_text("This is a sample text file.\nIt has multiple lines.\nFor testing purposes.")
    files["txt"] = txt

    md = crawl_root / "readme.md"
    md.write_text("# Test Readme\n\nThis is a markdown file for testing.")
    files["md"] = md

    nested_dir = crawl_root / "subdir" / "nested"
    nested_dir.mkdir(parents=True)
    nested = nested_dir / "deep.txt"
    nested.write_text("A deeply nested file.")
    files["nested"] = nested

    hidden = crawl_root / ".hidden"
    hidden.write_text("This should be skipped.")
    files["hidden"] = hidden

    node_modules = crawl_root / "node_modules"
    node_modules.mkdir()
    (node_modules / "package.json").write_text('{"name": "test"}')
    files["node_modules"] = node_modules / "package.json"

    return files


@pytest.fixture
def make_doc(test_config: CrawlerConfig, crawl_root: Path) -> Callable[..., Document]:
    """Factory building a document for a (not necessarily existing) file name."""
    builder = DocumentBuilder(test_config)

    def _make(name: str = "doc.txt", content: str = "hello") -> Document:
        info = FileInfo.from_path(
            crawl_root / name, crawl_root, mtime=1_700_000_000.0, size=len(content)
        )
        extracted = ExtractorResult(content=content, content_type="text/plain")
        return builder.build(info, extracted, checksum="abc123", indexing_date=datetime(2024, 1, 1))

    return _make


class FakeTransport(BaseTransport):
    """
    In-memory bulk endpoint.

    Records every batch as a list of (op_type, id). Scripted replies are
    consumed in order: an exception instance is raised, a callable gets the
    parsed batch and returns the raw response, a dict is returned as-is.
    Without a script every item succeeds.
    """

    def __init__(self):
        self.batches: List[List[Tuple[str, str]]] = []
        self.documents: List[dict] = []
        self.script: list = []
        self.closed = False

    def send(self, payload: bytes):
        batch = self._parse(payload)
        self.batches.append(batch)

        if self.script:
            reply = self.script.pop(0)
            if isinstance(reply, BaseException):
                raise reply
            if callable(reply):
                return reply(batch)
            return reply
        return success_response(batch)

    def _parse(self, payload: bytes) -> List[Tuple[str, str]]:
        lines = payload.decode("utf-8").splitlines()
        batch = []
        i = 0
        while i < len(lines):
            action = json.loads(lines[i])
            (op_type, meta), = action.items()
            batch.append((op_type, meta["_id"]))
            if op_type == "index":
                i += 1
                self.documents.append(json.loads(lines[i]))
            i += 1
        return batch

    def close(self):
        self.closed = True


def success_response(batch) -> dict:
    return {
        "took": 3,
        "errors": False,
        "items": [
            {op_type: {"_index": "test-docs", "_id": doc_id, "status": 201 if op_type == "index" else 200}}
            for op_type, doc_id in batch
        ],
    }


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def bulk_ok() -> Callable[[list], dict]:
    """The all-items-succeeded response builder, for scripted replies."""
    return success_response
