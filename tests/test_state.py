"""
Crawl State Tests - Verify the SQLite state store.
"""

from datetime import datetime

import pytest

from crawler.models import StateUpdate
from crawler.state import CrawlState


@pytest.fixture
def state(test_config):
    s = CrawlState(test_config)
    yield s
    s.close()


def upsert(path, checksum="c1", root="/data", mtime=datetime(2024, 1, 1)):
    return StateUpdate(root=root, path=path, checksum=checksum, last_modified=mtime)


class TestCrawlState:
    """Tests for CrawlState."""

    def test_empty(self, state):
        assert state.load("/data") == {}
        assert state.count() == 0

    def test_commit_and_load(self, state):
        applied = state.commit([upsert("/data/a"), upsert("/data/b", checksum=None)])

        assert applied == 2
        loaded = state.load("/data")
        assert set(loaded) == {"/data/a", "/data/b"}
        assert loaded["/data/a"].checksum == "c1"
        assert loaded["/data/b"].checksum is None
        assert loaded["/data/a"].last_modified == datetime(2024, 1, 1)

    def test_upsert_overwrites(self, state):
        state.commit([upsert("/data/a", "c1")])
        state.commit([upsert("/data/a", "c2")])

        assert state.count() == 1
        assert state.get("/data", "/data/a").checksum == "c2"

    def test_remove(self, state):
        state.commit([upsert("/data/a")])
        state.commit([StateUpdate(root="/data", path="/data/a", remove=True)])

        assert state.get("/data", "/data/a") is None

    def test_roots_are_isolated(self, state):
        state.commit([upsert("/data/a"), upsert("/other/a", root="/other")])

        assert list(state.load("/data")) == ["/data/a"]
        assert state.count("/other") == 1
        assert state.count() == 2

    def test_persists_across_connections(self, test_config):
        first = CrawlState(test_config)
        first.commit([upsert("/data/a")])
        first.close()

        second = CrawlState(test_config)
        assert second.get("/data", "/data/a") is not None
        second.close()
