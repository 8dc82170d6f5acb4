"""
Crawler Configuration - Centralized settings for the sync pipeline.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths for reliability.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Set


SUPPORTED_CHECKSUMS = {"xxh64", "md5", "sha1", "sha256"}


@dataclass
class CrawlerConfig:
    """
    Configuration for the crawler.

    State lives under ~/.crawler by default. Bulk settings are tuned for
    a single local search node.
    """

    # --- Paths ---
    roots: List[Path] = field(default_factory=lambda: [Path.home() / "Documents"])
    state_path: Path = field(default_factory=lambda: Path.home() / ".crawler" / "state.db")

    # --- Destination ---
    url: str = "http://127.0.0.1:9200"
    index: str = "docs"
    username: Optional[str] = None
    password: Optional[str] = None

    # --- Bulk ---
    bulk_size: int = 100            # Items per bulk request
    flush_interval: float = 5.0     # Seconds before a partial batch is sent
    request_timeout: float = 30.0   # Seconds per bulk request
    max_retries: int = 3            # Per operation, transient failures only
    retry_backoff: float = 1.0      # Seconds per attempt after a batch-level failure

    # --- Documents ---
    indexed_chars: int = 100_000    # Negative means no cap
    checksum: Optional[str] = "xxh64"  # None/"" disables checksums (mtime only)
    store_source: bool = False      # Add base64 raw bytes as "attachment"

    # --- Concurrency Limits ---
    scanner_concurrency: int = 32
    worker_concurrency: int = 8     # Hash + extract threads

    # --- Skip Patterns ---
    skip_dirs: Set[str] = field(default_factory=lambda: {
        ".git", ".svn", ".hg",
        "node_modules", "__pycache__", ".venv", "venv",
        ".idea", ".vscode", ".Trash", ".cache",
    })

    skip_extensions: Set[str] = field(default_factory=lambda: {
        ".lock", ".tmp", ".swp",
    })

    # --- Watcher ---
    debounce_ms: int = 2000

    def __post_init__(self):
        """Normalize paths and validate bulk settings."""
        self.state_path = Path(self.state_path).expanduser().resolve()
        self.roots = [Path(p).expanduser().resolve() for p in self.roots]
        self.url = self.url.rstrip("/")

        if not self.checksum:
            self.checksum = None
        elif self.checksum not in SUPPORTED_CHECKSUMS:
            raise ValueError(
                f"Unsupported checksum algorithm: {self.checksum} "
                f"(expected one of {sorted(SUPPORTED_CHECKSUMS)})"
            )

        if self.bulk_size < 1:
            raise ValueError(f"bulk_size must be >= 1, got {self.bulk_size}")
        if self.flush_interval <= 0:
            raise ValueError(f"flush_interval must be > 0, got {self.flush_interval}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")

        self.state_path.parent.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "CrawlerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            CRAWLER_ROOTS: Comma-separated list of paths
            CRAWLER_STATE_PATH: Path to the crawl state database
            CRAWLER_URL: Search node base URL
            CRAWLER_INDEX: Target index name
            CRAWLER_USERNAME / CRAWLER_PASSWORD: Basic auth credentials
            CRAWLER_BULK_SIZE: Items per bulk request
            CRAWLER_FLUSH_INTERVAL: Seconds between timed flushes
            CRAWLER_MAX_RETRIES: Retry budget for transient failures
            CRAWLER_INDEXED_CHARS: Content cap per document
            CRAWLER_CHECKSUM: Digest algorithm, empty to disable
        """
        config = cls()

        if roots := os.environ.get("CRAWLER_ROOTS"):
            config.roots = [Path(p.strip()) for p in roots.split(",")]

        if state_path := os.environ.get("CRAWLER_STATE_PATH"):
            config.state_path = Path(state_path)

        if url := os.environ.get("CRAWLER_URL"):
            config.url = url

        if index := os.environ.get("CRAWLER_INDEX"):
            config.index = index

        config.username = os.environ.get("CRAWLER_USERNAME", config.username)
        config.password = os.environ.get("CRAWLER_PASSWORD", config.password)

        if bulk_size := os.environ.get("CRAWLER_BULK_SIZE"):
            config.bulk_size = int(bulk_size)

        if flush_interval := os.environ.get("CRAWLER_FLUSH_INTERVAL"):
            config.flush_interval = float(flush_interval)

        if max_retries := os.environ.get("CRAWLER_MAX_RETRIES"):
            config.max_retries = int(max_retries)

        if indexed_chars := os.environ.get("CRAWLER_INDEXED_CHARS"):
            config.indexed_chars = int(indexed_chars)

        if "CRAWLER_CHECKSUM" in os.environ:
            config.checksum = os.environ["CRAWLER_CHECKSUM"].strip() or None

        config.__post_init__()
        return config


# Singleton default config
_default_config: CrawlerConfig | None = None


def get_config() -> CrawlerConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = CrawlerConfig.from_env()
    return _default_config


def set_config(config: CrawlerConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
