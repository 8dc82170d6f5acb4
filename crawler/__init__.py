"""
Crawler Package - Incremental filesystem to search index synchronization.

Modules:
    - config: Centralized configuration
    - scanner: Async file system traversal
    - hasher: xxHash / hashlib content checksums
    - detector: New/updated/unchanged/deleted classification
    - extractor: Text and metadata extraction (pypdf, python-docx)
    - builder: Canonical document construction
    - batcher: Size/time bounded bulk batching, one batch in flight
    - transport: NDJSON bulk encoding and HTTP client (requests)
    - reconciler: Per-item bulk result interpretation
    - retry: Commit, requeue, report or abort
    - state: SQLite crawl state
    - watcher: Watch mode (watchdog)
    - orchestrator: Main entry point

Flow:
    Scan → Hash → Classify → Extract/Build → Batch → Send → Reconcile → Commit

Usage:
    from crawler import Orchestrator

    orchestrator = Orchestrator()
    stats = await orchestrator.run()
"""

from .orchestrator import Orchestrator, run_crawl

__all__ = ["Orchestrator", "run_crawl"]
