"""
Data Models - Type definitions for the sync pipeline.

These dataclasses represent the data flowing through the pipeline stages:
files found on disk, the canonical document sent to the index, the bulk
operations carrying it, and the per-item results coming back.
"""

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union


class ChangeKind(Enum):
    """Classification of a file against the recorded crawl state."""
    NEW = "new"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"


class OpType(Enum):
    INDEX = "index"
    DELETE = "delete"


class FailureClass(Enum):
    """How a failed item should be treated by the retry coordinator."""
    TRANSIENT = "transient"         # Retryable infrastructure hiccup
    CONNECTIVITY = "connectivity"   # Transient, destination unreachable
    PERMANENT = "permanent"         # Inherent to the document/request


# ═══════════════════════════════════════════════════════════════════════════
# Filesystem side
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class FileInfo:
    """
    Basic file information from the scanner.

    Contains only what we get from stat() without reading file content.
    """
    path: Path                 # Absolute (real) path
    root: Path                 # Crawl root this file was found under
    name: str
    extension: str
    size: int
    mtime: datetime
    owner: Optional[str] = None
    group: Optional[str] = None

    @classmethod
    def from_path(
        cls,
        path: Path,
        root: Path,
        mtime: float,
        size: int,
        owner: Optional[str] = None,
        group: Optional[str] = None,
    ) -> "FileInfo":
        """Create FileInfo from a path and stat result."""
        return cls(
            path=path,
            root=root,
            name=path.name,
            extension=path.suffix.lower().lstrip("."),
            size=size,
            mtime=datetime.fromtimestamp(mtime),
            owner=owner,
            group=group,
        )

    @property
    def virtual(self) -> str:
        """Path relative to the crawl root, always '/'-separated."""
        relative = self.path.relative_to(self.root).as_posix()
        return "/" + relative if relative != "." else "/"


@dataclass
class CrawlStateEntry:
    """What was last committed for a file."""
    path: str
    checksum: Optional[str]
    last_modified: datetime
    last_indexed: datetime


@dataclass(frozen=True)
class StateUpdate:
    """State change to apply once the carrying operation is acknowledged."""
    root: str
    path: str
    checksum: Optional[str] = None
    last_modified: Optional[datetime] = None
    remove: bool = False


# ═══════════════════════════════════════════════════════════════════════════
# Document schema
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Meta:
    author: Optional[str] = None
    title: Optional[str] = None
    date: Optional[datetime] = None
    keywords: Optional[List[str]] = None


@dataclass
class ExtractorResult:
    """Output of the Extractor collaborator."""
    content: str
    content_type: str
    meta: Meta = field(default_factory=Meta)


@dataclass
class FileAttrs:
    content_type: Optional[str]
    last_modified: datetime
    indexing_date: datetime
    filesize: int
    indexed_chars: int
    filename: str
    extension: str
    checksum: Optional[str]
    url: str


@dataclass
class PathInfo:
    root: str
    real: str
    virtual: str
    encoded: str


@dataclass
class Attributes:
    owner: Optional[str] = None
    group: Optional[str] = None


@dataclass
class Document:
    """
    The canonical indexed unit, one per file.

    Field names follow the index mapping: content, attachment, meta.*,
    file.*, path.*, attributes.*.
    """
    file: FileAttrs
    path: PathInfo
    content: Optional[str] = None
    meta: Meta = field(default_factory=Meta)
    attributes: Attributes = field(default_factory=Attributes)
    attachment: Optional[str] = None

    @property
    def id(self) -> str:
        return self.path.encoded

    def to_dict(self) -> Dict[str, Any]:
        """Mapping-shaped dict with absent fields dropped."""
        return _prune(asdict(self))

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))


def _prune(value: Any) -> Any:
    if isinstance(value, dict):
        pruned = {}
        for key, item in value.items():
            item = _prune(item)
            if item is None or item == {}:
                continue
            pruned[key] = item
        return pruned
    if isinstance(value, list):
        return [_prune(item) for item in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


# ═══════════════════════════════════════════════════════════════════════════
# Bulk operations and results
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class IndexOperation:
    doc: Document
    id: str
    state: Optional[StateUpdate] = None
    attempts: int = 0

    op_type = OpType.INDEX


@dataclass(frozen=True)
class DeleteOperation:
    id: str
    state: Optional[StateUpdate] = None
    attempts: int = 0

    op_type = OpType.DELETE


BulkOperation = Union[IndexOperation, DeleteOperation]

_EXCEPTION_PREFIX = re.compile(r"^([A-Za-z_][\w.]*(?:Exception|Error))\b")


@dataclass(frozen=True)
class OpaqueError:
    """Item error as sent by older protocol versions: a bare string."""
    message: str

    def reason(self) -> str:
        return self.message

    def error_type(self) -> Optional[str]:
        """Exception name the message starts with, e.g. "MapperParsingException[...]"."""
        match = _EXCEPTION_PREFIX.match(self.message)
        return match.group(1) if match else None


@dataclass(frozen=True)
class StructuredError:
    """Item error as sent by newer protocol versions: an object."""
    body: Dict[str, Any]

    def error_type(self) -> Optional[str]:
        error_type = self.body.get("type")
        return error_type if isinstance(error_type, str) else None

    def reason(self) -> str:
        error_type = self.body.get("type")
        reason = self.body.get("reason")
        if error_type and reason:
            text = f"{error_type}: {reason}"
            caused_by = self.body.get("caused_by")
            if isinstance(caused_by, dict) and caused_by.get("reason"):
                text += f" (caused by {caused_by.get('type', 'error')}: {caused_by['reason']})"
            return text
        return json.dumps(self.body, sort_keys=True)


ErrorPayload = Union[OpaqueError, StructuredError]


@dataclass
class BulkItemResult:
    """One per-item entry of a bulk response, already normalized."""
    op_type: OpType
    id: Optional[str]
    failed: bool
    failure_reason: Optional[str] = None
    status: Optional[int] = None
    error: Optional[ErrorPayload] = None


@dataclass
class ItemFailure:
    op: BulkOperation
    reason: str
    status: Optional[int] = None
    error_type: Optional[str] = None


@dataclass
class BatchOutcome:
    """Reconciled view of one batch: every sent op lands in exactly one list."""
    succeeded: List[BulkOperation] = field(default_factory=list)
    failed: List[ItemFailure] = field(default_factory=list)

    @property
    def succeeded_ids(self) -> List[str]:
        return [op.id for op in self.succeeded]

    @property
    def failed_ids(self) -> List[str]:
        return [f.op.id for f in self.failed]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    def failure_summary(self) -> str:
        """Human-readable report, one line per failed item."""
        lines = [
            f"{f.op.op_type.value}/{f.op.id}: {f.reason}"
            for f in self.failed
        ]
        lines.append(f"{len(self.failed)} failures")
        return "\n".join(lines)


@dataclass
class CrawlStats:
    """Statistics from a crawl run."""
    files_scanned: int = 0
    indexed: int = 0
    deleted: int = 0
    skipped_unchanged: int = 0
    skipped_errors: int = 0
    retried: int = 0
    failed: List[Tuple[str, str, str]] = field(default_factory=list)  # (id, op_type, reason)
    duration_seconds: float = 0.0

    def merge(self, other: "CrawlStats") -> None:
        self.files_scanned += other.files_scanned
        self.indexed += other.indexed
        self.deleted += other.deleted
        self.skipped_unchanged += other.skipped_unchanged
        self.skipped_errors += other.skipped_errors
        self.retried += other.retried
        self.failed.extend(other.failed)

    def __str__(self) -> str:
        return (
            f"Indexed {self.indexed} documents "
            f"({self.deleted} deleted, "
            f"{self.skipped_unchanged} unchanged, "
            f"{self.skipped_errors} extraction errors, "
            f"{len(self.failed)} failed, "
            f"{self.retried} retried) "
            f"in {self.duration_seconds:.1f}s"
        )
