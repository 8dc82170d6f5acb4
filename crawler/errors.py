"""
Error Handling - Centralized error policies and custom exceptions.

Filesystem errors met while walking are routed through ERROR_POLICIES so the
crawl degrades gracefully. Pipeline errors (extraction, transport, escalation)
are raised as CrawlerError subclasses and handled at stage boundaries.
"""

import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional
from pathlib import Path


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this item, continue processing
    RETRY = auto()          # Retry the operation on a later batch
    ABORT = auto()          # Stop the entire run


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


class CrawlerError(Exception):
    """Base exception for crawler errors."""
    pass


class ExtractionError(CrawlerError):
    """The extractor could not parse a file. It is retried on the next crawl."""
    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        super().__init__(message)


class TransportError(CrawlerError):
    """A bulk request failed as a whole."""
    pass


class TransportConnectionError(TransportError):
    """Destination unreachable or connection dropped."""
    pass


class TransportTimeoutError(TransportError):
    """No response within the request timeout. Outcomes are unknown."""
    pass


class TransportAuthError(TransportError):
    """Credentials rejected by the destination."""
    def __init__(self, status: int, message: str = ""):
        self.status = status
        super().__init__(f"Authorization failed ({status}) {message}".strip())


class ProtocolError(TransportError):
    """Response could not be interpreted as a bulk result."""
    def __init__(self, message: str, raw: object = None):
        self.raw = raw
        super().__init__(message)


class RunAbortedError(CrawlerError):
    """Escalated, run-level failure. Further batching is pointless."""
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


# Error type to policy mapping (order matters: subclasses first)
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    ExtractionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Cannot extract content, will retry next crawl: {file} - {error}"
    ),
    TransportAuthError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Destination rejected credentials: {error}"
    ),
    TransportConnectionError: ErrorPolicy(
        action=ErrorAction.RETRY,
        log_level=logging.WARNING,
        message_template="Destination unreachable: {error}"
    ),
    TransportTimeoutError: ErrorPolicy(
        action=ErrorAction.RETRY,
        log_level=logging.WARNING,
        message_template="Bulk request timed out: {error}"
    ),
    ProtocolError: ErrorPolicy(
        action=ErrorAction.RETRY,
        log_level=logging.ERROR,
        message_template="Malformed bulk response: {error}"
    ),
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    IsADirectoryError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Expected file, got directory: {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error reading file: {file} - {error}"
    ),
}


def handle_error(
    error: Exception,
    file_path: Optional[Path] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        file_path: Path to the file being processed (if applicable)
        context: Additional context for logging

    Returns:
        The action to take (SKIP, RETRY, ABORT)
    """
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.SKIP,
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action
