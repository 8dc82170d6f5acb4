"""
Transport - Bulk wire format and the HTTP client that sends it.

A batch is serialized as newline-delimited JSON: one action line per
operation, followed by the document line for index actions. The HTTP
session is owned by the caller and passed in; there is no shared client.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Sequence

import requests

from .config import CrawlerConfig
from .errors import (
    ProtocolError, TransportAuthError, TransportConnectionError, TransportTimeoutError
)
from .models import BulkOperation, IndexOperation


logger = logging.getLogger(__name__)

NDJSON = "application/x-ndjson"
UNAVAILABLE_STATUSES = {429, 502, 503, 504}


def serialize_batch(ops: Sequence[BulkOperation], index: str) -> bytes:
    """Encode operations as a bulk request body (NDJSON, trailing newline)."""
    lines = []
    for op in ops:
        action = {op.op_type.value: {"_index": index, "_id": op.id}}
        lines.append(json.dumps(action, separators=(",", ":")))
        if isinstance(op, IndexOperation):
            lines.append(op.doc.to_json())
    return ("\n".join(lines) + "\n").encode("utf-8")


class BaseTransport(ABC):
    """Sends one serialized batch and returns the raw bulk response."""

    @abstractmethod
    def send(self, payload: bytes) -> Dict[str, Any]:
        """
        Execute a bulk request.

        Raises:
            TransportConnectionError, TransportTimeoutError,
            TransportAuthError, ProtocolError
        """
        pass

    def close(self) -> None:
        pass


class HttpBulkTransport(BaseTransport):
    """
    Bulk transport over HTTP(S) using requests.

    The session is an explicitly owned resource: close() closes it.
    """

    def __init__(self, session: requests.Session, url: str, timeout: float = 30.0):
        self._session = session
        self._endpoint = f"{url.rstrip('/')}/_bulk"
        self._timeout = timeout

    def send(self, payload: bytes) -> Dict[str, Any]:
        try:
            response = self._session.post(
                self._endpoint,
                data=payload,
                headers={"Content-Type": NDJSON},
                timeout=self._timeout,
            )
        except requests.Timeout as e:
            raise TransportTimeoutError(f"No response from {self._endpoint} within {self._timeout}s") from e
        except requests.ConnectionError as e:
            raise TransportConnectionError(f"Cannot reach {self._endpoint}: {e}") from e
        except requests.exceptions.ContentDecodingError as e:
            raise ProtocolError(f"Cannot decode bulk response: {e}") from e
        except requests.RequestException as e:
            # Broken chunked bodies, redirect loops and the like: outcome unknown
            raise TransportConnectionError(f"Bulk request to {self._endpoint} failed: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise TransportAuthError(status, response.text[:200])
        if status == 408:
            raise TransportTimeoutError(f"Request timeout reported by {self._endpoint}")
        if status in UNAVAILABLE_STATUSES:
            raise TransportConnectionError(f"{self._endpoint} unavailable ({status})")
        if status >= 300:
            raise ProtocolError(f"Unexpected status {status} from {self._endpoint}", raw=response.text)

        try:
            body = response.json()
        except ValueError as e:
            raise ProtocolError(f"Bulk response is not JSON: {e}", raw=response.text) from e
        if not isinstance(body, dict):
            raise ProtocolError("Bulk response is not an object", raw=body)
        return body

    def close(self) -> None:
        self._session.close()


def open_transport(config: CrawlerConfig) -> HttpBulkTransport:
    """Create a transport with its own session, configured from config."""
    session = requests.Session()
    if config.username:
        session.auth = (config.username, config.password or "")
    logger.info(f"Bulk transport ready: {config.url} (index {config.index})")
    return HttpBulkTransport(session, config.url, timeout=config.request_timeout)
