"""
Client for a Paperless-ngx document-management service.

Record fields typed `paperless` hold a document id; the query adapter
follows them to PaperlessDocument vertices through this client.

Invariants:
    - A missing (404) or unreachable document yields None, never an error
    - The client is read-only

How to change safely:
    - Keep PaperlessDocument's attributes in step with the
      PaperlessDocument type in query/schema.py
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PaperlessDocument:
    """The document fields the query schema exposes."""

    id: int
    title: str
    content: str
    created: str
    added: Optional[str] = None
    archive_serial_number: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PaperlessDocument:
        """Create from the service's JSON representation."""
        return cls(
            id=int(data["id"]),
            title=data.get("title") or "",
            content=data.get("content") or "",
            created=data.get("created") or "",
            added=data.get("added"),
            archive_serial_number=data.get("archive_serial_number"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "created": self.created,
            "added": self.added,
            "archive_serial_number": self.archive_serial_number,
        }


class PaperlessClient:
    """Fetches documents by id over the Paperless REST API.

    Example:
        >>> with PaperlessClient("https://docs.example.org", token="...") as client:
        ...     doc = client.get_document(42)
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Token {token}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings) -> Optional[PaperlessClient]:
        """Build a client from Settings, or None if no URL is configured."""
        if not settings.paperless_url:
            return None
        return cls(
            settings.paperless_url,
            token=settings.paperless_token,
            timeout=settings.paperless_timeout_seconds,
        )

    def get_document(self, document_id: int) -> Optional[PaperlessDocument]:
        """Fetch one document.

        Returns:
            The document, or None if it does not exist or the service
            cannot be reached
        """
        try:
            response = self._client.get(f"/api/documents/{document_id}/")
        except httpx.HTTPError as e:
            logger.warning(f"Paperless request for document {document_id} failed: {e}")
            return None

        if response.status_code == 404:
            logger.debug(f"Paperless document {document_id} not found")
            return None
        if response.is_error:
            logger.warning(
                f"Paperless returned HTTP {response.status_code} for document {document_id}"
            )
            return None

        try:
            return PaperlessDocument.from_dict(response.json())
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Malformed Paperless response for document {document_id}: {e}")
            return None

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> PaperlessClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
