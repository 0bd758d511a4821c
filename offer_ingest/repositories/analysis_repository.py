import os
from typing import Any, Dict, Optional

import httpx

from offer_ingest.core.base_http_client import BaseHTTPClient, HTTPResponse, sanitize_base_url
from offer_ingest.core.config import DEFAULT_ANALYSIS_API_URL
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

LEGACY_ANALYZE_SUFFIX = "/document/analyze"


def resolve_analysis_base_url(explicit_url: Optional[str] = None) -> str:
    """Resolve the service base URL.

    Precedence is explicit value, then ``ANALYSIS_API_URL``, then the default.
    Endpoints configured with the legacy ``/document/analyze`` path are
    trimmed back to the API root.
    """
    candidate = (explicit_url or "").strip() or os.environ.get("ANALYSIS_API_URL", "").strip()
    base_url = sanitize_base_url(candidate or DEFAULT_ANALYSIS_API_URL)
    if base_url.lower().endswith(LEGACY_ANALYZE_SUFFIX):
        base_url = base_url[: -len(LEGACY_ANALYZE_SUFFIX)]
    return base_url


class AnalysisRepository(BaseHTTPClient):
    """Repository for calls to the remote document analysis service.

    Inherits from BaseHTTPClient for standardized API interactions.
    """

    def __init__(
        self,
        api_key: str,
        api_url: Optional[str] = None,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        organization_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize analysis repository.

        Args:
            api_key: Analysis service API key
            api_url: Service base URL; falls back to ANALYSIS_API_URL and the default
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            retry_delay: Base delay between retries in seconds
            organization_id: Default organization for every request
            http_client: Optional shared httpx client
        """
        super().__init__(
            api_key=api_key,
            base_url=resolve_analysis_base_url(api_url),
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            organization_id=organization_id,
            http_client=http_client,
        )

    async def submit_task(
        self,
        document_url: str,
        document_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ) -> HTTPResponse:
        """Submit a document for analysis.

        Args:
            document_url: Signed URL the service downloads the document from
            document_id: Caller's document identifier
            organization_id: Per-call organization override

        Returns:
            HTTPResponse with the raw submission payload
        """
        payload: Dict[str, Any] = {"document_url": document_url}
        if document_id:
            payload["document_id"] = document_id

        effective_organization = self.resolve_organization_id(organization_id)
        if effective_organization:
            payload["organization_id"] = effective_organization

        self.logger.info(
            "Submitting analysis task",
            extra={"document_id": document_id, "organization_id": effective_organization},
        )
        return await self.request_json(
            "extract/task",
            method="POST",
            payload=payload,
            organization_id=organization_id,
        )

    async def get_task(self, task_id: str, organization_id: Optional[str] = None) -> HTTPResponse:
        """Fetch the current state of a task."""
        return await self.request_json(
            f"extract/task/{task_id}",
            method="GET",
            organization_id=organization_id,
        )

    async def download_archive(self, archive_url: str, organization_id: Optional[str] = None) -> bytes:
        """Download the result archive.

        Archive URLs are pre-signed, so the bearer token is not sent.
        """
        self.logger.debug("Downloading analysis archive", extra={"archive_url": archive_url})
        response = await self.request_bytes(
            archive_url,
            method="GET",
            organization_id=organization_id,
            include_auth_header=False,
        )
        self.logger.debug(
            "Analysis archive downloaded",
            extra={"archive_url": archive_url, "size_bytes": len(response.data)},
        )
        return response.data
