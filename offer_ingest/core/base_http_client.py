import asyncio
import json
import random
import re
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx
from httpx import HTTPStatusError, RequestError, TimeoutException

from offer_ingest.core.exceptions import (
    AnalysisError,
    AnalysisErrorCode,
    AnalysisErrorContext,
    AnalysisHttpError,
    create_body_preview,
)
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_STATUS_HINTS: Dict[int, str] = {
    401: "invalid or missing API key",
    403: "organization is not allowed to use this endpoint",
    404: "document not found / check endpoint",
    429: "rate limited by the analysis service",
}

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)


def sanitize_base_url(url: str) -> str:
    return url.strip().rstrip("/")


@dataclass(frozen=True)
class HTTPResponse:
    """Parsed response plus the transport details needed for error context."""

    data: Any
    status: int
    headers: httpx.Headers
    request_id: str
    endpoint: str
    raw_body: Optional[str] = None


class BaseHTTPClient:
    """Base client for the remote analysis service.

    Handles common logic for HTTP requests, retries, timeout management,
    and error logging. Only transient failures (timeouts, connection errors
    and 5xx responses) are retried; 4xx responses fail immediately.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        organization_id: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the HTTP client.

        Args:
            api_key: API key for bearer authentication
            base_url: Base URL for the API
            timeout: Per-request timeout in seconds (minimum 1s)
            max_retries: Retries after the first attempt for transient failures
            retry_delay: Base delay for exponential backoff
            organization_id: Default organization sent with every request
            http_client: Optional shared httpx client (not closed by this class)
        """
        self.api_key = api_key
        self.base_url = sanitize_base_url(base_url)
        self.timeout = max(1.0, float(timeout))
        self.max_retries = max(0, int(max_retries))
        self.retry_delay = max(0.0, float(retry_delay))
        self.organization_id = (organization_id or "").strip() or None
        self._http_client = http_client
        self.logger = LOGGER

    async def request_json(
        self,
        path_or_url: str,
        method: str = "GET",
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        organization_id: Optional[str] = None,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
        include_auth_header: bool = True,
    ) -> HTTPResponse:
        """Call the API and parse the JSON body.

        Returns:
            HTTPResponse whose ``data`` is the parsed body, or None for an empty body

        Raises:
            AnalysisHttpError: Non-2xx response or timeout after retries
            AnalysisError: INVALID_RESPONSE for a non-JSON body, HTTP_ERROR for
                transport failures after retries
        """

        async def parse(response: httpx.Response, rid: str) -> HTTPResponse:
            raw_body = response.text or None
            data = None
            if raw_body and raw_body.strip():
                try:
                    data = json.loads(raw_body)
                except json.JSONDecodeError as e:
                    raise AnalysisError(
                        "Analysis service response is not valid JSON",
                        code=AnalysisErrorCode.INVALID_RESPONSE,
                        context=AnalysisErrorContext(
                            endpoint=str(response.url),
                            status=response.status_code,
                            request_id=rid,
                            response_body=create_body_preview(raw_body),
                        ),
                        original_error=e,
                    ) from e
            return HTTPResponse(
                data=data,
                status=response.status_code,
                headers=response.headers,
                request_id=rid,
                endpoint=str(response.url),
                raw_body=raw_body,
            )

        return await self._execute(
            path_or_url,
            method=method,
            payload=payload,
            headers=headers,
            organization_id=organization_id,
            timeout=timeout,
            request_id=request_id,
            include_auth_header=include_auth_header,
            parser=parse,
        )

    async def request_bytes(
        self,
        path_or_url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        organization_id: Optional[str] = None,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
        include_auth_header: bool = True,
    ) -> HTTPResponse:
        """Call the API and return the raw body bytes."""

        async def parse(response: httpx.Response, rid: str) -> HTTPResponse:
            return HTTPResponse(
                data=response.content,
                status=response.status_code,
                headers=response.headers,
                request_id=rid,
                endpoint=str(response.url),
            )

        return await self._execute(
            path_or_url,
            method=method,
            headers=headers,
            organization_id=organization_id,
            timeout=timeout,
            request_id=request_id,
            include_auth_header=include_auth_header,
            parser=parse,
        )

    async def _execute(
        self,
        path_or_url: str,
        method: str,
        parser: Callable[[httpx.Response, str], Awaitable[HTTPResponse]],
        payload: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        organization_id: Optional[str] = None,
        timeout: Optional[float] = None,
        request_id: Optional[str] = None,
        include_auth_header: bool = True,
    ) -> HTTPResponse:
        request_id = request_id or str(uuid.uuid4())
        url = self.build_url(path_or_url)
        request_headers = self.build_headers(
            headers=headers,
            request_id=request_id,
            organization_id=organization_id,
            has_body=payload is not None and method.upper() != "GET",
            include_auth_header=include_auth_header,
        )
        effective_timeout = max(1.0, timeout if timeout is not None else self.timeout)

        async with self._client() as client:
            for attempt in range(self.max_retries + 1):
                started = time.monotonic()
                try:
                    if method.upper() == "GET":
                        response = await client.request(
                            "GET", url, headers=request_headers, params=payload, timeout=effective_timeout
                        )
                    else:
                        response = await client.request(
                            method.upper(), url, headers=request_headers, json=payload, timeout=effective_timeout
                        )
                    self._log_response(request_id, str(response.url), method, response.status_code, started, response)
                    response.raise_for_status()
                    return await parser(response, request_id)

                except HTTPStatusError as e:
                    await self._handle_http_error(e, attempt, request_id)

                except TimeoutException as e:
                    self._log_response(request_id, url, method, 0, started, None, "[timeout]")
                    await self._handle_timeout_error(e, attempt, url, request_id, effective_timeout)

                except RequestError as e:
                    self._log_response(request_id, url, method, 0, started, None, f"[{type(e).__name__}]")
                    await self._handle_transport_error(e, attempt, url, request_id)

        raise AnalysisError(
            f"Failed to call {url} after {self.max_retries + 1} attempts",
            code=AnalysisErrorCode.HTTP_ERROR,
            context=AnalysisErrorContext(endpoint=url, request_id=request_id),
        )

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            yield client

    def build_url(self, path_or_url: str) -> str:
        """Resolve a path against the base URL; absolute URLs pass through."""
        if _ABSOLUTE_URL.match(path_or_url):
            return path_or_url
        normalized_path = path_or_url.lstrip("/")
        if not normalized_path:
            return self.base_url
        return f"{self.base_url}/{normalized_path}"

    def build_headers(
        self,
        request_id: str,
        headers: Optional[Dict[str, str]] = None,
        organization_id: Optional[str] = None,
        has_body: bool = False,
        include_auth_header: bool = True,
    ) -> Dict[str, str]:
        """Build request headers.

        A per-call organization overrides the instance default; blank values
        are ignored.
        """
        result: Dict[str, str] = dict(headers or {})
        if include_auth_header:
            result["Authorization"] = f"Bearer {self.api_key}"
        if has_body and "Content-Type" not in result:
            result["Content-Type"] = "application/json"

        effective_organization = self.resolve_organization_id(organization_id)
        if effective_organization:
            result["X-Organization-Id"] = effective_organization

        result["X-Request-Id"] = request_id
        return result

    def resolve_organization_id(self, override: Optional[str] = None) -> Optional[str]:
        return (override or "").strip() or self.organization_id

    async def _handle_http_error(self, error: HTTPStatusError, attempt: int, request_id: str) -> None:
        """Handle HTTP status errors; raises unless the failure is retryable."""
        response = error.response
        status_code = response.status_code
        endpoint = str(response.url)

        try:
            error_body = response.text
        except (httpx.ResponseNotRead, UnicodeDecodeError):
            error_body = None

        preview = create_body_preview(error_body)
        http_error = AnalysisHttpError(
            f"Analysis request failed ({status_code})",
            status=status_code,
            endpoint=endpoint,
            request_id=request_id,
            response_body=preview,
            hint=extract_error_hint(response, error_body),
            original_error=error,
        )

        self.logger.warning(
            f"API HTTP error (Attempt {attempt + 1}/{self.max_retries + 1})",
            extra={
                "url": endpoint,
                "status_code": status_code,
                "request_id": request_id,
                "error_body": preview,
            },
        )

        # Client errors are never retried
        if not self.should_retry(status_code):
            raise http_error from error

        if attempt < self.max_retries:
            await self._wait_before_retry(attempt)
        else:
            raise http_error from error

    async def _handle_timeout_error(
        self, error: TimeoutException, attempt: int, url: str, request_id: str, timeout: float
    ) -> None:
        """Handle timeout errors."""
        self.logger.warning(
            f"API Timeout (Attempt {attempt + 1}/{self.max_retries + 1})",
            extra={"url": url, "request_id": request_id},
        )

        if attempt < self.max_retries:
            await self._wait_before_retry(attempt)
        else:
            raise AnalysisHttpError(
                f"Analysis request timed out after {timeout:.0f}s",
                status=504,
                endpoint=url,
                request_id=request_id,
                code=AnalysisErrorCode.TIMEOUT,
                original_error=error,
            ) from error

    async def _handle_transport_error(self, error: RequestError, attempt: int, url: str, request_id: str) -> None:
        """Handle connection-level errors raised before any response arrived."""
        self.logger.warning(
            f"API transport error (Attempt {attempt + 1}/{self.max_retries + 1})",
            extra={"url": url, "request_id": request_id, "error": str(error)},
        )

        if attempt < self.max_retries:
            await self._wait_before_retry(attempt)
        else:
            raise AnalysisError(
                "Analysis request failed before receiving a response",
                code=AnalysisErrorCode.HTTP_ERROR,
                context=AnalysisErrorContext(endpoint=url, request_id=request_id),
                original_error=error,
            ) from error

    @staticmethod
    def should_retry(status_code: int) -> bool:
        return 500 <= status_code < 600

    async def _wait_before_retry(self, attempt: int) -> None:
        """Exponential backoff wait with jitter."""
        wait_time = self.retry_delay * (2**attempt) + random.uniform(0, self.retry_delay)
        self.logger.debug("Waiting before retry", extra={"wait_seconds": round(wait_time, 3)})
        await asyncio.sleep(wait_time)

    def _log_response(
        self,
        request_id: str,
        endpoint: str,
        method: str,
        status: int,
        started: float,
        response: Optional[httpx.Response],
        body_preview: Optional[str] = None,
    ) -> None:
        if response is not None and body_preview is None:
            content_type = response.headers.get("content-type", "")
            if "json" in content_type or "text" in content_type:
                body_preview = create_body_preview(response.text)
            else:
                body_preview = f"[binary {len(response.content)} bytes]"

        self.logger.debug(
            "Analysis HTTP",
            extra={
                "request_id": request_id,
                "endpoint": endpoint,
                "method": method.upper(),
                "status": status,
                "duration_ms": int((time.monotonic() - started) * 1000),
                "body_preview": body_preview,
            },
        )


def extract_error_hint(response: httpx.Response, body: Optional[str]) -> Optional[str]:
    """Pull a remote error hint from the header, the JSON body or the status."""
    header_hint = response.headers.get("x-error-code")
    if header_hint:
        return header_hint

    if body:
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            nested = parsed.get("error")
            candidates = [
                parsed.get("code"),
                nested.get("code") if isinstance(nested, dict) else nested,
                parsed.get("msg"),
                parsed.get("message"),
            ]
            for candidate in candidates:
                if isinstance(candidate, (str, int)) and not isinstance(candidate, bool) and str(candidate).strip():
                    return str(candidate).strip()

    return DEFAULT_STATUS_HINTS.get(response.status_code)
