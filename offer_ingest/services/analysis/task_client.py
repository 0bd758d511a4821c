import asyncio
import time
from typing import Any, Awaitable, Dict, Optional, TypeVar

import httpx

from offer_ingest.core.base_http_client import HTTPResponse
from offer_ingest.core.config import Settings, get_settings
from offer_ingest.core.exceptions import (
    AnalysisCancelledError,
    AnalysisError,
    AnalysisErrorCode,
    AnalysisErrorContext,
    ConfigurationError,
    create_body_preview,
)
from offer_ingest.models.analysis_models import AnalysisResult, AnalysisTask, TaskState
from offer_ingest.repositories.analysis_repository import AnalysisRepository
from offer_ingest.services.analysis.archive_decoder import decode_archive, normalize_analysis_payload
from offer_ingest.services.analysis.task_parsing import build_task_snapshot
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")

TASK_FAILED_STATUS = 502


class AnalysisTaskClient:
    """Drives one document through the remote analysis service.

    Submits a task, polls it until a terminal state, then downloads and
    decodes the result archive. Transient HTTP failures are retried inside
    the repository; everything else surfaces as an ``AnalysisError``.

    The client keeps no per-call state, so one instance can serve concurrent
    ``analyze`` calls.
    """

    def __init__(
        self,
        repository: AnalysisRepository,
        poll_interval: float = 2.0,
        poll_timeout: float = 300.0,
        max_poll_attempts: Optional[int] = None,
        allow_empty: bool = True,
    ):
        """Initialize the task client.

        Args:
            repository: Repository used for all service calls
            poll_interval: Seconds to wait between polls
            poll_timeout: Wall-clock budget for the whole poll loop
            max_poll_attempts: Optional cap on the number of polls
            allow_empty: Return empty results instead of raising EMPTY_ANALYSIS
        """
        self.repository = repository
        self.poll_interval = max(0.0, poll_interval)
        self.poll_timeout = max(0.0, poll_timeout)
        self.max_poll_attempts = max_poll_attempts
        self.allow_empty = allow_empty
        self.logger = LOGGER

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        allow_empty: bool = True,
    ) -> "AnalysisTaskClient":
        """Build a client from application settings.

        Raises:
            ConfigurationError: If no API key is configured
        """
        settings = settings or get_settings()
        analysis = settings.analysis
        if not analysis.api_key:
            raise ConfigurationError("ANALYSIS_API_KEY is not configured")

        repository = AnalysisRepository(
            api_key=analysis.api_key,
            api_url=analysis.api_url,
            timeout=analysis.request_timeout,
            max_retries=analysis.max_retries,
            retry_delay=analysis.retry_delay,
            organization_id=analysis.organization_id,
            http_client=http_client,
        )
        return cls(
            repository=repository,
            poll_interval=analysis.poll_interval,
            poll_timeout=analysis.poll_timeout,
            max_poll_attempts=analysis.max_poll_attempts,
            allow_empty=allow_empty,
        )

    async def analyze(
        self,
        signed_url: str,
        document_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AnalysisResult:
        """Analyze a document referenced by a signed URL.

        Args:
            signed_url: Time-limited URL the service downloads the document from
            document_id: Caller's document identifier
            organization_id: Organization override for every request of this call
            cancel_event: Setting this event aborts the in-flight request and polling

        Returns:
            AnalysisResult: Decoded pages, full text and structure summary

        Raises:
            AnalysisCancelledError: If ``cancel_event`` is set before completion
            AnalysisError: For every other failure kind
        """
        if not isinstance(signed_url, str) or not signed_url.strip():
            raise AnalysisError(
                "A signed document URL is required for analysis",
                code=AnalysisErrorCode.INVALID_ARGUMENT,
            )

        signed_url = signed_url.strip()
        started = time.monotonic()

        submission = await self._run_cancellable(
            self.repository.submit_task(signed_url, document_id=document_id, organization_id=organization_id),
            cancel_event,
        )
        task = build_task_snapshot(self._require_object(submission))

        self.logger.info(
            "Analysis task submitted",
            extra={
                "document_id": document_id,
                "task_id": task.task_id,
                "state": task.state.value,
                "request_id": submission.request_id,
            },
        )

        if not task.is_terminal:
            if not task.task_id:
                raise AnalysisError(
                    "Analysis service did not return a task identifier",
                    code=AnalysisErrorCode.NO_TASK_ID,
                    context=AnalysisErrorContext(
                        endpoint=submission.endpoint,
                        status=submission.status,
                        request_id=submission.request_id,
                    ),
                )
            task = await self._poll_until_terminal(task, organization_id, cancel_event)

        if task.state == TaskState.FAILED:
            raise self._task_failed_error(task)

        if not task.result_archive_url:
            raise AnalysisError(
                f"Analysis task {task.task_id} succeeded without a result archive",
                code=AnalysisErrorCode.NO_RESULT_URL,
            )

        archive = await self._run_cancellable(
            self.repository.download_archive(task.result_archive_url, organization_id=organization_id),
            cancel_event,
        )
        result = normalize_analysis_payload(decode_archive(archive), task_id=task.task_id)

        if result.is_empty and not self.allow_empty:
            raise AnalysisError(
                f"Analysis task {task.task_id} produced no text or pages",
                code=AnalysisErrorCode.EMPTY_ANALYSIS,
            )

        self.logger.info(
            "Analysis completed",
            extra={
                "document_id": document_id,
                "task_id": task.task_id,
                "page_count": len(result.pages),
                "text_length": len(result.text),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return result

    async def _poll_until_terminal(
        self,
        task: AnalysisTask,
        organization_id: Optional[str],
        cancel_event: Optional[asyncio.Event],
    ) -> AnalysisTask:
        task_id = task.task_id
        deadline = time.monotonic() + self.poll_timeout
        attempts = 0

        while not task.is_terminal:
            remaining = deadline - time.monotonic()
            budget_spent = self.max_poll_attempts is not None and attempts >= self.max_poll_attempts
            if remaining <= 0 or budget_spent:
                self.logger.error(
                    "Analysis polling budget exhausted",
                    extra={"task_id": task_id, "attempts": attempts, "last_state": task.raw_state},
                )
                raise AnalysisError(
                    f"Analysis task {task_id} did not finish after {attempts} polls",
                    code=AnalysisErrorCode.TIMEOUT,
                )

            await self._run_cancellable(asyncio.sleep(min(self.poll_interval, remaining)), cancel_event)
            attempts += 1

            response = await self._run_cancellable(
                self.repository.get_task(task_id, organization_id=organization_id),
                cancel_event,
            )
            task = build_task_snapshot(self._require_object(response), fallback_task_id=task_id)
            self.logger.debug(
                "Polled analysis task",
                extra={"task_id": task_id, "attempt": attempts, "state": task.raw_state},
            )

        return task

    def _require_object(self, response: HTTPResponse) -> Dict[str, Any]:
        """Return the decoded body, which must be a JSON object.

        Raises:
            AnalysisError: INVALID_RESPONSE for an empty or non-object body
        """
        if isinstance(response.data, dict):
            return response.data

        self.logger.error(
            "Analysis service returned an empty or non-object body",
            extra={"endpoint": response.endpoint, "status": response.status, "request_id": response.request_id},
        )
        raise AnalysisError(
            "Analysis service returned an empty or non-object response",
            code=AnalysisErrorCode.INVALID_RESPONSE,
            context=AnalysisErrorContext(
                endpoint=response.endpoint,
                status=response.status,
                request_id=response.request_id,
                response_body=create_body_preview(response.raw_body),
            ),
        )

    def _task_failed_error(self, task: AnalysisTask) -> AnalysisError:
        detail = task.error_message or task.error_code or "unknown error"
        self.logger.error(
            "Analysis task failed",
            extra={"task_id": task.task_id, "error_code": task.error_code, "error_message": task.error_message},
        )
        return AnalysisError(
            f"Analysis task {task.task_id} failed: {detail}",
            code=AnalysisErrorCode.TASK_FAILED,
            context=AnalysisErrorContext(status=TASK_FAILED_STATUS, hint=task.error_code),
        )

    async def _run_cancellable(self, operation: Awaitable[T], cancel_event: Optional[asyncio.Event]) -> T:
        """Await ``operation`` unless ``cancel_event`` fires first.

        On cancellation the in-flight operation is cancelled and awaited
        before ``AnalysisCancelledError`` is raised.
        """
        if cancel_event is None:
            return await operation

        if cancel_event.is_set():
            _close(operation)
            raise AnalysisCancelledError()

        operation_task = asyncio.ensure_future(operation)
        cancel_waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({operation_task, cancel_waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            operation_task.cancel()
            cancel_waiter.cancel()
            raise

        if operation_task in done:
            cancel_waiter.cancel()
            return operation_task.result()

        operation_task.cancel()
        await asyncio.gather(operation_task, return_exceptions=True)
        self.logger.info("Analysis cancelled by caller")
        raise AnalysisCancelledError()


def _close(operation: Any) -> None:
    close = getattr(operation, "close", None)
    if callable(close):
        close()
