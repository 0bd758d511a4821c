"""Tests for the analysis task client."""

import asyncio
import json

import httpx
import pytest

from offer_ingest.core.config import AnalysisServiceSettings, Settings
from offer_ingest.core.exceptions import (
    AnalysisCancelledError,
    AnalysisError,
    AnalysisErrorCode,
    AnalysisHttpError,
    ConfigurationError,
)
from offer_ingest.repositories.analysis_repository import AnalysisRepository, resolve_analysis_base_url
from offer_ingest.services.analysis.task_client import AnalysisTaskClient

BASE_URL = "https://api.analysis.test/api/v4"
SUBMIT_URL = f"{BASE_URL}/extract/task"
POLL_URL = f"{SUBMIT_URL}/task-123"
ARCHIVE_URL = "https://cdn.analysis.test/results/task-123.zip"
SIGNED_URL = "https://storage.test/offers/doc-1.pdf?token=abc"


def done_response() -> httpx.Response:
    return httpx.Response(200, json={"data": {"task_id": "task-123", "state": "done", "full_zip_url": ARCHIVE_URL}})


class TestAnalyze:
    """End-to-end behaviour of analyze against a scripted service."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "submit_payload",
        [
            {"task_id": "task-123"},
            {"task": {"task_id": "task-123"}},
            {"data": {"task": {"task_id": "task-123"}}},
        ],
    )
    async def test_every_submit_shape_polls_same_endpoint(
        self, task_client: AnalysisTaskClient, transport, sample_archive: bytes, submit_payload
    ) -> None:
        """Test that all task id shapes lead to the same poll path."""
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json=submit_payload))
        transport.add("GET", POLL_URL, httpx.Response(200, json={"state": "running"}), done_response())
        transport.add("GET", ARCHIVE_URL, httpx.Response(200, content=sample_archive))

        result = await task_client.analyze(SIGNED_URL, document_id="doc-1")

        assert result.pages[0].text == "Sample text"
        assert result.task_id == "task-123"
        assert len(transport.calls("GET", POLL_URL)) == 2

    @pytest.mark.asyncio
    async def test_immediate_success_skips_polling(
        self, task_client: AnalysisTaskClient, transport, sample_archive: bytes
    ) -> None:
        """Test that an archive URL in the submit response goes straight to download."""
        transport.add("POST", SUBMIT_URL, done_response())
        transport.add("GET", ARCHIVE_URL, httpx.Response(200, content=sample_archive))

        result = await task_client.analyze(SIGNED_URL)

        assert result.text == "Sample text"
        assert [request.method for request in transport.requests] == ["POST", "GET"]
        assert str(transport.requests[1].url) == ARCHIVE_URL

    @pytest.mark.asyncio
    async def test_terminal_failure_raises_task_failed(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test that a failed task carries the remote code and message with no further calls."""
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json={"task_id": "task-123"}))
        transport.add(
            "GET",
            POLL_URL,
            httpx.Response(200, json={"state": "failed", "error": {"code": "E_PDF", "message": "encrypted pdf"}}),
        )

        with pytest.raises(AnalysisError) as exc_info:
            await task_client.analyze(SIGNED_URL)

        error = exc_info.value
        assert error.code == AnalysisErrorCode.TASK_FAILED
        assert error.hint == "E_PDF"
        assert error.status == 502
        assert "encrypted pdf" in error.message
        assert len(transport.requests) == 2

    @pytest.mark.asyncio
    async def test_failure_in_submit_response_skips_polling(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test an immediately terminal failure."""
        transport.add(
            "POST",
            SUBMIT_URL,
            httpx.Response(200, json={"task_id": "task-123", "status": "error", "err_msg": "quota exceeded"}),
        )

        with pytest.raises(AnalysisError) as exc_info:
            await task_client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.TASK_FAILED
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_poll_retries_server_errors(
        self, task_client: AnalysisTaskClient, transport, sample_archive: bytes
    ) -> None:
        """Test that three 5xx poll responses followed by success still complete."""
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json={"task_id": "task-123"}))
        transport.add(
            "GET",
            POLL_URL,
            httpx.Response(500),
            httpx.Response(502),
            httpx.Response(503),
            done_response(),
        )
        transport.add("GET", ARCHIVE_URL, httpx.Response(200, content=sample_archive))

        result = await task_client.analyze(SIGNED_URL)

        assert result.text == "Sample text"
        assert len(transport.calls("GET", POLL_URL)) == 4

    @pytest.mark.asyncio
    async def test_client_error_on_submit_is_not_retried(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test that a single 400 fails immediately."""
        transport.add("POST", SUBMIT_URL, httpx.Response(400, json={"msg": "invalid url"}))

        with pytest.raises(AnalysisHttpError) as exc_info:
            await task_client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.HTTP_ERROR
        assert exc_info.value.status == 400
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_task_id(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test a submit response with neither task id nor archive."""
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json={"code": 0, "msg": "ok"}))

        with pytest.raises(AnalysisError) as exc_info:
            await task_client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.NO_TASK_ID

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [b"", b"   ", b"[1, 2]", b'"queued"'])
    async def test_empty_submit_body_is_invalid_response(
        self, task_client: AnalysisTaskClient, transport, body: bytes
    ) -> None:
        """Test that an empty or non-object submit body is not mistaken for a missing task id."""
        transport.add("POST", SUBMIT_URL, httpx.Response(200, content=body))

        with pytest.raises(AnalysisError) as exc_info:
            await task_client.analyze(SIGNED_URL)

        error = exc_info.value
        assert error.code == AnalysisErrorCode.INVALID_RESPONSE
        assert error.status == 200
        assert error.endpoint == SUBMIT_URL
        assert error.request_id
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_empty_poll_body_is_invalid_response(self, repository: AnalysisRepository, transport) -> None:
        """Test that an empty poll body fails at once instead of exhausting the poll budget."""
        client = AnalysisTaskClient(repository, poll_interval=0, poll_timeout=60, max_poll_attempts=5)
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json={"task_id": "task-123"}))
        transport.add("GET", POLL_URL, httpx.Response(200, content=b""))

        with pytest.raises(AnalysisError) as exc_info:
            await client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.INVALID_RESPONSE
        assert exc_info.value.endpoint == POLL_URL
        assert len(transport.calls("GET", POLL_URL)) == 1

    @pytest.mark.asyncio
    async def test_success_without_archive_url(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test a succeeded task that has no archive reference."""
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json={"task_id": "task-123"}))
        transport.add("GET", POLL_URL, httpx.Response(200, json={"state": "succeeded"}))

        with pytest.raises(AnalysisError) as exc_info:
            await task_client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.NO_RESULT_URL

    @pytest.mark.asyncio
    async def test_poll_budget_exhaustion_is_timeout(self, repository: AnalysisRepository, transport) -> None:
        """Test that a task stuck in processing times out after the attempt budget."""
        client = AnalysisTaskClient(repository, poll_interval=0, poll_timeout=60, max_poll_attempts=3)
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json={"task_id": "task-123"}))
        transport.add("GET", POLL_URL, httpx.Response(200, json={"state": "processing"}))

        with pytest.raises(AnalysisError) as exc_info:
            await client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.TIMEOUT
        assert "task-123" in exc_info.value.message
        assert len(transport.calls("GET", POLL_URL)) == 3

    @pytest.mark.asyncio
    async def test_wall_clock_budget(self, repository: AnalysisRepository, transport) -> None:
        """Test that a zero wall-clock budget stops before polling."""
        client = AnalysisTaskClient(repository, poll_interval=0, poll_timeout=0)
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json={"task_id": "task-123"}))

        with pytest.raises(AnalysisError) as exc_info:
            await client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.TIMEOUT
        assert len(transport.calls("GET")) == 0

    @pytest.mark.asyncio
    async def test_archive_errors_propagate(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test that an unreadable archive fails the call."""
        transport.add("POST", SUBMIT_URL, done_response())
        transport.add("GET", ARCHIVE_URL, httpx.Response(200, content=b"not a zip"))

        with pytest.raises(AnalysisError) as exc_info:
            await task_client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.ARCHIVE_ERROR

    @pytest.mark.asyncio
    async def test_empty_analysis_rejected_when_not_allowed(
        self, repository: AnalysisRepository, transport, archive_builder
    ) -> None:
        """Test EMPTY_ANALYSIS when empty results are disallowed."""
        client = AnalysisTaskClient(repository, poll_interval=0, allow_empty=False)
        transport.add("POST", SUBMIT_URL, done_response())
        transport.add("GET", ARCHIVE_URL, httpx.Response(200, content=archive_builder({"analysis.json": {"data": {}}})))

        with pytest.raises(AnalysisError) as exc_info:
            await client.analyze(SIGNED_URL)

        assert exc_info.value.code == AnalysisErrorCode.EMPTY_ANALYSIS

    @pytest.mark.asyncio
    async def test_empty_analysis_returned_by_default(
        self, task_client: AnalysisTaskClient, transport, archive_builder
    ) -> None:
        """Test that empty results pass through when allowed."""
        transport.add("POST", SUBMIT_URL, done_response())
        transport.add("GET", ARCHIVE_URL, httpx.Response(200, content=archive_builder({"analysis.json": {}})))

        result = await task_client.analyze(SIGNED_URL)

        assert result.is_empty

    @pytest.mark.asyncio
    @pytest.mark.parametrize("signed_url", ["", "   "])
    async def test_blank_url_is_invalid_argument(self, task_client: AnalysisTaskClient, transport, signed_url) -> None:
        """Test that no request is made without a document reference."""
        with pytest.raises(AnalysisError) as exc_info:
            await task_client.analyze(signed_url)

        assert exc_info.value.code == AnalysisErrorCode.INVALID_ARGUMENT
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_organization_override_applies_to_every_request(
        self, http_client: httpx.AsyncClient, transport, sample_archive: bytes
    ) -> None:
        """Test that a per-call organization reaches submit body and headers and each poll."""
        repository = AnalysisRepository(
            api_key="k", api_url=BASE_URL, retry_delay=0, organization_id="org-default", http_client=http_client
        )
        client = AnalysisTaskClient(repository, poll_interval=0)
        transport.add("POST", SUBMIT_URL, httpx.Response(200, json={"task_id": "task-123"}))
        transport.add("GET", POLL_URL, httpx.Response(200, json={"state": "pending"}), done_response())
        transport.add("GET", ARCHIVE_URL, httpx.Response(200, content=sample_archive))

        await client.analyze(SIGNED_URL, document_id="doc-1", organization_id="org-override")

        submit = transport.calls("POST", SUBMIT_URL)[0]
        assert json.loads(submit.content) == {
            "document_url": SIGNED_URL,
            "document_id": "doc-1",
            "organization_id": "org-override",
        }
        for request in [submit] + transport.calls("GET", POLL_URL):
            assert request.headers["X-Organization-Id"] == "org-override"

    @pytest.mark.asyncio
    async def test_default_organization_when_no_override(
        self, http_client: httpx.AsyncClient, transport, sample_archive: bytes
    ) -> None:
        """Test that the instance default is used without an override."""
        repository = AnalysisRepository(
            api_key="k", api_url=BASE_URL, retry_delay=0, organization_id="org-default", http_client=http_client
        )
        transport.add("POST", SUBMIT_URL, done_response())
        transport.add("GET", ARCHIVE_URL, httpx.Response(200, content=sample_archive))

        await AnalysisTaskClient(repository).analyze(SIGNED_URL)

        submit = transport.requests[0]
        assert submit.headers["X-Organization-Id"] == "org-default"
        assert json.loads(submit.content)["organization_id"] == "org-default"


class TestCancellation:
    """Caller-driven cancellation."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test that a pre-set event prevents any request."""
        cancel_event = asyncio.Event()
        cancel_event.set()

        with pytest.raises(AnalysisCancelledError) as exc_info:
            await task_client.analyze(SIGNED_URL, cancel_event=cancel_event)

        assert exc_info.value.code == AnalysisErrorCode.CANCELLED
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_cancellation_stops_polling(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test that cancelling after submission stops the poll loop."""
        cancel_event = asyncio.Event()

        def submit_then_cancel(request: httpx.Request) -> httpx.Response:
            cancel_event.set()
            return httpx.Response(200, json={"task_id": "task-123"})

        transport.add("POST", SUBMIT_URL, submit_then_cancel)

        with pytest.raises(AnalysisCancelledError):
            await task_client.analyze(SIGNED_URL, cancel_event=cancel_event)

        assert transport.calls("GET") == []

    @pytest.mark.asyncio
    async def test_cancellation_aborts_in_flight_request(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test that the in-flight HTTP request is abandoned on cancel."""
        cancel_event = asyncio.Event()
        request_aborted = asyncio.Event()

        async def hang(request: httpx.Request) -> httpx.Response:
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                request_aborted.set()
                raise
            return httpx.Response(200, json={})

        transport.add("POST", SUBMIT_URL, hang)
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)

        with pytest.raises(AnalysisCancelledError):
            await asyncio.wait_for(task_client.analyze(SIGNED_URL, cancel_event=cancel_event), timeout=5)

        assert request_aborted.is_set()

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self, task_client: AnalysisTaskClient, transport) -> None:
        """Test that cancelling the surrounding task is not converted."""

        async def hang(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(60)
            return httpx.Response(200, json={})

        transport.add("POST", SUBMIT_URL, hang)
        task = asyncio.ensure_future(task_client.analyze(SIGNED_URL, cancel_event=asyncio.Event()))
        await asyncio.sleep(0.05)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestConstruction:
    """Client construction from configuration."""

    def test_from_settings_requires_api_key(self) -> None:
        """Test that a missing key is a configuration error."""
        settings = Settings(analysis=AnalysisServiceSettings(api_key=""))

        with pytest.raises(ConfigurationError):
            AnalysisTaskClient.from_settings(settings)

    def test_from_settings_wires_repository(self) -> None:
        """Test that settings reach the repository and poll loop."""
        settings = Settings(
            analysis=AnalysisServiceSettings(
                api_key="key",
                api_url="https://api.mineru.com/v1/document/analyze",
                organization_id="  ",
                request_timeout=0.2,
                max_retries=-1,
                poll_interval=0.5,
            )
        )

        client = AnalysisTaskClient.from_settings(settings)

        assert client.repository.base_url == "https://api.mineru.com/v1"
        assert client.repository.organization_id is None
        assert client.repository.timeout == 1.0
        assert client.repository.max_retries == 0
        assert client.poll_interval == 0.5

    def test_base_url_resolution(self, monkeypatch) -> None:
        """Test explicit, environment and default base URLs."""
        monkeypatch.setenv("ANALYSIS_API_URL", "https://env.analysis.test/v2/")
        assert resolve_analysis_base_url("https://explicit.test/v1/document/analyze") == "https://explicit.test/v1"
        assert resolve_analysis_base_url(None) == "https://env.analysis.test/v2"

        monkeypatch.delenv("ANALYSIS_API_URL")
        assert resolve_analysis_base_url("  ") == "https://mineru.net/api/v4"
