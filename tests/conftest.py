"""Pytest configuration and shared fixtures."""

import io
import json
import zipfile
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from offer_ingest.core.config import ClassifierSettings
from offer_ingest.repositories.analysis_repository import AnalysisRepository
from offer_ingest.services.analysis.task_client import AnalysisTaskClient
from offer_ingest.services.classification.section_classifier import SectionClassifier

BASE_URL = "https://api.analysis.test/api/v4"
SUBMIT_URL = f"{BASE_URL}/extract/task"
ARCHIVE_URL = "https://cdn.analysis.test/results/task-123.zip"

ScriptedItem = Union[httpx.Response, Callable[[httpx.Request], Any]]


class ScriptedTransport:
    """Route-based fake for the analysis service.

    Each route holds a queue of responses; the last one repeats once the
    queue is drained. Callables receive the request and may return a
    response, return a coroutine, or raise a transport error.
    """

    def __init__(self) -> None:
        self.routes: Dict[Tuple[str, str], List[ScriptedItem]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, *items: ScriptedItem) -> "ScriptedTransport":
        self.routes.setdefault((method.upper(), url), []).extend(items)
        return self

    def calls(self, method: Optional[str] = None, url: Optional[str] = None) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if (method is None or request.method == method.upper())
            and (url is None or str(request.url) == url)
        ]

    def __call__(self, request: httpx.Request) -> Any:
        self.requests.append(request)
        queue = self.routes.get((request.method, str(request.url)))
        if not queue:
            return httpx.Response(599, json={"error": f"unrouted {request.method} {request.url}"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, httpx.Response):
            # Fresh copy so a repeated response is never reused across requests
            return httpx.Response(item.status_code, headers=item.headers, content=item.content)
        return item(request)


def build_archive(entries: Dict[str, Union[bytes, str, Dict[str, Any]]]) -> bytes:
    """Build an in-memory zip archive from entry name to content."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in entries.items():
            if isinstance(content, dict):
                content = json.dumps(content)
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def sample_analysis_payload() -> Dict[str, Any]:
    """Archive payload in the canonical service shape.

    Returns:
        Dict: Decoded analysis.json content
    """
    return {
        "data": {
            "pages": [{"pageNumber": 1, "text": "Sample text"}],
            "text": "Sample text",
            "structureSummary": {"confidence": 0.9},
        }
    }


@pytest.fixture
def sample_archive(sample_analysis_payload: Dict[str, Any]) -> bytes:
    """Zip archive holding the sample payload as analysis.json."""
    return build_archive({"analysis.json": sample_analysis_payload})


@pytest.fixture
def transport() -> ScriptedTransport:
    """Scripted fake of the remote analysis service."""
    return ScriptedTransport()


@pytest.fixture
def http_client(transport: ScriptedTransport) -> httpx.AsyncClient:
    """httpx client routed through the scripted transport."""
    return httpx.AsyncClient(transport=httpx.MockTransport(transport))


@pytest.fixture
def repository(http_client: httpx.AsyncClient) -> AnalysisRepository:
    """Analysis repository with zero backoff.

    Returns:
        AnalysisRepository: Repository bound to the scripted transport
    """
    return AnalysisRepository(
        api_key="test-api-key",
        api_url=BASE_URL,
        timeout=5,
        max_retries=3,
        retry_delay=0,
        http_client=http_client,
    )


@pytest.fixture
def task_client(repository: AnalysisRepository) -> AnalysisTaskClient:
    """Task client that polls without waiting."""
    return AnalysisTaskClient(repository, poll_interval=0, poll_timeout=5)


@pytest.fixture
def classifier() -> SectionClassifier:
    """Section classifier with default thresholds."""
    return SectionClassifier(settings=ClassifierSettings())


@pytest.fixture
def archive_builder() -> Callable[[Dict[str, Union[bytes, str, Dict[str, Any]]]], bytes]:
    """Factory for in-memory result archives."""
    return build_archive


@pytest.fixture
def service_urls() -> Dict[str, str]:
    """Endpoints of the scripted analysis service."""
    return {"base": BASE_URL, "submit": SUBMIT_URL, "archive": ARCHIVE_URL}
