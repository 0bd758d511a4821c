"""Custom exception classes for the offer ingestion core."""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Optional

BODY_PREVIEW_LIMIT = 512


class AnalysisErrorCode(str, Enum):
    """Failure kinds surfaced by the analysis task client."""

    HTTP_ERROR = "HTTP_ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    NO_TASK_ID = "NO_TASK_ID"
    NO_RESULT_URL = "NO_RESULT_URL"
    TASK_FAILED = "TASK_FAILED"
    ARCHIVE_ERROR = "ARCHIVE_ERROR"
    EMPTY_ANALYSIS = "EMPTY_ANALYSIS"


@dataclass(frozen=True)
class AnalysisErrorContext:
    """Context attached to analysis errors so callers can log without re-deriving it."""

    endpoint: Optional[str] = None
    status: Optional[int] = None
    request_id: Optional[str] = None
    response_body: Optional[str] = None
    hint: Optional[str] = None


def create_body_preview(body: Optional[str]) -> Optional[str]:
    """Truncate a response body for logs and error context."""
    if not body:
        return None
    if len(body) <= BODY_PREVIEW_LIMIT:
        return body
    return f"{body[:BODY_PREVIEW_LIMIT]}…"


class OfferIngestError(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ConfigurationError(OfferIngestError):
    """Raised when configuration is invalid or missing."""

    pass


class DocumentParseError(OfferIngestError):
    """Raised when the legacy text-only parser cannot read a document."""

    pass


class ExtractionError(OfferIngestError):
    """Raised when the secondary AI extraction fails."""

    pass


class AnalysisError(OfferIngestError):
    """Raised when a document cannot be driven through the remote analysis service.

    Attributes:
        code: Failure kind
        context: Endpoint, status, request id and remote hint, when known
    """

    def __init__(
        self,
        message: str,
        code: AnalysisErrorCode,
        context: Optional[AnalysisErrorContext] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message, original_error=original_error)
        self.code = AnalysisErrorCode(code)
        self.context = context or AnalysisErrorContext()

    @property
    def status(self) -> Optional[int]:
        return self.context.status

    @property
    def endpoint(self) -> Optional[str]:
        return self.context.endpoint

    @property
    def hint(self) -> Optional[str]:
        return self.context.hint

    @property
    def request_id(self) -> Optional[str]:
        return self.context.request_id

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for logging or for storing on a document record."""
        payload: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        payload.update({k: v for k, v in asdict(self.context).items() if v is not None})
        return payload

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class AnalysisHttpError(AnalysisError):
    """Raised for non-2xx responses from the analysis service.

    A 504 status maps to the TIMEOUT kind unless a code is given explicitly.
    """

    def __init__(
        self,
        message: str,
        status: int,
        endpoint: str,
        request_id: Optional[str] = None,
        response_body: Optional[str] = None,
        hint: Optional[str] = None,
        code: Optional[AnalysisErrorCode] = None,
        original_error: Optional[Exception] = None,
    ):
        if code is None:
            code = AnalysisErrorCode.TIMEOUT if status == 504 else AnalysisErrorCode.HTTP_ERROR
        super().__init__(
            message,
            code=code,
            context=AnalysisErrorContext(
                endpoint=endpoint,
                status=status,
                request_id=request_id,
                response_body=response_body,
                hint=hint,
            ),
            original_error=original_error,
        )


class AnalysisCancelledError(AnalysisError):
    """Raised when the caller cancels an analysis before it completes."""

    def __init__(self, message: str = "Analysis cancelled by caller", context: Optional[AnalysisErrorContext] = None):
        super().__init__(message, code=AnalysisErrorCode.CANCELLED, context=context)


def is_analysis_error(error: BaseException) -> bool:
    """Return True when the error belongs to the analysis error family."""
    return isinstance(error, AnalysisError)
