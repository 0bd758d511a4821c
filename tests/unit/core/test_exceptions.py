"""Tests for the analysis error family."""

import pytest

from offer_ingest.core.exceptions import (
    BODY_PREVIEW_LIMIT,
    AnalysisCancelledError,
    AnalysisError,
    AnalysisErrorCode,
    AnalysisErrorContext,
    AnalysisHttpError,
    ExtractionError,
    OfferIngestError,
    create_body_preview,
    is_analysis_error,
)


class TestAnalysisErrors:
    """Error kinds and context."""

    def test_context_accessors_and_dict(self) -> None:
        """Test that context fields are reachable and serialized without blanks."""
        error = AnalysisError(
            "Task failed",
            code=AnalysisErrorCode.TASK_FAILED,
            context=AnalysisErrorContext(status=502, hint="E_PDF"),
        )

        assert error.status == 502
        assert error.hint == "E_PDF"
        assert error.endpoint is None
        assert error.to_dict() == {"code": "TASK_FAILED", "message": "Task failed", "status": 502, "hint": "E_PDF"}

    @pytest.mark.parametrize(
        "status, expected",
        [(504, AnalysisErrorCode.TIMEOUT), (500, AnalysisErrorCode.HTTP_ERROR), (404, AnalysisErrorCode.HTTP_ERROR)],
    )
    def test_http_error_kind_follows_status(self, status, expected) -> None:
        """Test that only a 504 maps to TIMEOUT."""
        error = AnalysisHttpError("failed", status=status, endpoint="https://a.test/x")

        assert error.code == expected
        assert error.endpoint == "https://a.test/x"

    def test_code_accepts_string_values(self) -> None:
        """Test that codes may be passed by value."""
        assert AnalysisError("x", code="NO_TASK_ID").code == AnalysisErrorCode.NO_TASK_ID

    def test_hierarchy(self) -> None:
        """Test the shared base class and the family check."""
        cancelled = AnalysisCancelledError()

        assert cancelled.code == AnalysisErrorCode.CANCELLED
        assert isinstance(cancelled, OfferIngestError)
        assert is_analysis_error(cancelled)
        assert not is_analysis_error(ExtractionError("ai"))
        assert not is_analysis_error(ValueError("other"))


class TestBodyPreview:
    """Response body previews."""

    def test_short_bodies_are_unchanged(self) -> None:
        """Test bodies within the limit."""
        assert create_body_preview("short") == "short"
        assert create_body_preview("") is None
        assert create_body_preview(None) is None

    def test_long_bodies_are_truncated(self) -> None:
        """Test the truncation marker."""
        preview = create_body_preview("a" * (BODY_PREVIEW_LIMIT + 10))

        assert preview == "a" * BODY_PREVIEW_LIMIT + "…"
