"""Offer extraction pipeline.

Runs remote analysis and the secondary AI extraction of the same document
concurrently, segments the analysed pages into sections and builds the
unified offer. A failed analysis fails the whole run; no partial offer is
produced from it.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from offer_ingest.core.config import ExtractionSettings
from offer_ingest.core.exceptions import AnalysisError, AnalysisErrorCode, ExtractionError
from offer_ingest.models.analysis_models import AnalysisResult
from offer_ingest.models.offer_models import OfferMetadata, UnifiedOffer
from offer_ingest.models.section_models import ProductTypeHeuristic, SegmentationResult
from offer_ingest.services.analysis.task_client import AnalysisTaskClient
from offer_ingest.services.classification.pdf_text_parser import parse_pdf_text
from offer_ingest.services.classification.section_classifier import SectionClassifier
from offer_ingest.services.offers.extraction_merge import normalize_product_type_value
from offer_ingest.services.offers.unified_builder import UnifiedOfferBuilder
from offer_ingest.utils.logging import get_logger

LOGGER = get_logger(__name__)


class AIExtractionState(str, Enum):
    """States of the degrade-and-retry machine for the AI extraction."""

    INITIAL = "initial"
    DEGRADED = "degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class AIExtractionRequest:
    """Input handed to the AI extractor for one attempt."""

    document_url: str
    metadata: OfferMetadata
    max_pages: int
    degraded: bool = False
    document_bytes: Optional[bytes] = field(default=None, repr=False)


AIExtractor = Callable[[AIExtractionRequest], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class AIExtractionOutcome:
    data: Dict[str, Any]
    state: AIExtractionState
    attempts: int


@dataclass(frozen=True)
class OfferExtractionResult:
    """Everything produced for one document."""

    offer: UnifiedOffer
    segmentation: SegmentationResult
    analysis: Optional[AnalysisResult] = None
    ai_data: Optional[Dict[str, Any]] = None
    ai_state: Optional[AIExtractionState] = None
    product_type: Optional[str] = None
    product_type_heuristic: Optional[ProductTypeHeuristic] = None


class AIExtractionRunner:
    """Runs the AI extractor with one degraded retry.

    A failure at the full page budget moves the machine to DEGRADED and the
    extraction is retried once with the reduced budget. A failure while
    degraded moves it to FAILED and the error propagates.
    """

    def __init__(self, extractor: AIExtractor, settings: Optional[ExtractionSettings] = None):
        self.extractor = extractor
        self.settings = settings or ExtractionSettings()

    def next_state(self, state: AIExtractionState) -> AIExtractionState:
        if state == AIExtractionState.INITIAL and self.settings.degraded_max_pages < self.settings.max_pages:
            return AIExtractionState.DEGRADED
        return AIExtractionState.FAILED

    def page_budget(self, state: AIExtractionState) -> int:
        if state == AIExtractionState.DEGRADED:
            return self.settings.degraded_max_pages
        return self.settings.max_pages

    async def run(
        self,
        document_url: str,
        metadata: OfferMetadata,
        document_bytes: Optional[bytes] = None,
    ) -> AIExtractionOutcome:
        """Run the extraction, degrading once on failure.

        Raises:
            ExtractionError: If the degraded attempt fails as well
        """
        state = AIExtractionState.INITIAL
        attempts = 0

        while True:
            attempts += 1
            request = AIExtractionRequest(
                document_url=document_url,
                metadata=metadata,
                max_pages=self.page_budget(state),
                degraded=state == AIExtractionState.DEGRADED,
                document_bytes=document_bytes,
            )
            try:
                data = await self._attempt(request)
                return AIExtractionOutcome(data=data, state=state, attempts=attempts)
            except ExtractionError as e:
                state = self.next_state(state)
                if state == AIExtractionState.FAILED:
                    LOGGER.error(
                        "AI extraction failed",
                        extra={"document_id": metadata.document_id, "attempts": attempts, "error": e.message},
                    )
                    raise
                LOGGER.warning(
                    f"AI extraction failed, retrying with {self.page_budget(state)} page(s)",
                    extra={"document_id": metadata.document_id, "attempt": attempts, "error": e.message},
                )

    async def _attempt(self, request: AIExtractionRequest) -> Dict[str, Any]:
        try:
            data = await asyncio.wait_for(self.extractor(request), timeout=self.settings.timeout)
        except asyncio.TimeoutError as e:
            raise ExtractionError(
                f"AI extraction timed out after {self.settings.timeout:.0f}s", original_error=e
            ) from e

        if not isinstance(data, dict):
            raise ExtractionError("AI extraction returned a non-object payload")
        return data


class OfferExtractionPipeline:
    """Orchestrates analysis, classification and offer building."""

    def __init__(
        self,
        task_client: AnalysisTaskClient,
        classifier: Optional[SectionClassifier] = None,
        builder: Optional[UnifiedOfferBuilder] = None,
        ai_extractor: Optional[AIExtractor] = None,
        settings: Optional[ExtractionSettings] = None,
    ):
        """Initialize the pipeline.

        Args:
            task_client: Client for the remote analysis service
            classifier: Section classifier (a default instance when omitted)
            builder: Unified offer builder (a default instance when omitted)
            ai_extractor: Async callable returning the secondary AI extraction
            settings: AI extraction timeout and page budgets
        """
        self.task_client = task_client
        self.classifier = classifier or SectionClassifier()
        self.builder = builder or UnifiedOfferBuilder(self.classifier)
        self.ai_runner = AIExtractionRunner(ai_extractor, settings) if ai_extractor else None

    async def run(
        self,
        signed_url: str,
        metadata: OfferMetadata,
        document_bytes: Optional[bytes] = None,
        organization_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> OfferExtractionResult:
        """Extract a unified offer from one document.

        Raises:
            AnalysisError: If the remote analysis fails or yields no content
            ExtractionError: If the AI extraction fails after its degraded retry
        """
        start_time = time.time()
        LOGGER.info(
            "Starting offer extraction",
            extra={"document_id": metadata.document_id, "file_name": metadata.file_name},
        )

        analysis_task = asyncio.ensure_future(
            self.task_client.analyze(
                signed_url,
                document_id=metadata.document_id,
                organization_id=organization_id,
                cancel_event=cancel_event,
            )
        )
        ai_task = asyncio.ensure_future(self._run_ai(signed_url, metadata, document_bytes))

        try:
            analysis, ai_outcome = await asyncio.gather(analysis_task, ai_task)
        except BaseException:
            analysis_task.cancel()
            ai_task.cancel()
            raise

        if analysis.is_empty:
            raise AnalysisError(
                f"Analysis of document {metadata.document_id} produced no text or pages",
                code=AnalysisErrorCode.EMPTY_ANALYSIS,
            )

        segmentation = self.classifier.segment(
            analysis.pages,
            full_text=analysis.text or None,
            page_count=analysis.page_count,
        )
        result = self._build_result(segmentation, metadata, ai_outcome, analysis)

        LOGGER.info(
            f"Offer extraction complete in {time.time() - start_time:.2f}s",
            extra={
                "document_id": metadata.document_id,
                "offer_id": result.offer.offer_id,
                "extraction_confidence": result.offer.extraction_confidence.value,
                "missing_fields": len(result.offer.missing_fields),
            },
        )
        return result

    async def run_text_only(
        self,
        document_bytes: bytes,
        metadata: OfferMetadata,
        ai_data: Optional[Dict[str, Any]] = None,
    ) -> OfferExtractionResult:
        """Build an offer from a PDF's embedded text, without remote analysis."""
        document = await asyncio.to_thread(parse_pdf_text, document_bytes)
        segmentation = self.classifier.segment_text(document)
        outcome = AIExtractionOutcome(data=ai_data, state=AIExtractionState.INITIAL, attempts=0) if ai_data else None
        return self._build_result(segmentation, metadata, outcome, None)

    async def _run_ai(
        self,
        signed_url: str,
        metadata: OfferMetadata,
        document_bytes: Optional[bytes],
    ) -> Optional[AIExtractionOutcome]:
        if self.ai_runner is None:
            return None
        return await self.ai_runner.run(signed_url, metadata, document_bytes)

    def _build_result(
        self,
        segmentation: SegmentationResult,
        metadata: OfferMetadata,
        ai_outcome: Optional[AIExtractionOutcome],
        analysis: Optional[AnalysisResult],
    ) -> OfferExtractionResult:
        ai_data = ai_outcome.data if ai_outcome else None
        offer = self.builder.build(
            segmentation.sections,
            metadata,
            ai_data=ai_data,
            identified_ratio=segmentation.identified_ratio,
        )

        heuristic = self.builder.infer_product_type(segmentation.sections) or segmentation.product_type_heuristic
        product_type = None
        if ai_data:
            product_type = normalize_product_type_value(ai_data.get("product_type", ai_data.get("productType")))
        if product_type is None and heuristic is not None:
            product_type = heuristic.predicted_type

        return OfferExtractionResult(
            offer=offer,
            segmentation=segmentation,
            analysis=analysis,
            ai_data=ai_data,
            ai_state=ai_outcome.state if ai_outcome else None,
            product_type=product_type,
            product_type_heuristic=heuristic,
        )
