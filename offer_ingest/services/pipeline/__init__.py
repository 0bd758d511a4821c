"""Offer extraction pipeline orchestration."""

from offer_ingest.services.pipeline.offer_pipeline import (
    AIExtractionRequest,
    AIExtractionRunner,
    AIExtractionState,
    OfferExtractionPipeline,
    OfferExtractionResult,
)

__all__ = [
    "AIExtractionRequest",
    "AIExtractionRunner",
    "AIExtractionState",
    "OfferExtractionPipeline",
    "OfferExtractionResult",
]
