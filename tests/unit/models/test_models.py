"""Tests for analysis, section and offer models."""

import pytest
from pydantic import ValidationError

from offer_ingest.models.analysis_models import (
    AnalysisResult,
    AnalysisTask,
    Block,
    Page,
    StructureSummary,
    StructureSummaryPage,
    TaskState,
)
from offer_ingest.models.offer_models import MISSING, InsuredPerson, UnifiedOffer
from offer_ingest.models.section_models import ParsedSection, SectionType, SegmentationResult


class TestBlocks:
    """Block tree traversal."""

    def test_flatten_is_preorder(self) -> None:
        """Test parent-before-children order."""
        tree = Block(
            text="a",
            children=[Block(text="b", children=[Block(text="c")]), Block(text="d")],
        )

        assert [block.text for block in tree.flatten()] == ["a", "b", "c", "d"]

    def test_page_flattens_every_root(self) -> None:
        """Test flattening across root blocks."""
        page = Page(page_number=1, blocks=[Block(text="a", children=[Block(text="b")]), Block(text="c")])

        assert [block.text for block in page.flattened_blocks()] == ["a", "b", "c"]

    def test_hint_text(self) -> None:
        """Test category and label hints."""
        assert Block(category="premium", label="tabela").hint_text == "premium tabela"
        assert Block().hint_text == ""

    def test_confidence_bounds(self) -> None:
        """Test that confidence outside 0-1 is rejected."""
        with pytest.raises(ValidationError):
            Block(confidence=1.5)


class TestAnalysisModels:
    """Task snapshots and results."""

    def test_archive_url_makes_task_terminal(self) -> None:
        """Test the terminal rule for tasks without a state."""
        assert AnalysisTask(result_archive_url="https://a/x.zip").is_terminal
        assert not AnalysisTask(state=TaskState.PROCESSING).is_terminal
        assert AnalysisTask(state=TaskState.FAILED, result_archive_url="https://a/x.zip").is_terminal

    def test_empty_result(self) -> None:
        """Test emptiness on text and pages."""
        assert AnalysisResult(text="   ").is_empty
        assert not AnalysisResult(pages=[Page(page_number=1)]).is_empty
        assert not AnalysisResult(text="x").is_empty

    def test_pages_are_one_indexed(self) -> None:
        """Test the page number lower bound."""
        with pytest.raises(ValidationError):
            Page(page_number=0)

    def test_page_count_falls_back_to_summary(self) -> None:
        """Test page counts from pages, then from the structure summary."""
        summary = StructureSummary(pages=[StructureSummaryPage(page_number=1), StructureSummaryPage(page_number=3)])

        assert AnalysisResult(pages=[Page(page_number=1), Page(page_number=2)]).page_count == 2
        assert AnalysisResult(text="x", structure_summary=summary).page_count == 3
        assert AnalysisResult(text="x").page_count is None


class TestSegmentationResult:
    """Identified-section ratio."""

    def test_identified_ratio(self) -> None:
        """Test the share of typed sections."""
        sections = [
            ParsedSection(type=section_type, content="x", confidence=0.1, snippet="x")
            for section_type in (SectionType.PREMIUM, SectionType.UNKNOWN, SectionType.DISCOUNT, SectionType.INSURED)
        ]

        assert SegmentationResult(sections=sections).identified_ratio == pytest.approx(0.75)
        assert SegmentationResult().identified_ratio == 0.0


class TestUnifiedOffer:
    """Offer record rendering."""

    def test_record_distinguishes_zero_and_missing(self) -> None:
        """Test that zero stays numeric while unknown renders as the sentinel."""
        offer = UnifiedOffer(
            offer_id="A",
            source_document="a.pdf",
            insured=[InsuredPerson(name="Jan")],
            total_premium_before_discounts=0.0,
            missing_fields=["insured[0].age", "total_premium_after_discounts"],
        )

        record = offer.to_record()

        assert record["total_premium_before_discounts"] == 0.0
        assert record["total_premium_after_discounts"] == MISSING
        assert record["insured"][0]["age"] == MISSING
        assert offer.total_premium_after_discounts is None
        assert offer.is_missing("insured[0].age")

    def test_insured_cannot_be_empty(self) -> None:
        """Test that an offer always has an insured row."""
        with pytest.raises(ValidationError):
            UnifiedOffer(offer_id="A", source_document="a.pdf", insured=[])
