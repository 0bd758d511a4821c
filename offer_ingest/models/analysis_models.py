"""Data models for remote document analysis.

This module defines the task snapshot reported by the analysis service and
the page/block structure decoded from its result archive.
"""

from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskState(str, Enum):
    """Lifecycle states of a remote analysis task."""

    PENDING = "pending"
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Any) -> "TaskState":
        """Map backend-specific state vocabulary onto TaskState."""
        if not isinstance(raw, str):
            return cls.UNKNOWN
        return _STATE_ALIASES.get(raw.strip().lower(), cls.UNKNOWN)

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED)


_STATE_ALIASES: Dict[str, TaskState] = {
    "pending": TaskState.PENDING,
    "waiting": TaskState.PENDING,
    "submitted": TaskState.PENDING,
    "created": TaskState.PENDING,
    "waiting-file": TaskState.PENDING,
    "queued": TaskState.QUEUED,
    "processing": TaskState.PROCESSING,
    "running": TaskState.PROCESSING,
    "in_progress": TaskState.PROCESSING,
    "converting": TaskState.PROCESSING,
    "succeeded": TaskState.SUCCEEDED,
    "success": TaskState.SUCCEEDED,
    "completed": TaskState.SUCCEEDED,
    "done": TaskState.SUCCEEDED,
    "finished": TaskState.SUCCEEDED,
    "failed": TaskState.FAILED,
    "failure": TaskState.FAILED,
    "error": TaskState.FAILED,
    "cancelled": TaskState.FAILED,
    "canceled": TaskState.FAILED,
}


class AnalysisTask(BaseModel):
    """Snapshot of one remote analysis job as last reported by the service."""

    model_config = ConfigDict(frozen=True)

    task_id: Optional[str] = Field(None, description="Remote task identifier")
    state: TaskState = Field(TaskState.UNKNOWN, description="Normalized task state")
    raw_state: Optional[str] = Field(None, description="State string as reported")
    result_archive_url: Optional[str] = Field(
        None, description="Archive URL, present only once the task succeeded"
    )
    error_code: Optional[str] = Field(None, description="Remote error code on failure")
    error_message: Optional[str] = Field(None, description="Remote error message on failure")

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal or (
            self.result_archive_url is not None and self.state != TaskState.FAILED
        )


class BoundingBox(BaseModel):
    """Block position on the page."""

    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    width: float
    height: float


class Block(BaseModel):
    """A layout block returned by the analysis service.

    Type, category and label are free-text hints; their semantics are not
    guaranteed across backend versions.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    type: str = "text"
    category: Optional[str] = None
    label: Optional[str] = None
    text: Optional[str] = None
    page_number: Optional[int] = None
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    heading_level: Optional[int] = None
    bounding_box: Optional[BoundingBox] = None
    metadata: Optional[Dict[str, Any]] = None
    children: List["Block"] = Field(default_factory=list)

    def iter_preorder(self) -> Iterator["Block"]:
        """Yield this block and its descendants in pre-order.

        Uses an explicit stack; nesting depth comes from remote input.
        """
        stack: List[Block] = [self]
        while stack:
            block = stack.pop()
            yield block
            stack.extend(reversed(block.children))

    def flatten(self) -> List["Block"]:
        return list(self.iter_preorder())

    @property
    def hint_text(self) -> str:
        """Classification hints attached to the block, space separated."""
        return " ".join(part for part in (self.category, self.label) if part)


Block.model_rebuild()


class Page(BaseModel):
    """One page of the analysed document."""

    model_config = ConfigDict(frozen=True)

    page_number: int = Field(..., ge=1, description="1-indexed page number")
    text: str = Field("", description="Full plain text of the page")
    width: Optional[float] = None
    height: Optional[float] = None
    blocks: List[Block] = Field(default_factory=list)

    def flattened_blocks(self) -> List[Block]:
        flattened: List[Block] = []
        for block in self.blocks:
            flattened.extend(block.iter_preorder())
        return flattened


class StructureSummaryPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    page_number: int
    block_count: int = 0
    headings: Optional[List[str]] = None
    keywords: Optional[List[str]] = None


class StructureSummary(BaseModel):
    """Structural overview the service attaches to an analysis."""

    model_config = ConfigDict(frozen=True)

    confidence: Optional[float] = None
    pages: List[StructureSummaryPage] = Field(default_factory=list)


class AnalysisResult(BaseModel):
    """Decoded result of a completed analysis task."""

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "text": "Oferta ubezpieczenia na życie...",
                "pages": [{"page_number": 1, "text": "Oferta ubezpieczenia na życie...", "blocks": []}],
                "structure_summary": {"confidence": 0.9, "pages": []},
                "task_id": "task-123",
            }
        },
    )

    text: str = ""
    pages: List[Page] = Field(default_factory=list)
    structure_summary: Optional[StructureSummary] = None
    task_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.pages

    @property
    def page_count(self) -> Optional[int]:
        """Number of pages, taken from the summary when no pages were returned."""
        if self.pages:
            return len(self.pages)
        if self.structure_summary and self.structure_summary.pages:
            return max(page.page_number for page in self.structure_summary.pages)
        return None
