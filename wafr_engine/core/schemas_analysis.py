"""Schemas for Well-Architected best-practice analysis.

Covers the taxonomy records, the per-question unit of work, the verdicts parsed
from model output and the outcome returned to callers of an analysis run.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ProcessStatus(str, Enum):
    """Status of the analysis or generation process on a work item."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# =============================================================================
# Taxonomy
# =============================================================================


class TaxonomyEntry(BaseModel):
    """One (pillar, question, best practice) triple of the base taxonomy object."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    pillar: str = Field(..., alias="Pillar")
    question: str = Field(..., alias="Question")
    best_practice: str = Field(..., alias="Best Practice")


class BestPracticeRecord(BaseModel):
    """Taxonomy entry enriched with workload-specific (or fallback) identifiers."""
    model_config = ConfigDict(frozen=True)

    pillar: str
    question_title: str
    question_id: str
    practice_name: str
    practice_id: str


class QuestionGroup(BaseModel):
    """Best practices of one question; the unit of work for one inference call.

    ``ordered_practice_names`` and ``ordered_practice_ids`` are positionally aligned.
    """
    pillar: str
    question_title: str
    question_id: str
    ordered_practice_names: list[str] = Field(default_factory=list)
    ordered_practice_ids: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_alignment(self) -> "QuestionGroup":
        if len(self.ordered_practice_names) != len(self.ordered_practice_ids):
            raise ValueError("practice names and ids must have the same length")
        return self


# =============================================================================
# Model output
# =============================================================================


class ModelVerdict(BaseModel):
    """A single best-practice verdict exactly as the model writes it."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = ""
    applied: bool = False
    reason_applied: Optional[str] = Field(default=None, alias="reasonApplied")
    reason_not_applied: Optional[str] = Field(default=None, alias="reasonNotApplied")
    recommendations: Optional[str] = None

    @field_validator("recommendations", mode="before")
    @classmethod
    def _join_recommendation_list(cls, value: Any) -> Any:
        # Some responses list recommendations instead of writing prose
        if isinstance(value, list):
            return "\n".join(str(v) for v in value)
        return value


class ModelVerdictPayload(BaseModel):
    """Top-level JSON object returned by an analysis call."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    best_practices: list[ModelVerdict] = Field(default_factory=list, alias="bestPractices")


class BestPracticeVerdict(BaseModel):
    """Verdict for one best practice, keyed back to its taxonomy id.

    Exactly one of ``reason_applied`` / ``reason_not_applied`` is set, matching
    ``applied``; ``recommendations`` only when the practice is not applied.
    """
    practice_id: str
    name: str
    applied: bool
    reason_applied: Optional[str] = None
    reason_not_applied: Optional[str] = None
    recommendations: Optional[str] = None

    @model_validator(mode="after")
    def _enforce_reason_invariant(self) -> "BestPracticeVerdict":
        if self.applied:
            self.reason_applied = self.reason_applied or ""
            self.reason_not_applied = None
            self.recommendations = None
        else:
            self.reason_applied = None
            self.reason_not_applied = self.reason_not_applied or ""
        return self


class AnalysisResult(BaseModel):
    """Verdicts for one question group."""
    pillar: str
    question: str
    question_id: str
    best_practices: list[BestPracticeVerdict] = Field(default_factory=list)


# =============================================================================
# Progress and outcomes
# =============================================================================


class AnalysisProgressEvent(BaseModel):
    """Progress notification emitted around every analysed question."""
    type: str = "analysis_progress"
    processed_questions: int
    total_questions: int
    current_pillar: str
    current_question: str


class AnalysisOutcome(BaseModel):
    """Terminal outcome of an analysis run (completed, partial or cancelled)."""
    results: list[AnalysisResult] = Field(default_factory=list)
    is_cancelled: bool = False
    error: Optional[str] = None
    file_id: Optional[str] = None
    processed_questions: int = 0
    total_questions: int = 0


# =============================================================================
# API bodies
# =============================================================================


class AnalyzeRequest(BaseModel):
    """Request to analyse a stored document against selected pillars."""
    file_id: str = Field(..., description="Work item / document id")
    workload_id: str = Field(default="", description="Workload whose answer ids are reused")
    selected_pillars: list[str] = Field(..., min_length=1, description="Pillar slugs in run order")


class InvalidateTaxonomyRequest(BaseModel):
    """Drop cached taxonomy for one workload, or for all when omitted."""
    workload_id: Optional[str] = None
