"""
Pydantic models for evaluation payloads and API request/response validation.

This module defines:
- The per-kind result shapes returned by the structured-output evaluator
- The rubric item configuration stored alongside each rubric item
- The repository content snapshot handed to evaluation workers
- The request/response contracts of the analysis endpoints

Result shapes and rubric item configs use camelCase keys because they are
persisted verbatim as JSON and shared with the UI.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


EvaluationType = Literal["yes_no", "range", "comments", "code_examples", "options"]
AnalysisStatusLiteral = Literal["pending", "running", "completed", "failed"]
ItemStatusLiteral = Literal["pending", "processing", "completed", "failed"]


# Rubric item configuration


class RubricItemConfig(BaseModel):
    """
    Kind-specific configuration of a rubric item.

    Only the keys relevant to the item's evaluation kind are consulted.
    """

    model_config = ConfigDict(extra="allow")

    requireJustification: Optional[bool] = None
    minValue: Optional[float] = None
    maxValue: Optional[float] = None
    rangeGuidance: Optional[str] = None
    maxExamples: Optional[int] = None
    options: Optional[List[str]] = None
    allowMultiple: Optional[bool] = None
    maxSelections: Optional[int] = None


# Evaluation result shapes
#
# Every field is required and validated strictly: a response with a missing
# key or a value of the wrong type is rejected, never filled in or coerced.

STRICT = ConfigDict(strict=True)


class YesNoResult(BaseModel):
    model_config = STRICT

    value: bool
    justification: str


class RangeResult(BaseModel):
    model_config = STRICT

    value: float
    min: float
    max: float
    rationale: str


class CommentsResult(BaseModel):
    model_config = STRICT

    feedback: str


class CodeExample(BaseModel):
    model_config = STRICT

    filePath: str
    lineStart: int
    lineEnd: int
    code: str
    explanation: str


class CodeExamplesResult(BaseModel):
    model_config = STRICT

    examples: List[CodeExample]


class OptionsResult(BaseModel):
    model_config = STRICT

    selections: List[str]


# Repository snapshot


class RepositoryFile(BaseModel):
    path: str
    content: str
    language: str = "text"


class RepositorySnapshot(BaseModel):
    """Repository content handed to every evaluation worker of one analysis."""

    files: List[RepositoryFile] = Field(default_factory=list)
    structure: str = ""


class RubricItemPayload(BaseModel):
    """Input of one evaluation worker run."""

    analysis_id: str
    rubric_item_id: str
    item_name: str
    item_description: str = ""
    evaluation_type: EvaluationType
    config: RubricItemConfig = Field(default_factory=RubricItemConfig)
    repository: RepositorySnapshot


# Request Models


class CreateAnalysisRequest(BaseModel):
    """
    Request model for creating an analysis of a connected repository.
    """

    repository_id: str = Field(..., description="ID of the connected repository")
    rubric_id: str = Field(..., description="ID of the rubric to evaluate against")
    branch: Optional[str] = Field(
        None, description="Branch to analyze (defaults to the repository's default branch)"
    )

    model_config = {
        "json_schema_extra": {
            "example": {"repository_id": "5f0c...", "rubric_id": "a9b1...", "branch": "main"}
        }
    }


class CreateOneOffAnalysisRequest(BaseModel):
    """
    Request model for analyzing a public GitHub repository by URL.
    """

    repository_url: str = Field(..., description="GitHub repository URL")
    rubric_id: str = Field(..., description="ID of the rubric to evaluate against")
    branch: Optional[str] = Field(
        None, description="Branch to analyze (defaults to the branch in the URL, then 'main')"
    )


class AnalysisFilters(BaseModel):
    repository_id: Optional[str] = None
    rubric_id: Optional[str] = None
    status: Optional[AnalysisStatusLiteral] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    limit: Optional[int] = Field(None, ge=1)


# Response Models


class CreateAnalysisResponse(BaseModel):
    analysis_id: str
    message: str


class StartAnalysisResponse(BaseModel):
    analysis_id: str
    status: AnalysisStatusLiteral
    message: str


class HealthCheckResponse(BaseModel):
    status: str
    timestamp: datetime


class RubricItemRef(BaseModel):
    """Live view of a rubric item; absent once the item is deleted."""

    id: str
    name: str
    description: str
    evaluation_type: EvaluationType


class AnalysisItemResult(BaseModel):
    rubric_item_id: str
    item_name: str
    item_description: str
    evaluation_type: EvaluationType
    item_config: Dict = Field(default_factory=dict)
    status: ItemStatusLiteral
    result: Optional[Dict] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None
    rubric_item: Optional[RubricItemRef] = None


class AnalysisSummary(BaseModel):
    id: str
    user_id: str
    repository_id: Optional[str] = None
    repository_url: Optional[str] = None
    repository_owner: str
    repository_name: str
    branch: str
    rubric_id: str
    rubric_name: Optional[str] = None
    run_handle: Optional[str] = None
    status: AnalysisStatusLiteral
    total_items: int
    completed_items: int
    failed_items: int
    error_message: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class AnalysisDetail(AnalysisSummary):
    results: List[AnalysisItemResult] = Field(default_factory=list)


class AnalysisProgress(BaseModel):
    """Progress side-channel payload, keyed in camelCase for the UI."""

    status: Literal["initializing", "fetching_repo", "evaluating", "completing"]
    totalItems: int = 0
    completedItems: int = 0
    failedItems: int = 0
    currentItem: Optional[str] = None
    items: Dict[str, ItemStatusLiteral] = Field(default_factory=dict)
