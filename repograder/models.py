"""
Pydantic models for the Repo Grader system.

Defines the submission record persisted by the result store, the grading
request accepted at intake, the rubric structure, intermediate phase results
and the progress events sent to observers.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath, PureWindowsPath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .config import DEFAULT_MAX_SCORE


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_submission_id() -> str:
    return uuid.uuid4().hex


class SubmissionStatus(str, Enum):
    """Pipeline state of a submission."""

    UPLOADING = "uploading"
    INSTALLING = "installing"
    TESTING = "testing"
    REVIEWING = "reviewing"
    REPORTING = "reporting"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SubmissionStatus.COMPLETED, SubmissionStatus.FAILED)


# Forward edges of the state machine; FAILED is reachable from any non-terminal state.
STATUS_ORDER: list[SubmissionStatus] = [
    SubmissionStatus.UPLOADING,
    SubmissionStatus.INSTALLING,
    SubmissionStatus.TESTING,
    SubmissionStatus.REVIEWING,
    SubmissionStatus.REPORTING,
    SubmissionStatus.COMPLETED,
]


def can_transition(current: SubmissionStatus, new: SubmissionStatus) -> bool:
    """
    Check whether the state machine allows moving from `current` to `new`.

    Re-entering FAILED from FAILED is allowed so that failure handling is
    idempotent.
    """
    if new is SubmissionStatus.FAILED:
        return current is not SubmissionStatus.COMPLETED
    if current.is_terminal:
        return False
    return STATUS_ORDER.index(new) == STATUS_ORDER.index(current) + 1


class Grade(str, Enum):
    PENDING = "pending"
    PASS = "pass"
    FAIL = "fail"


class ProjectType(str, Enum):
    """Declared kind of project; selects tooling and the analysis template."""

    SERVER_FRAMEWORK = "server-framework"
    CLIENT_FRAMEWORK = "client-framework"
    FULL_STACK = "full-stack"
    PYTHON = "python"
    NATIVE_LANGUAGE = "native-language"

    @property
    def is_native(self) -> bool:
        return self is ProjectType.NATIVE_LANGUAGE


class RubricCategory(BaseModel):
    """
    Weight and maximum score of one grading category.

    Attributes:
        weight: Relative weight; weights are normalized by their sum.
        max_score: Maximum score shown for the category in the breakdown.
    """

    weight: float = Field(..., ge=0, allow_inf_nan=False, description="Relative weight of the category")
    max_score: float = Field(default=DEFAULT_MAX_SCORE, gt=0, allow_inf_nan=False, description="Maximum score for the category")


class Rubric(BaseModel):
    """
    Fully resolved rubric with every recognized category.

    Built by `repograder.rubric.resolve_rubric` from an optional caller
    mapping and the project type defaults. Immutable for one grading run.
    """

    model_config = ConfigDict(frozen=True)

    test_results: RubricCategory
    code_quality: RubricCategory
    code_smell: RubricCategory


class ScoreBreakdown(BaseModel):
    """
    Score for a single rubric category.

    Attributes:
        category: Display name of the category (e.g. "Code Quality").
        score: Points awarded, scaled to max_score.
        max_score: Maximum possible points.
        feedback: Short explanation of the score.
    """

    category: str = Field(..., description="Name of the scored category")
    score: float = Field(..., ge=0, description="Points awarded")
    max_score: float = Field(..., gt=0, description="Maximum possible points")
    feedback: str = Field(default="", description="Feedback for this category")


class Scores(BaseModel):
    total: float = Field(..., ge=0, le=100, description="Weighted total score")
    test: float = Field(..., ge=0, le=100, description="Test subscore (pass ratio x 100)")
    quality: float = Field(..., ge=0, le=100, description="Code quality subscore")
    breakdown: list[ScoreBreakdown] = Field(default_factory=list)


class TestResults(BaseModel):
    """
    Parsed result of running a project's test suite.

    Attributes:
        passed: Number of passing tests.
        total: Number of tests run.
        details: Runner output or a summary of failures.
        duration: Run time in seconds.
    """

    __test__ = False

    passed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    details: str = Field(default="-")
    duration: float = Field(default=0.0, ge=0)

    @property
    def pass_ratio(self) -> float:
        return self.passed / self.total if self.total else 0.0


class AIAnalysisMetadata(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    analysis_time: float = 0.0
    model_used: str = "none"
    # The reviewer's own opinion of the tests; informational, never scored
    reviewer_test_score: float | None = Field(default=None, ge=0, le=100)


class SubmissionMetadata(BaseModel):
    project_type: ProjectType
    dependencies: list[str] = Field(default_factory=list)
    test_results: TestResults = Field(default_factory=TestResults)
    ai_analysis: AIAnalysisMetadata = Field(default_factory=AIAnalysisMetadata)


def glob_problem(pattern: str) -> str | None:
    """Why a file glob cannot be used inside a workspace, or None if it can."""
    if not pattern.strip():
        return "is empty"
    if pattern.startswith(("/", "\\")) or PureWindowsPath(pattern).drive:
        return "must be relative to the repository root"
    if ".." in PurePosixPath(pattern.replace("\\", "/")).parts:
        return "must not leave the repository"
    return None


class GradeRequest(BaseModel):
    """
    Intake request for grading a repository.

    Attributes:
        repository_url: Clone URL of the repository.
        project_type: Declared project type.
        rubric: Optional mapping of category name to {weight, maxScore}.
        file_globs: Optional allowlist of files to include in the analysis.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    repository_url: str = Field(..., min_length=1)
    project_type: ProjectType
    rubric: dict[str, Any] | None = None
    file_globs: list[str] | None = None

    @field_validator("file_globs")
    @classmethod
    def check_file_globs(cls, globs: list[str] | None) -> list[str] | None:
        for pattern in globs or ():
            problem = glob_problem(pattern)
            if problem:
                raise ValueError(f"file glob {pattern!r} {problem}")
        return globs


class Submission(BaseModel):
    """
    Durable record of one grading run.

    `grade` stays `pending` until `status` is `completed`; `scores` and
    `report` are only set once their phases succeed; `error` is only set
    when `status` is `failed`.
    """

    id: str = Field(default_factory=new_submission_id)
    repository_url: str
    project_type: ProjectType
    owner_id: str
    status: SubmissionStatus = SubmissionStatus.UPLOADING
    grade: Grade = Grade.PENDING
    scores: Scores | None = None
    report: str | None = None
    error: str | None = None
    rubric: Rubric | None = None
    file_globs: list[str] | None = None
    metadata: SubmissionMetadata
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class QualityAnalysis(BaseModel):
    """
    Outcome of the quality review phase.

    Attributes:
        code_quality_score: Quality subscore (0-100).
        code_smell_score: Code smell score for native projects, else None.
        report: Markdown narrative.
        degraded: True when the analysis failed and zeros were substituted.
        telemetry: Token counts, timing and model identifier.
    """

    code_quality_score: float = Field(default=0.0, ge=0, le=100)
    code_smell_score: float | None = Field(default=None, ge=0, le=100)
    report: str = ""
    degraded: bool = False
    telemetry: AIAnalysisMetadata = Field(default_factory=AIAnalysisMetadata)


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ProgressEvent(_Event):
    submission_id: str
    status: SubmissionStatus
    progress_percent: int = Field(..., ge=0, le=100)
    current_step: str
    message: str | None = None


class CompletionEvent(_Event):
    submission: Submission


class ErrorEvent(_Event):
    submission_id: str
    error: str
    phase: SubmissionStatus
