"""
Shared fixtures and fakes for the pipeline seams.

The fakes stand in for git, package managers, test runners and the OpenAI
client so the pipeline can be exercised without external tooling.
"""

import asyncio
import threading
from pathlib import Path

import pytest

from repograder.aggregator import ScoreAggregator
from repograder.errors import AcquisitionFailure, AnalysisFailure, FailureKind
from repograder.models import (
    AIAnalysisMetadata,
    CompletionEvent,
    ErrorEvent,
    GradeRequest,
    ProgressEvent,
    ProjectType,
    QualityAnalysis,
    Submission,
    SubmissionMetadata,
    TestResults,
)
from repograder.pipeline import PhaseExecutor
from repograder.publisher import ProgressPublisher
from repograder.service import GradingService
from repograder.store import SubmissionStore


class RecordingPublisher(ProgressPublisher):
    def __init__(self) -> None:
        self.events: list = []

    def progress(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def complete(self, event: CompletionEvent) -> None:
        self.events.append(event)

    def error(self, event: ErrorEvent) -> None:
        self.events.append(event)

    @property
    def progress_events(self) -> list[ProgressEvent]:
        return [e for e in self.events if isinstance(e, ProgressEvent)]


class ExplodingPublisher(ProgressPublisher):
    def progress(self, event):
        raise RuntimeError("observer went away")

    def complete(self, event):
        raise RuntimeError("observer went away")

    def error(self, event):
        raise RuntimeError("observer went away")


class FakeAcquirer:
    def __init__(self, root: Path, failure: AcquisitionFailure | None = None) -> None:
        self.root = root
        self.failure = failure
        self.released: list[Path] = []

    async def acquire(self, repository_url: str, submission_id: str) -> Path:
        if self.failure:
            raise self.failure
        workspace = self.root / submission_id
        workspace.mkdir(parents=True, exist_ok=True)
        return workspace

    async def release(self, workspace: Path) -> None:
        self.released.append(workspace)


class FakeInstaller:
    def __init__(self, dependencies: list[str] | None = None, failure: Exception | None = None) -> None:
        self.dependencies = dependencies or ["express"]
        self.failure = failure
        self.reader_threads: list[int] = []

    def declared_dependencies(self, workspace: Path, project_type: ProjectType) -> list[str]:
        self.reader_threads.append(threading.get_ident())
        return list(self.dependencies)

    async def install(self, workspace: Path, project_type: ProjectType) -> None:
        if self.failure:
            raise self.failure


class FakeTestExecutor:
    def __init__(self, passed: int = 10, total: int = 10, failure: Exception | None = None, delay: float = 0) -> None:
        self.passed = passed
        self.total = total
        self.failure = failure
        self.delay = delay

    async def run(self, workspace: Path, project_type: ProjectType) -> TestResults:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failure:
            raise self.failure
        return TestResults(passed=self.passed, total=self.total, details="fake run", duration=1.5)


class FakeAnalyzer:
    def __init__(
        self,
        quality: float = 85.0,
        smell: float | None = None,
        failure: Exception | None = None,
        reviewer_test_score: float | None = None,
    ) -> None:
        self.quality = quality
        self.smell = smell
        self.reviewer_test_score = reviewer_test_score
        self.failure = failure
        self.calls = 0

    async def analyze(self, workspace, project_type, test_results, rubric, file_globs=None, dependencies=None):
        self.calls += 1
        if self.failure:
            raise self.failure
        return QualityAnalysis(
            code_quality_score=self.quality,
            code_smell_score=self.smell,
            report="# Code Review Report\n\nLooks good.\n",
            telemetry=AIAnalysisMetadata(
                prompt_tokens=100,
                completion_tokens=50,
                analysis_time=0.5,
                model_used="gpt-4o",
                reviewer_test_score=self.reviewer_test_score,
            ),
        )


# Lets make_executor tell "no analyzer" (None) apart from "use a fresh fake"
_UNSET = object()


@pytest.fixture
def store(tmp_path) -> SubmissionStore:
    return SubmissionStore(tmp_path / "submissions")


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def make_executor(tmp_path, store, publisher):
    def _make(acquirer=None, installer=None, test_executor=None, analyzer=_UNSET, publisher_override=None):
        return PhaseExecutor(
            store=store,
            publisher=publisher_override or publisher,
            acquirer=acquirer or FakeAcquirer(tmp_path / "workspaces"),
            installer=installer or FakeInstaller(),
            test_executor=test_executor or FakeTestExecutor(),
            analyzer=FakeAnalyzer() if analyzer is _UNSET else analyzer,
            aggregator=ScoreAggregator(),
        )
    return _make


@pytest.fixture
def make_submission(store):
    def _make(project_type: ProjectType = ProjectType.SERVER_FRAMEWORK, owner_id: str = "student-1", **kwargs) -> Submission:
        submission = Submission(
            repository_url="https://github.com/example/project.git",
            project_type=project_type,
            owner_id=owner_id,
            metadata=SubmissionMetadata(project_type=project_type),
            **kwargs,
        )
        return store.save(submission)
    return _make


@pytest.fixture
def make_service(store):
    def _make(executor: PhaseExecutor, max_concurrent_jobs: int = 10) -> GradingService:
        return GradingService(store, executor, max_concurrent_jobs=max_concurrent_jobs)
    return _make


def grade_request(project_type: ProjectType = ProjectType.SERVER_FRAMEWORK, rubric=None) -> GradeRequest:
    return GradeRequest(
        repository_url="https://github.com/example/project.git",
        project_type=project_type,
        rubric=rubric,
    )


def acquisition_failure() -> AcquisitionFailure:
    return AcquisitionFailure("repository 'https://github.com/example/missing.git' not found", FailureKind.NOT_FOUND)


def analysis_failure() -> AnalysisFailure:
    return AnalysisFailure("Connection error.", FailureKind.SERVICE_ERROR)
