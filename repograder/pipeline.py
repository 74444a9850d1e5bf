"""
Phase executor: drives one submission through the grading state machine.

    uploading -> installing -> testing -> reviewing -> reporting -> completed

Any of the first five states can move to failed. Acquisition, installation
and test-environment failures are fatal. A failed quality review degrades to
a zero quality subscore and the run carries on.
"""

import asyncio
import logging
from pathlib import Path

from .acquirer import SourceAcquirer
from .aggregator import ScoreAggregator
from .analysis import QualityAnalyzer
from .config import PHASE_PROGRESS
from .errors import GradingError, InvalidTransition
from .installer import DependencyInstaller
from .models import (
    CompletionEvent,
    ErrorEvent,
    Grade,
    ProgressEvent,
    QualityAnalysis,
    Rubric,
    Submission,
    SubmissionStatus,
    TestResults,
    can_transition,
)
from .publisher import ProgressPublisher
from .rubric import default_rubric
from .store import SubmissionStore
from .suite_runner import TestExecutor

logger = logging.getLogger(__name__)

STEP_DESCRIPTIONS: dict[SubmissionStatus, str] = {
    SubmissionStatus.UPLOADING: "Cloning repository",
    SubmissionStatus.INSTALLING: "Installing dependencies",
    SubmissionStatus.TESTING: "Running tests",
    SubmissionStatus.REVIEWING: "Analyzing code quality",
    SubmissionStatus.REPORTING: "Calculating scores",
    SubmissionStatus.COMPLETED: "Grading complete",
}


def degraded_report(reason: str, test_results: TestResults) -> str:
    """Report stored when the quality review produced nothing usable."""
    if test_results.total:
        tests = f"{test_results.passed}/{test_results.total} tests passed."
    else:
        tests = "No test results could be parsed."
    return (
        "# Grading Report\n\n"
        "> **Note:** AI analysis did not succeed, so the code quality subscore is 0 "
        "and the grade reflects the test results only.\n"
        f"> Reason: {reason}\n\n"
        "## Test Results\n\n"
        f"{tests}\n"
    )


class PhaseExecutor:
    """
    Runs the pipeline for one submission at a time per call to `run`.

    Every transition writes the new status together with the output of the
    phase that just finished, then publishes a progress event.
    """

    def __init__(
        self,
        store: SubmissionStore,
        publisher: ProgressPublisher,
        acquirer: SourceAcquirer,
        installer: DependencyInstaller,
        test_executor: TestExecutor,
        analyzer: QualityAnalyzer | None,
        aggregator: ScoreAggregator,
        keep_workspaces: bool = False,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.acquirer = acquirer
        self.installer = installer
        self.test_executor = test_executor
        self.analyzer = analyzer
        self.aggregator = aggregator
        self.keep_workspaces = keep_workspaces

    async def run(self, submission_id: str) -> Submission:
        """
        Grade a stored submission end to end.

        Returns:
            The submission in its terminal state.

        Raises:
            PersistenceFailure: If a state could not be written.
        """
        submission = await asyncio.to_thread(self.store.get, submission_id)
        project_type = submission.project_type
        rubric: Rubric = submission.rubric or default_rubric(project_type)
        workspace: Path | None = None

        logger.info("Grading %s (%s, %s)", submission.id, submission.repository_url, project_type.value)
        self._publish_progress(submission)

        try:
            workspace = await self.acquirer.acquire(submission.repository_url, submission.id)
            await self._advance(submission, SubmissionStatus.INSTALLING)

            submission.metadata.dependencies = await asyncio.to_thread(
                self.installer.declared_dependencies, workspace, project_type
            )
            await self.installer.install(workspace, project_type)
            await self._advance(submission, SubmissionStatus.TESTING, f"{len(submission.metadata.dependencies)} dependencies declared")

            test_results = await self.test_executor.run(workspace, project_type)
            submission.metadata.test_results = test_results
            await self._advance(
                submission, SubmissionStatus.REVIEWING, f"{test_results.passed}/{test_results.total} tests passed"
            )

            analysis = await self._review(submission, workspace, test_results, rubric)
            submission.report = analysis.report
            submission.metadata.ai_analysis = analysis.telemetry
            await self._advance(
                submission, SubmissionStatus.REPORTING, "AI analysis unavailable" if analysis.degraded else None
            )

            scores, grade = self.aggregator.aggregate(project_type, test_results, analysis, rubric)
            submission.scores = scores
            submission.grade = grade
            await self._advance(submission, SubmissionStatus.COMPLETED, f"Total {scores.total:g}/100")

        except GradingError as e:
            await self._fail(submission, e)
            return submission
        finally:
            if workspace is not None and not self.keep_workspaces:
                await self.acquirer.release(workspace)

        logger.info("Submission %s completed: %s (%.1f)", submission.id, submission.grade.value, submission.scores.total)
        self.emit("complete", CompletionEvent(submission=submission))
        return submission

    async def _review(
        self,
        submission: Submission,
        workspace: Path,
        test_results: TestResults,
        rubric: Rubric,
    ) -> QualityAnalysis:
        if self.analyzer is None:
            reason = "AI analysis is disabled or no OpenAI API key is configured"
            return QualityAnalysis(report=degraded_report(reason, test_results), degraded=True)

        try:
            return await self.analyzer.analyze(
                workspace,
                submission.project_type,
                test_results,
                rubric,
                file_globs=submission.file_globs,
                dependencies=submission.metadata.dependencies,
            )
        except Exception as e:
            logger.warning("AI analysis failed for %s: %s", submission.id, e)
            return QualityAnalysis(report=degraded_report(str(e), test_results), degraded=True)

    async def _advance(self, submission: Submission, status: SubmissionStatus, message: str | None = None) -> None:
        if not can_transition(submission.status, status):
            raise InvalidTransition(f"{submission.id}: {submission.status.value} -> {status.value}")

        submission.status = status
        await asyncio.to_thread(self.store.save, submission)
        self._publish_progress(submission, message)

    async def _fail(self, submission: Submission, error: GradingError) -> None:
        phase = submission.status
        if not can_transition(phase, SubmissionStatus.FAILED):
            raise InvalidTransition(f"{submission.id}: {phase.value} -> failed")

        logger.warning("Submission %s failed during %s: %s", submission.id, phase.value, error)
        submission.status = SubmissionStatus.FAILED
        submission.grade = Grade.PENDING
        submission.error = str(error)
        await asyncio.to_thread(self.store.save, submission)
        self.emit("error", ErrorEvent(submission_id=submission.id, error=submission.error, phase=phase))

    def _publish_progress(self, submission: Submission, message: str | None = None) -> None:
        event = ProgressEvent(
            submission_id=submission.id,
            status=submission.status,
            progress_percent=PHASE_PROGRESS[submission.status.value],
            current_step=STEP_DESCRIPTIONS[submission.status],
            message=message,
        )
        self.emit("progress", event)

    def emit(self, method: str, event) -> None:
        try:
            getattr(self.publisher, method)(event)
        except Exception:
            logger.exception("Publishing %s event failed", method)
