"""
In-process facade over the grading pipeline: intake, queries and
administration.
"""

import asyncio
import functools
import logging

from .acquirer import SourceAcquirer
from .aggregator import ScoreAggregator
from .analysis import QualityAnalyzer
from .config import DEFAULT_MAX_CONCURRENT_JOBS
from .config_loader import GraderConfig
from .errors import PersistenceFailure, SubmissionNotFound
from .installer import DependencyInstaller
from .models import ErrorEvent, Grade, GradeRequest, Submission, SubmissionMetadata, SubmissionStatus
from .pipeline import PhaseExecutor
from .publisher import LoggingPublisher, ProgressPublisher
from .registry import NpmRegistryClient
from .rubric import resolve_rubric
from .scheduler import AdmissionScheduler
from .store import SubmissionStore
from .suite_runner import TestExecutor

logger = logging.getLogger(__name__)


class GradingService:
    """
    Accepts grading requests and answers queries about submissions.

    `submit` returns as soon as the record is stored; the run itself happens
    in a background task owned by the admission scheduler.
    """

    def __init__(
        self,
        store: SubmissionStore,
        executor: PhaseExecutor,
        max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS,
    ) -> None:
        self.store = store
        self.executor = executor
        self.scheduler = AdmissionScheduler(
            max_concurrent=max_concurrent_jobs,
            on_crash=self._record_crash,
        )

    @classmethod
    def from_config(
        cls,
        config: GraderConfig,
        publisher: ProgressPublisher | None = None,
        analyzer: QualityAnalyzer | None = None,
    ) -> "GradingService":
        """
        Build a service with production components.

        Args:
            config: Loaded configuration.
            publisher: Progress publisher; defaults to logging only.
            analyzer: Quality analyzer; built from the config when omitted.
                AI analysis is skipped (degraded) when no API key is available.
        """
        if analyzer is None and not config.skip_analysis:
            registry = NpmRegistryClient() if config.registry_lookup else None
            try:
                analyzer = QualityAnalyzer(model=config.openai_model, max_tokens=config.max_tokens, registry=registry)
            except ValueError as e:
                logger.warning("%s AI analysis will be skipped.", e)

        store = SubmissionStore(config.store_dir)
        executor = PhaseExecutor(
            store=store,
            publisher=publisher or LoggingPublisher(),
            acquirer=SourceAcquirer(config.workspace_root, config.clone_timeout_seconds),
            installer=DependencyInstaller(config.install_timeout_seconds),
            test_executor=TestExecutor(config.test_timeout_seconds),
            analyzer=analyzer,
            aggregator=ScoreAggregator(config.pass_threshold),
            keep_workspaces=config.keep_workspaces,
        )
        return cls(store, executor, max_concurrent_jobs=config.max_concurrent_jobs)

    async def submit(self, request: GradeRequest, owner_id: str) -> str:
        """
        Accept a grading request.

        Returns once the record is stored, without waiting for the run.

        Args:
            request: Repository URL, project type, optional rubric and file globs.
            owner_id: Authenticated id of the submitting user.

        Returns:
            The new submission id. The run starts asynchronously.

        Raises:
            RubricError: If the rubric is invalid.
            PersistenceFailure: If the record could not be stored.
        """
        rubric = resolve_rubric(request.rubric, request.project_type)
        submission = Submission(
            repository_url=request.repository_url.strip(),
            project_type=request.project_type,
            owner_id=owner_id,
            rubric=rubric,
            file_globs=request.file_globs or None,
            metadata=SubmissionMetadata(project_type=request.project_type),
        )
        await asyncio.to_thread(self.store.save, submission)
        logger.info("Accepted submission %s from %s for %s", submission.id, owner_id, submission.repository_url)

        self.scheduler.submit(submission.id, functools.partial(self.executor.run, submission.id))
        return submission.id

    async def _record_crash(self, submission_id: str, error: BaseException) -> None:
        try:
            submission = await asyncio.to_thread(self.store.get, submission_id)
        except (SubmissionNotFound, PersistenceFailure):
            logger.error("Cannot mark submission %s as failed: record unavailable", submission_id)
            return

        if submission.status.is_terminal:
            return

        phase = submission.status
        submission.status = SubmissionStatus.FAILED
        submission.grade = Grade.PENDING
        submission.error = f"Internal error during {phase.value}: {error}"
        await asyncio.to_thread(self.store.save, submission)
        self.executor.emit("error", ErrorEvent(submission_id=submission_id, error=submission.error, phase=phase))

    def get(self, submission_id: str) -> Submission:
        return self.store.get(submission_id)

    def list_submissions(
        self,
        owner_id: str | None = None,
        status: SubmissionStatus | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Submission]:
        return self.store.query(owner_id=owner_id, status=status, skip=skip, limit=limit)

    def get_report(self, submission_id: str) -> str:
        return self.store.get_report(submission_id)

    @staticmethod
    def report_filename(submission_id: str) -> str:
        return f"submission-{submission_id}.md"

    def delete(self, submission_id: str) -> None:
        """Remove a finished submission. Running submissions cannot be deleted."""
        submission = self.store.get(submission_id)
        if not submission.status.is_terminal:
            raise ValueError(f"Submission {submission_id} is still being graded")
        self.store.delete(submission_id)
        logger.info("Deleted submission %s", submission_id)

    async def wait_idle(self) -> None:
        await self.scheduler.wait_idle()
