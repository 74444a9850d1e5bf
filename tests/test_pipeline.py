import asyncio
import threading

import pytest

from conftest import (
    ExplodingPublisher,
    FakeAcquirer,
    FakeAnalyzer,
    FakeInstaller,
    FakeTestExecutor,
    acquisition_failure,
    analysis_failure,
)
from repograder.errors import FailureKind, InstallationFailure, PersistenceFailure, TestExecutionFailure
from repograder.models import (
    STATUS_ORDER,
    CompletionEvent,
    ErrorEvent,
    Grade,
    ProgressEvent,
    ProjectType,
    SubmissionStatus,
)


def test_full_success(make_executor, make_submission, store, publisher):
    submission = make_submission()
    executor = make_executor(test_executor=FakeTestExecutor(passed=10, total=10), analyzer=FakeAnalyzer(quality=85))

    result = asyncio.run(executor.run(submission.id))

    stored = store.get(submission.id)
    assert result.status == stored.status == SubmissionStatus.COMPLETED
    assert stored.grade == Grade.PASS
    assert stored.scores.test == 100
    assert stored.scores.quality == 85
    assert stored.scores.total == pytest.approx(92.5)
    assert [b.category for b in stored.scores.breakdown] == ["Code Quality", "Test Results"]
    assert [b.score for b in stored.scores.breakdown] == [85, 100]
    assert stored.report.startswith("# Code Review Report")
    assert stored.error is None
    assert stored.metadata.dependencies == ["express"]
    assert stored.metadata.test_results.passed == 10
    assert stored.metadata.ai_analysis.model_used == "gpt-4o"

    assert isinstance(publisher.events[-1], CompletionEvent)
    assert publisher.events[-1].submission.status == SubmissionStatus.COMPLETED


def test_progress_events_follow_the_state_machine(make_executor, make_submission, publisher):
    submission = make_submission()
    asyncio.run(make_executor().run(submission.id))

    statuses = [e.status for e in publisher.progress_events]
    assert statuses == STATUS_ORDER
    percents = [e.progress_percent for e in publisher.progress_events]
    assert percents == sorted(percents)
    assert percents[-1] == 100
    assert all(e.submission_id == submission.id for e in publisher.progress_events)


def test_acquisition_failure(make_executor, make_submission, store, publisher, tmp_path):
    submission = make_submission()
    acquirer = FakeAcquirer(tmp_path / "workspaces", failure=acquisition_failure())
    analyzer = FakeAnalyzer()

    asyncio.run(make_executor(acquirer=acquirer, analyzer=analyzer).run(submission.id))

    stored = store.get(submission.id)
    assert stored.status == SubmissionStatus.FAILED
    assert "acquisition" in stored.error.lower()
    assert stored.grade == Grade.PENDING
    assert stored.scores is None
    assert stored.report is None
    assert analyzer.calls == 0

    error = publisher.events[-1]
    assert isinstance(error, ErrorEvent)
    assert error.phase == SubmissionStatus.UPLOADING
    assert error.error == stored.error


def test_analysis_degradation(make_executor, make_submission, store):
    submission = make_submission()
    executor = make_executor(
        test_executor=FakeTestExecutor(passed=8, total=10),
        analyzer=FakeAnalyzer(failure=analysis_failure()),
    )

    asyncio.run(executor.run(submission.id))

    stored = store.get(submission.id)
    assert stored.status == SubmissionStatus.COMPLETED
    assert stored.scores.quality == 0
    assert stored.scores.test == 80
    assert stored.scores.total == 40
    assert stored.grade == Grade.FAIL
    assert "AI analysis did not succeed" in stored.report
    assert "8/10 tests passed" in stored.report
    assert stored.metadata.ai_analysis.model_used == "none"


def test_missing_analyzer_degrades(make_executor, make_submission, store):
    submission = make_submission()
    asyncio.run(make_executor(analyzer=None).run(submission.id))

    stored = store.get(submission.id)
    assert stored.status == SubmissionStatus.COMPLETED
    assert stored.scores.quality == 0
    assert "AI analysis did not succeed" in stored.report


def test_unexpected_analyzer_error_degrades(make_executor, make_submission, store):
    submission = make_submission()
    asyncio.run(make_executor(analyzer=FakeAnalyzer(failure=KeyError("choices"))).run(submission.id))

    assert store.get(submission.id).status == SubmissionStatus.COMPLETED


def test_installation_failure_is_fatal(make_executor, make_submission, store, publisher):
    submission = make_submission()
    installer = FakeInstaller(failure=InstallationFailure("no package.json found", FailureKind.MANIFEST_MISSING))

    asyncio.run(make_executor(installer=installer).run(submission.id))

    stored = store.get(submission.id)
    assert stored.status == SubmissionStatus.FAILED
    assert "ManifestMissing" in stored.error
    assert publisher.events[-1].phase == SubmissionStatus.INSTALLING


def test_runner_crash_is_fatal_but_failing_tests_are_not(make_executor, make_submission, store):
    crashed = make_submission()
    failure = TestExecutionFailure("could not start 'npm'", FailureKind.RUNNER_ERROR)
    asyncio.run(make_executor(test_executor=FakeTestExecutor(failure=failure)).run(crashed.id))
    assert store.get(crashed.id).status == SubmissionStatus.FAILED

    all_failing = make_submission()
    asyncio.run(make_executor(test_executor=FakeTestExecutor(passed=0, total=10)).run(all_failing.id))
    stored = store.get(all_failing.id)
    assert stored.status == SubmissionStatus.COMPLETED
    assert stored.scores.test == 0


def test_native_project_scores_code_smell(make_executor, make_submission, store):
    submission = make_submission(project_type=ProjectType.NATIVE_LANGUAGE)
    executor = make_executor(test_executor=FakeTestExecutor(passed=5, total=10), analyzer=FakeAnalyzer(quality=80, smell=60))

    asyncio.run(executor.run(submission.id))

    stored = store.get(submission.id)
    assert [b.category for b in stored.scores.breakdown] == ["Code Quality", "Code Smell", "Test Results"]
    # 0.5 * 50 + 0.25 * 80 + 0.25 * 60
    assert stored.scores.total == pytest.approx(60)
    assert stored.grade == Grade.PASS


def test_workspace_is_released(make_executor, make_submission, tmp_path):
    acquirer = FakeAcquirer(tmp_path / "workspaces")
    submission = make_submission()

    asyncio.run(make_executor(acquirer=acquirer, test_executor=FakeTestExecutor(failure=TestExecutionFailure("boom"))).run(submission.id))

    assert acquirer.released == [tmp_path / "workspaces" / submission.id]


def test_publisher_errors_do_not_affect_the_store(make_executor, make_submission, store):
    submission = make_submission()
    asyncio.run(make_executor(publisher_override=ExplodingPublisher()).run(submission.id))

    assert store.get(submission.id).status == SubmissionStatus.COMPLETED


def test_persistence_failure_propagates(make_executor, make_submission, store, monkeypatch):
    submission = make_submission()

    def broken_save(record):
        raise PersistenceFailure("disk full")

    monkeypatch.setattr(store, "save", broken_save)

    with pytest.raises(PersistenceFailure):
        asyncio.run(make_executor().run(submission.id))


def test_grade_is_pending_until_completed(make_executor, make_submission, store, publisher):
    submission = make_submission()
    seen = []

    class Snooping(type(publisher)):
        def progress(self, event: ProgressEvent) -> None:
            seen.append(store.get(event.submission_id))

    asyncio.run(make_executor(publisher_override=Snooping()).run(submission.id))

    for record in seen:
        if record.status != SubmissionStatus.COMPLETED:
            assert record.grade == Grade.PENDING
        else:
            assert record.grade in (Grade.PASS, Grade.FAIL)


def test_each_executor_gets_its_own_analyzer(make_executor, make_submission):
    first, second = make_executor(), make_executor()
    assert first.analyzer is not second.analyzer

    asyncio.run(first.run(make_submission().id))

    assert first.analyzer.calls == 1
    assert second.analyzer.calls == 0


def test_reviewer_test_opinion_is_kept(make_executor, make_submission, store):
    submission = make_submission()
    asyncio.run(make_executor(analyzer=FakeAnalyzer(quality=85, reviewer_test_score=40)).run(submission.id))

    stored = store.get(submission.id)
    assert stored.metadata.ai_analysis.reviewer_test_score == 40
    # The reviewer's opinion never replaces the measured pass ratio
    assert stored.scores.test == 100


def test_declared_dependencies_are_read_off_the_event_loop(make_executor, make_submission):
    installer = FakeInstaller(dependencies=["express", "lodash"])
    submission = make_submission()

    result = asyncio.run(make_executor(installer=installer).run(submission.id))

    assert result.metadata.dependencies == ["express", "lodash"]
    assert installer.reader_threads and installer.reader_threads[0] != threading.get_ident()
