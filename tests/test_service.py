import asyncio
import threading

import pytest
import yaml

from conftest import FakeTestExecutor, grade_request
from repograder.config_loader import GraderConfig
from repograder.errors import ReportNotFound, RubricError, SubmissionNotFound
from repograder.models import ErrorEvent, Grade, SubmissionStatus
from repograder.service import GradingService


def test_submit_acknowledges_immediately(make_executor, make_service, store):
    service = make_service(make_executor(test_executor=FakeTestExecutor(delay=0.05)))

    async def scenario():
        submission_id = await service.submit(grade_request(), "student-1")
        record = store.get(submission_id)
        assert record.status == SubmissionStatus.UPLOADING
        assert record.grade == Grade.PENDING
        assert record.owner_id == "student-1"
        await service.wait_idle()
        return submission_id

    submission_id = asyncio.run(scenario())
    assert service.get(submission_id).status == SubmissionStatus.COMPLETED


def test_submit_rejects_invalid_rubric(make_executor, make_service, store):
    service = make_service(make_executor())

    async def scenario():
        await service.submit(grade_request(rubric={"style": 10}), "student-1")

    with pytest.raises(RubricError):
        asyncio.run(scenario())
    assert store.all() == []


def test_submit_rejects_infinite_weight(make_executor, make_service, store):
    service = make_service(make_executor())
    rubric = yaml.safe_load("test_results: {weight: .inf}")

    async def scenario():
        await service.submit(grade_request(rubric=rubric), "student-1")

    with pytest.raises(RubricError):
        asyncio.run(scenario())
    assert store.all() == []


def test_submit_stores_the_record_off_the_event_loop(make_executor, make_service, store, monkeypatch):
    writer_threads = []
    save = store.save

    def recording_save(submission):
        writer_threads.append(threading.get_ident())
        return save(submission)

    monkeypatch.setattr(store, "save", recording_save)
    service = make_service(make_executor())

    async def scenario():
        await service.submit(grade_request(), "student-1")
        loop_thread = threading.get_ident()
        await service.wait_idle()
        return loop_thread

    loop_thread = asyncio.run(scenario())
    assert writer_threads
    assert loop_thread not in writer_threads


def test_submit_stores_resolved_rubric(make_executor, make_service):
    service = make_service(make_executor())

    async def scenario():
        submission_id = await service.submit(grade_request(rubric={"testResults": {"weight": 70}, "codeQuality": 30}), "s")
        await service.wait_idle()
        return submission_id

    record = service.get(asyncio.run(scenario()))
    assert record.rubric.test_results.weight == 70
    assert record.rubric.code_quality.weight == 30
    # 0.7 * 100 + 0.3 * 85
    assert record.scores.total == pytest.approx(95.5)


def test_concurrent_submissions_respect_limit(make_executor, make_service):
    service = make_service(make_executor(test_executor=FakeTestExecutor(delay=0.01)), max_concurrent_jobs=2)

    async def scenario():
        ids = [await service.submit(grade_request(), f"student-{i}") for i in range(6)]
        await service.wait_idle()
        return ids

    ids = asyncio.run(scenario())
    assert service.scheduler.peak_in_flight == 2
    assert all(service.get(i).status == SubmissionStatus.COMPLETED for i in ids)


def test_crash_boundary_marks_submission_failed(make_executor, make_service, store, publisher, monkeypatch):
    executor = make_executor()

    async def crash(submission_id):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(executor, "run", crash)
    service = make_service(executor)

    async def scenario():
        submission_id = await service.submit(grade_request(), "student-1")
        await service.wait_idle()
        return submission_id

    record = store.get(asyncio.run(scenario()))
    assert record.status == SubmissionStatus.FAILED
    assert "unexpected" in record.error
    assert isinstance(publisher.events[-1], ErrorEvent)


def test_queries(make_executor, make_service, make_submission):
    service = make_service(make_executor())
    first = make_submission(owner_id="alice")
    second = make_submission(owner_id="bob", status=SubmissionStatus.FAILED, error="boom")

    assert [s.id for s in service.list_submissions()] == [second.id, first.id]
    assert [s.id for s in service.list_submissions(owner_id="alice")] == [first.id]
    assert [s.id for s in service.list_submissions(status=SubmissionStatus.FAILED)] == [second.id]

    with pytest.raises(ReportNotFound):
        service.get_report(first.id)
    with pytest.raises(SubmissionNotFound):
        service.get("does-not-exist")

    assert service.report_filename(first.id) == f"submission-{first.id}.md"


def test_delete_only_finished_submissions(make_executor, make_service, make_submission):
    service = make_service(make_executor())
    running = make_submission(status=SubmissionStatus.TESTING)
    failed = make_submission(status=SubmissionStatus.FAILED, error="boom")

    with pytest.raises(ValueError):
        service.delete(running.id)

    service.delete(failed.id)
    with pytest.raises(SubmissionNotFound):
        service.get(failed.id)


def test_from_config_without_api_key_skips_analysis(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("HOME", str(tmp_path))
    config = GraderConfig(store_dir=tmp_path / "store", workspace_root=tmp_path / "ws")

    service = GradingService.from_config(config)

    assert service.executor.analyzer is None
    assert service.store.store_dir == tmp_path / "store"


def test_from_config_skip_analysis(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    config = GraderConfig(store_dir=tmp_path / "store", skip_analysis=True)

    assert GradingService.from_config(config).executor.analyzer is None


def test_from_config_builds_analyzer(tmp_path, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    config = GraderConfig(store_dir=tmp_path / "store", openai_model="gpt-4o-mini", registry_lookup=False)

    analyzer = GradingService.from_config(config).executor.analyzer

    assert analyzer.model == "gpt-4o-mini"
    assert analyzer.registry is None
