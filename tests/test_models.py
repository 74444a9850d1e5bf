import pytest

from repograder.errors import AcquisitionFailure, FailureKind, TestExecutionFailure
from repograder.models import STATUS_ORDER, GradeRequest, ProjectType, SubmissionStatus, can_transition


def test_forward_edges_only():
    for current, following in zip(STATUS_ORDER, STATUS_ORDER[1:]):
        assert can_transition(current, following)

    assert not can_transition(SubmissionStatus.UPLOADING, SubmissionStatus.TESTING)
    assert not can_transition(SubmissionStatus.REVIEWING, SubmissionStatus.INSTALLING)
    assert not can_transition(SubmissionStatus.TESTING, SubmissionStatus.TESTING)


def test_failed_reachable_from_non_terminal_states():
    for status in STATUS_ORDER[:-1]:
        assert can_transition(status, SubmissionStatus.FAILED)
    assert can_transition(SubmissionStatus.FAILED, SubmissionStatus.FAILED)
    assert not can_transition(SubmissionStatus.COMPLETED, SubmissionStatus.FAILED)
    assert not can_transition(SubmissionStatus.FAILED, SubmissionStatus.INSTALLING)
    assert not can_transition(SubmissionStatus.COMPLETED, SubmissionStatus.UPLOADING)


def test_grade_request_accepts_camel_case():
    request = GradeRequest.model_validate({
        "repositoryUrl": "https://github.com/example/project.git",
        "projectType": "native-language",
        "fileGlobs": ["src/*.c"],
    })
    assert request.project_type == ProjectType.NATIVE_LANGUAGE
    assert request.file_globs == ["src/*.c"]
    assert request.rubric is None


def test_grade_request_rejects_unknown_project_type():
    with pytest.raises(ValueError):
        GradeRequest(repository_url="https://x/y.git", project_type="cobol")


def test_error_messages_name_the_phase():
    error = AcquisitionFailure("repository not found", FailureKind.NOT_FOUND)
    assert str(error) == "Repository acquisition failed (NotFound): repository not found"
    assert error.phase == SubmissionStatus.UPLOADING
    assert TestExecutionFailure("x").phase == SubmissionStatus.TESTING


@pytest.mark.parametrize("pattern", ["/etc/*", "", "  ", "../secret/*", "src/../../x", "C:\\Windows\\*", "\\\\server\\share\\*"])
def test_grade_request_rejects_unusable_globs(pattern):
    with pytest.raises(ValueError, match="file glob"):
        GradeRequest(repository_url="https://x/y.git", project_type="python", file_globs=["README.md", pattern])


def test_grade_request_keeps_relative_globs():
    request = GradeRequest(repository_url="https://x/y.git", project_type="python", file_globs=["src/**/*.py", "./README.md"])
    assert request.file_globs == ["src/**/*.py", "./README.md"]
