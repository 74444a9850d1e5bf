"""
Error taxonomy for the grading pipeline.

Acquisition, installation and test-environment failures are fatal to a
submission. Analysis failures are always recovered by the pipeline.
Persistence failures propagate out of the pipeline.
"""

from enum import Enum

from .models import SubmissionStatus


class FailureKind(str, Enum):
    NOT_FOUND = "NotFound"
    ACCESS_DENIED = "AccessDenied"
    TIMEOUT = "Timeout"
    MANIFEST_MISSING = "ManifestMissing"
    INSTALL_ERROR = "InstallError"
    RUNNER_ERROR = "RunnerError"
    SERVICE_ERROR = "ServiceError"
    EMPTY_RESPONSE = "EmptyResponse"


class GradingError(Exception):
    """Base class for pipeline failures raised by the phase components."""

    phase: SubmissionStatus = SubmissionStatus.UPLOADING
    label: str = "Grading failure"

    def __init__(self, message: str, kind: FailureKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind

    def __str__(self) -> str:
        kind = f" ({self.kind.value})" if self.kind else ""
        return f"{self.label}{kind}: {self.message}"


class AcquisitionFailure(GradingError):
    phase = SubmissionStatus.UPLOADING
    label = "Repository acquisition failed"


class InstallationFailure(GradingError):
    phase = SubmissionStatus.INSTALLING
    label = "Dependency installation failed"


class TestExecutionFailure(GradingError):
    __test__ = False

    phase = SubmissionStatus.TESTING
    label = "Test execution failed"


class AnalysisFailure(GradingError):
    phase = SubmissionStatus.REVIEWING
    label = "AI analysis failed"


class PersistenceFailure(Exception):
    """The result store could not read or write a submission record."""


class RubricError(ValueError):
    """A caller-supplied rubric is invalid."""


class SubmissionNotFound(KeyError):
    pass


class ReportNotFound(LookupError):
    pass


class InvalidTransition(RuntimeError):
    """The phase executor attempted a move the state machine does not allow."""
