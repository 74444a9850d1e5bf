"""
Result store: one JSON file per submission.

Records are written atomically (temporary file, then rename) so a reader
never sees a half-written submission.
"""

import logging
import os
from pathlib import Path

from pydantic import ValidationError

from .config import DEFAULT_STORE_DIR
from .errors import PersistenceFailure, ReportNotFound, SubmissionNotFound
from .models import Submission, SubmissionStatus, utc_now

logger = logging.getLogger(__name__)


class SubmissionStore:
    """
    Durable submission records under `store_dir`.

    Each submission is exclusively written by its own pipeline run, so no
    cross-record locking is needed.
    """

    def __init__(self, store_dir: Path = DEFAULT_STORE_DIR) -> None:
        self.store_dir = store_dir

    def _path(self, submission_id: str) -> Path:
        if not submission_id or "/" in submission_id or "\\" in submission_id or submission_id.startswith("."):
            raise SubmissionNotFound(submission_id)
        return self.store_dir / f"{submission_id}.json"

    def save(self, submission: Submission) -> Submission:
        """
        Persist a submission, refreshing its `updated_at` timestamp.

        Raises:
            PersistenceFailure: If the record cannot be written.
        """
        submission.updated_at = utc_now()
        path = self._path(submission.id)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            self.store_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(submission.model_dump_json(indent=2))
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceFailure(f"Could not write submission {submission.id}: {e}") from e
        return submission

    def get(self, submission_id: str) -> Submission:
        """
        Load one submission.

        Raises:
            SubmissionNotFound: If no record exists.
            PersistenceFailure: If the record exists but cannot be read.
        """
        path = self._path(submission_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            raise SubmissionNotFound(submission_id) from None
        except OSError as e:
            raise PersistenceFailure(f"Could not read submission {submission_id}: {e}") from e

        try:
            return Submission.model_validate_json(content)
        except ValidationError as e:
            raise PersistenceFailure(f"Submission record {submission_id} is corrupt: {e}") from e

    def exists(self, submission_id: str) -> bool:
        return self._path(submission_id).exists()

    def all(self) -> list[Submission]:
        """Every readable record, newest first. Unreadable records are skipped."""
        if not self.store_dir.exists():
            return []

        submissions: list[Submission] = []
        for json_file in self.store_dir.glob("*.json"):
            try:
                submissions.append(self.get(json_file.stem))
            except (PersistenceFailure, SubmissionNotFound) as e:
                logger.warning("Skipping submission record %s: %s", json_file.name, e)

        submissions.sort(key=lambda s: s.created_at, reverse=True)
        return submissions

    def query(
        self,
        owner_id: str | None = None,
        status: SubmissionStatus | None = None,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Submission]:
        """
        Filtered, paginated listing sorted newest-first by creation time.

        Args:
            owner_id: Only submissions of this owner.
            status: Only submissions in this status.
            skip: Number of matching records to skip.
            limit: Maximum number of records to return.
        """
        matches = [
            s for s in self.all()
            if (owner_id is None or s.owner_id == owner_id) and (status is None or s.status == status)
        ]
        skip = max(skip, 0)
        return matches[skip:skip + max(limit, 0)]

    def get_report(self, submission_id: str) -> str:
        """
        Return the stored markdown report verbatim.

        Raises:
            SubmissionNotFound: If no record exists.
            ReportNotFound: If the submission has no report yet.
        """
        submission = self.get(submission_id)
        if submission.report is None:
            raise ReportNotFound(f"Submission {submission_id} has no report yet")
        return submission.report

    def delete(self, submission_id: str) -> None:
        """
        Remove a record. Administrative; never called by the pipeline.

        Raises:
            SubmissionNotFound: If no record exists.
            PersistenceFailure: If the record cannot be removed.
        """
        path = self._path(submission_id)
        try:
            path.unlink()
        except FileNotFoundError:
            raise SubmissionNotFound(submission_id) from None
        except OSError as e:
            raise PersistenceFailure(f"Could not delete submission {submission_id}: {e}") from e
