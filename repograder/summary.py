"""
Summary export of all submissions.

Writes a JSON summary with statistics and a CSV for gradebook import.
"""

import csv
import json
from datetime import datetime
from pathlib import Path

from .config import DEFAULT_EXPORT_DIR, GRADES_CSV_FILENAME, GRADES_SUMMARY_FILENAME
from .models import Grade, Submission, SubmissionStatus
from .rubric import CATEGORY_LABELS


class SummaryExporter:
    """
    Exports a set of submissions to the export directory.
    """

    def __init__(self, output_dir: Path | None = None) -> None:
        """
        Initialize the exporter.

        Args:
            output_dir: Directory to write the summaries to. Defaults to ./grades/
        """
        self.output_dir = output_dir or DEFAULT_EXPORT_DIR
        self.timestamp = datetime.now().isoformat()

    def save_all(self, submissions: list[Submission]) -> dict[str, Path]:
        """
        Write the JSON and CSV summaries.

        Returns:
            Dictionary of output file paths.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        summary_path = self.output_dir / GRADES_SUMMARY_FILENAME
        summary_data = {
            "timestamp": self.timestamp,
            "total_submissions": len(submissions),
            "statistics": calculate_statistics(submissions),
            "submissions": [s.model_dump(mode="json") for s in submissions],
        }
        with open(summary_path, "w", encoding="utf-8") as f:
            json.dump(summary_data, f, indent=2)

        csv_path = self.output_dir / GRADES_CSV_FILENAME
        self._save_csv(csv_path, submissions)

        return {"summary_json": summary_path, "summary_csv": csv_path}

    def _save_csv(self, csv_path: Path, submissions: list[Submission]) -> None:
        categories = list(CATEGORY_LABELS.values())
        header = ["id", "owner_id", "repository_url", "project_type", "status", "grade", "total", "test", "quality"]
        header.extend(categories)
        header.append("error")

        with open(csv_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(header)

            for s in submissions:
                row = [
                    s.id,
                    s.owner_id,
                    s.repository_url,
                    s.project_type.value,
                    s.status.value,
                    s.grade.value,
                    s.scores.total if s.scores else "",
                    s.scores.test if s.scores else "",
                    s.scores.quality if s.scores else "",
                ]
                entries = {b.category: b for b in s.scores.breakdown} if s.scores else {}
                for category in categories:
                    entry = entries.get(category)
                    row.append(f"{entry.score:g}/{entry.max_score:g}" if entry else "")
                row.append((s.error or "")[:200])
                writer.writerow(row)


def calculate_statistics(submissions: list[Submission]) -> dict:
    """
    Summary statistics over completed submissions.

    Returns:
        Dictionary with statistics; empty when nothing has completed.
    """
    completed = [s for s in submissions if s.status == SubmissionStatus.COMPLETED and s.scores]
    failed_runs = sum(1 for s in submissions if s.status == SubmissionStatus.FAILED)
    if not completed:
        return {"failed_runs": failed_runs} if submissions else {}

    totals = [s.scores.total for s in completed]
    passed = sum(1 for s in completed if s.grade == Grade.PASS)

    return {
        "average_score": sum(totals) / len(totals),
        "highest_score": max(totals),
        "lowest_score": min(totals),
        "pass_count": passed,
        "fail_count": len(completed) - passed,
        "pass_percent": (passed / len(completed)) * 100,
        "failed_runs": failed_runs,
    }
