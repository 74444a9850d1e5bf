"""
Repository Grader: clone, install, test and review student repositories

Usage:
  main.py grade <repository_url> [--type=TYPE] [--rubric=PATH] [--glob=PATTERN]... [--owner=ID] [--config=PATH]
  main.py batch <requests_file> [--owner=ID] [--config=PATH]
  main.py list [--owner=ID] [--status=STATUS] [--skip=N] [--limit=N] [--config=PATH]
  main.py report <submission_id> [--output=PATH] [--config=PATH]
  main.py export [--output-dir=PATH] [--config=PATH]
  main.py dashboard [--config=PATH]
  main.py (-h | --help)

Options:
  --type=TYPE         Project type: server-framework, client-framework, full-stack,
                      python or native-language [default: server-framework].
  --rubric=PATH       YAML or JSON rubric mapping category to {weight, maxScore}.
  --glob=PATTERN      File pattern to include in the AI review (repeatable).
  --owner=ID          Owner id recorded on the submission, or listed.
  --config=PATH       Path to YAML configuration file.
  --status=STATUS     Only list submissions in this status.
  --skip=N            Number of submissions to skip [default: 0].
  --limit=N           Maximum number of submissions to list [default: 50].
  --output=PATH       Write the report to this file instead of stdout.
  --output-dir=PATH   Directory for the summary export.
  -h --help           Show this screen.
"""

import asyncio
import json
import logging
import os
import sys
import webbrowser
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml
from docopt import docopt
from pydantic import ValidationError

from repograder.config import LOG_BACKUP_COUNT, LOG_DATE_FORMAT, LOG_FORMAT, LOG_MAX_BYTES
from repograder.config_loader import GraderConfig, load_config
from repograder.errors import ReportNotFound, RubricError, SubmissionNotFound
from repograder.models import GradeRequest, ProjectType, Submission, SubmissionStatus
from repograder.publisher import CompositePublisher, ConsolePublisher, LoggingPublisher
from repograder.rubric import load_rubric_file
from repograder.service import GradingService
from repograder.store import SubmissionStore
from repograder.summary import SummaryExporter


def setup_logging(config: GraderConfig) -> None:
    """
    Configure the root logger: console output plus an optional rotating file.
    """
    level = logging.DEBUG if config.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(level)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    # Progress goes to the console through print; keep the console log for warnings unless verbose
    console.setLevel(level if config.verbose else max(level, logging.WARNING))
    root.addHandler(console)

    if config.log_file:
        config.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def print_submission_summary(submission: Submission) -> None:
    """
    Print a summary of a finished submission to console.

    Args:
        submission: Submission in a terminal state.
    """
    print(f"\n  {'='*50}")
    print(f"  Submission: {submission.id}")
    print(f"  Repository: {submission.repository_url}")
    print(f"  Status: {submission.status.value}")
    if submission.status == SubmissionStatus.FAILED:
        print(f"  Error: {submission.error}")
        print(f"  {'='*50}\n")
        return

    print(f"  Grade: {submission.grade.value.upper()}")
    print(f"  Total Score: {submission.scores.total:.1f}/100")
    results = submission.metadata.test_results
    print(f"  Tests Passed: {results.passed}/{results.total}")
    print(f"  {'='*50}")

    for entry in submission.scores.breakdown:
        status = "+" if entry.score >= entry.max_score * 0.6 else "-"
        print(f"  [{status}] {entry.category}: {entry.score:.1f}/{entry.max_score:.1f}")

    print()


def load_requests(requests_file: Path) -> list[GradeRequest]:
    """
    Load grading requests from a YAML or JSON file holding a list of
    {repositoryUrl, projectType, rubric?, fileGlobs?} mappings.
    """
    content = requests_file.read_text(encoding="utf-8")
    data = json.loads(content) if requests_file.suffix.lower() == ".json" else yaml.safe_load(content)
    if isinstance(data, dict):
        data = data.get("submissions", [])
    if not isinstance(data, list):
        raise ValueError(f"{requests_file} must contain a list of grading requests")
    return [GradeRequest.model_validate(item) for item in data]


async def run_grading(config: GraderConfig, requests: list[GradeRequest], owner_id: str) -> list[Submission]:
    """
    Submit requests, print progress as it arrives and wait for all runs.

    Returns:
        The finished submissions, in request order.
    """
    publisher = CompositePublisher(ConsolePublisher(), LoggingPublisher())
    service = GradingService.from_config(config, publisher=publisher)

    ids = [await service.submit(request, owner_id) for request in requests]
    print(f"Queued {len(ids)} submission(s), up to {config.max_concurrent_jobs} at a time")
    await service.wait_idle()

    return [service.get(submission_id) for submission_id in ids]


def print_run_summary(submissions: list[Submission]) -> None:
    for submission in submissions:
        print_submission_summary(submission)

    completed = [s for s in submissions if s.status == SubmissionStatus.COMPLETED]
    print("=" * 60)
    print("GRADING COMPLETE")
    print("=" * 60)
    print(f"Total submissions processed: {len(submissions)}")
    print(f"Completed: {len(completed)}  Failed: {len(submissions) - len(completed)}")
    if completed:
        avg_score = sum(s.scores.total for s in completed) / len(completed)
        passed = sum(1 for s in completed if s.grade.value == "pass")
        print(f"Average score: {avg_score:.1f}/100")
        print(f"Passed: {passed}/{len(completed)} ({100*passed/len(completed):.1f}%)")


def cmd_grade(config: GraderConfig, arguments: dict) -> int:
    rubric = None
    if arguments["--rubric"]:
        rubric = load_rubric_file(Path(arguments["--rubric"]))

    request = GradeRequest(
        repository_url=arguments["<repository_url>"],
        project_type=ProjectType(arguments["--type"]),
        rubric=rubric,
        file_globs=arguments["--glob"] or None,
    )
    submissions = asyncio.run(run_grading(config, [request], arguments["--owner"] or "cli"))
    print_run_summary(submissions)
    return 0 if all(s.status == SubmissionStatus.COMPLETED for s in submissions) else 1


def cmd_batch(config: GraderConfig, arguments: dict) -> int:
    requests_file = Path(arguments["<requests_file>"])
    if not requests_file.exists():
        print(f"Error: Requests file not found: {requests_file}")
        return 1

    requests = load_requests(requests_file)
    if not requests:
        print("No grading requests found!")
        return 1

    print(f"Loaded {len(requests)} grading request(s) from {requests_file}")
    submissions = asyncio.run(run_grading(config, requests, arguments["--owner"] or "cli"))
    print_run_summary(submissions)
    return 0


def cmd_list(config: GraderConfig, arguments: dict) -> int:
    status = SubmissionStatus(arguments["--status"]) if arguments["--status"] else None
    submissions = SubmissionStore(config.store_dir).query(
        owner_id=arguments["--owner"],
        status=status,
        skip=int(arguments["--skip"]),
        limit=int(arguments["--limit"]),
    )
    if not submissions:
        print("No submissions found.")
        return 0

    print(f"{'ID':<34}{'STATUS':<12}{'GRADE':<9}{'TOTAL':>7}  {'OWNER':<12}REPOSITORY")
    for s in submissions:
        total = f"{s.scores.total:.1f}" if s.scores else "-"
        print(f"{s.id:<34}{s.status.value:<12}{s.grade.value:<9}{total:>7}  {s.owner_id:<12}{s.repository_url}")
    return 0


def cmd_report(config: GraderConfig, arguments: dict) -> int:
    submission_id = arguments["<submission_id>"]
    report = SubmissionStore(config.store_dir).get_report(submission_id)

    if arguments["--output"]:
        output_path = Path(arguments["--output"])
        if output_path.is_dir():
            output_path = output_path / GradingService.report_filename(submission_id)
        output_path.write_text(report, encoding="utf-8")
        print(f"Saved report to {output_path}")
    else:
        print(report)
    return 0


def cmd_export(config: GraderConfig, arguments: dict) -> int:
    output_dir = Path(arguments["--output-dir"]) if arguments["--output-dir"] else config.export_dir
    submissions = SubmissionStore(config.store_dir).all()
    if not submissions:
        print("No submissions found.")
        return 1

    print("Saving aggregated grades...")
    output_files = SummaryExporter(output_dir=output_dir).save_all(submissions)
    print(f"  Summary JSON: {output_files.get('summary_json')}")
    print(f"  Summary CSV:  {output_files.get('summary_csv')}")
    return 0


def cmd_dashboard(config: GraderConfig, arguments: dict) -> int:
    from repograder.dashboard import create_dashboard

    print(f"Launching dashboard from {config.store_dir}...")
    print("Press Ctrl+C to stop the server.")
    # Only open browser on the main process, not the reloader
    if not os.environ.get("WERKZEUG_RUN_MAIN"):
        url = f"http://127.0.0.1:{config.dashboard_port}"
        print(f"Opening {url} in browser...")
        webbrowser.open(url)

    app = create_dashboard(SubmissionStore(config.store_dir))
    app.run(debug=config.verbose, port=config.dashboard_port)
    return 0


COMMANDS = {
    "grade": cmd_grade,
    "batch": cmd_batch,
    "list": cmd_list,
    "report": cmd_report,
    "export": cmd_export,
    "dashboard": cmd_dashboard,
}


def main() -> int:
    """
    Main CLI entrypoint.

    Returns:
        Exit code (0 for success, 1 for error).
    """
    arguments = docopt(__doc__)

    try:
        config = load_config(Path(arguments["--config"]) if arguments["--config"] else None)
    except (OSError, yaml.YAMLError, ValueError) as e:
        print(f"Error loading config: {e}")
        return 1
    setup_logging(config)

    command = next(name for name in COMMANDS if arguments[name])
    try:
        return COMMANDS[command](config, arguments)
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
        return 1
    except (SubmissionNotFound, ReportNotFound) as e:
        print(f"Error: {e}")
        return 1
    except (RubricError, ValidationError, ValueError, OSError) as e:
        print(f"Error: {e}")
        if config.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
