"""
Test suite execution and result parsing.

Runs the project's test command and turns whatever the runner printed into
passed/total/duration counts. A failing test suite is a result, not an
error: only a runner that cannot be started or that times out raises.
"""

import asyncio
import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path

from .config import MAX_DETAIL_CHARS, TEST_REPORT_FILENAME, TEST_TIMEOUT_SECONDS
from .errors import FailureKind, TestExecutionFailure
from .local_runner import CommandTimeout, run_command
from .models import ProjectType, TestResults
from .toolchains import suite_command

logger = logging.getLogger(__name__)

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")


class TestExecutor:
    """
    Runs a workspace's test suite and parses the outcome.
    """

    __test__ = False

    def __init__(self, timeout_seconds: int = TEST_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    async def run(self, workspace: Path, project_type: ProjectType) -> TestResults:
        """
        Run the test suite.

        Returns:
            Parsed TestResults; {0, 0} with the raw output as details when the
            output could not be parsed.

        Raises:
            TestExecutionFailure: If the runner could not start or timed out.
        """
        command, env = suite_command(workspace, project_type)
        report_path = workspace / TEST_REPORT_FILENAME
        await asyncio.to_thread(report_path.unlink, missing_ok=True)

        try:
            result = await run_command(command, cwd=workspace, timeout_seconds=self.timeout_seconds, env=env)
        except CommandTimeout:
            raise TestExecutionFailure(
                f"test run took longer than {self.timeout_seconds}s", FailureKind.TIMEOUT
            )
        except OSError as e:
            raise TestExecutionFailure(f"could not start '{command[0]}': {e}", FailureKind.RUNNER_ERROR) from e

        output = strip_ansi(result.output)
        parsed = await asyncio.to_thread(parse_junit_xml, report_path) or parse_test_output(output)

        if parsed is None:
            logger.info("No parseable test results in output of '%s' (exit code %s)", " ".join(command), result.exit_code)
            return TestResults(
                passed=0,
                total=0,
                details=_truncate(output) or f"Test command exited with code {result.exit_code} and printed nothing",
                duration=round(result.duration_seconds, 3),
            )

        passed, total, duration = parsed
        return TestResults(
            passed=passed,
            total=total,
            details=_truncate(output),
            duration=round(duration if duration is not None else result.duration_seconds, 3),
        )


def strip_ansi(text: str) -> str:
    return _ANSI_ESCAPE.sub("", text)


def _truncate(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_DETAIL_CHARS:
        # Keep the end, where runners print their summaries
        return "...truncated...\n" + text[-MAX_DETAIL_CHARS:]
    return text


def parse_junit_xml(xml_path: Path) -> tuple[int, int, float | None] | None:
    """
    Parse a JUnit XML report.

    Returns:
        Tuple of (passed, total, duration seconds), or None when the report is
        missing, malformed or empty.
    """
    if not xml_path.exists():
        return None

    try:
        root = ET.parse(xml_path).getroot()
    except ET.ParseError as e:
        logger.warning("Malformed JUnit report %s: %s", xml_path, e)
        return None

    total = 0
    passed = 0
    duration = 0.0

    for testcase in root.iter("testcase"):
        if testcase.find("skipped") is not None:
            continue
        total += 1
        time_str = testcase.get("time", "0")
        try:
            duration += float(time_str) if time_str else 0.0
        except ValueError:
            pass
        if testcase.find("failure") is None and testcase.find("error") is None:
            passed += 1

    if total == 0:
        return None
    return passed, total, duration


def _count(pattern: str, text: str) -> int:
    match = re.search(pattern, text)
    return int(match.group(1)) if match else 0


def _last_match(pattern: str, text: str, flags: int = 0) -> re.Match | None:
    matches = list(re.finditer(pattern, text, flags))
    return matches[-1] if matches else None


def parse_test_output(output: str) -> tuple[int, int, float | None] | None:
    """
    Parse the summary printed by common test runners.

    Understands Jest, Mocha, pytest, CTest and TAP (node --test) summaries.
    The last summary in the output wins, since runners print it at the end.

    Returns:
        Tuple of (passed, total, duration seconds or None), or None when no
        summary is recognised.
    """
    # Jest: "Tests:       1 failed, 9 passed, 10 total" / "Time:        1.52 s"
    jest = _last_match(r"^Tests:\s+(.*?\d+ total)", output, re.MULTILINE)
    if jest:
        summary = jest.group(1)
        total = _count(r"(\d+) total", summary)
        passed = _count(r"(\d+) passed", summary)
        time_match = _last_match(r"^Time:\s+([\d.]+)\s*(ms|s)", output, re.MULTILINE)
        duration = None
        if time_match:
            duration = float(time_match.group(1)) / (1000 if time_match.group(2) == "ms" else 1)
        return passed, total, duration

    # Mocha: "9 passing (45ms)" followed by "1 failing"
    mocha = _last_match(r"(\d+) passing \((\d+)(ms|s|m)\)", output)
    if mocha:
        passed = int(mocha.group(1))
        tail = output[mocha.end():]
        failed = _count(r"(\d+) failing", tail)
        amount, unit = float(mocha.group(2)), mocha.group(3)
        duration = amount / 1000 if unit == "ms" else amount * 60 if unit == "m" else amount
        return passed, passed + failed, duration

    # pytest: "1 failed, 9 passed in 0.12s" (optionally wrapped in ====)
    pytest_summary = _last_match(
        r"((?:\d+ (?:passed|failed|errors?|skipped|xfailed|xpassed|warnings?|deselected)(?:, )?)+) in ([\d.]+)s",
        output,
    )
    if pytest_summary:
        summary = pytest_summary.group(1)
        passed = _count(r"(\d+) passed", summary)
        failed = _count(r"(\d+) failed", summary)
        errors = _count(r"(\d+) errors?", summary)
        return passed, passed + failed + errors, float(pytest_summary.group(2))

    # CTest: "90% tests passed, 1 tests failed out of 10" / "Total Test time (real) =   0.02 sec"
    ctest = _last_match(r"\d+% tests passed, (\d+) tests? failed out of (\d+)", output)
    if ctest:
        failed, total = int(ctest.group(1)), int(ctest.group(2))
        time_match = _last_match(r"Total Test time \(real\) =\s+([\d.]+) sec", output)
        return total - failed, total, float(time_match.group(1)) if time_match else None

    # TAP / node --test: "# pass 9" and "# fail 1"
    tap_pass = _last_match(r"^# pass\s+(\d+)", output, re.MULTILINE)
    if tap_pass:
        passed = int(tap_pass.group(1))
        failed_match = _last_match(r"^# fail\s+(\d+)", output, re.MULTILINE)
        failed = int(failed_match.group(1)) if failed_match else 0
        duration_match = _last_match(r"^# duration_ms\s+([\d.]+)", output, re.MULTILINE)
        duration = float(duration_match.group(1)) / 1000 if duration_match else None
        return passed, passed + failed, duration

    return None
