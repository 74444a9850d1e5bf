import asyncio
import sys

import pytest

from repograder.local_runner import CommandTimeout, run_command


def test_captures_output_and_exit_code(tmp_path):
    script = "import os, sys; print(os.getcwd()); print(os.environ['GRADER_TEST'], file=sys.stderr); sys.exit(3)"

    result = asyncio.run(run_command([sys.executable, "-c", script], cwd=tmp_path, env={"GRADER_TEST": "hello"}))

    assert result.exit_code == 3
    assert not result.success
    assert result.stdout.strip() == str(tmp_path.resolve())
    assert result.stderr.strip() == "hello"
    assert result.duration_seconds >= 0


def test_timeout_kills_the_process():
    with pytest.raises(CommandTimeout) as excinfo:
        asyncio.run(run_command([sys.executable, "-c", "import time; time.sleep(30)"], timeout_seconds=0.5))
    assert excinfo.value.timeout_seconds == 0.5


def test_missing_program_raises_oserror():
    with pytest.raises(OSError):
        asyncio.run(run_command(["definitely-not-a-real-program-xyz"]))
