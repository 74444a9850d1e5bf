import asyncio

import pytest

from repograder import acquirer as acquirer_module
from repograder.acquirer import SourceAcquirer, classify_clone_error
from repograder.errors import AcquisitionFailure, FailureKind
from repograder.local_runner import CommandResult, CommandTimeout


@pytest.mark.parametrize("url", ["", "not a url", "github.com/example/project", "ftp://example.com/repo.git"])
def test_invalid_urls_are_not_found(tmp_path, url):
    with pytest.raises(AcquisitionFailure) as excinfo:
        asyncio.run(SourceAcquirer(tmp_path).acquire(url, "abc"))
    assert excinfo.value.kind == FailureKind.NOT_FOUND
    assert "acquisition" in str(excinfo.value).lower()


def test_classify_clone_errors():
    assert classify_clone_error(
        "fatal: could not read Username for 'https://github.com': terminal prompts disabled"
    ) == FailureKind.ACCESS_DENIED
    assert classify_clone_error("git@github.com: Permission denied (publickey).") == FailureKind.ACCESS_DENIED
    assert classify_clone_error("fatal: repository 'https://example.com/x.git/' not found") == FailureKind.NOT_FOUND
    assert classify_clone_error("fatal: unable to access: Could not resolve host: nohost") == FailureKind.NOT_FOUND


def test_clone_success_and_release(tmp_path, monkeypatch):
    calls = []

    async def fake_git(command, cwd=None, timeout_seconds=120, env=None):
        calls.append((command, env))
        target = command[-1]
        from pathlib import Path
        Path(target).mkdir(parents=True)
        (Path(target) / "README.md").write_text("hi", encoding="utf-8")
        return CommandResult(command=command, exit_code=0)

    monkeypatch.setattr(acquirer_module, "run_command", fake_git)
    acquirer = SourceAcquirer(tmp_path / "ws", timeout_seconds=30)

    workspace = asyncio.run(acquirer.acquire(" https://github.com/example/project.git ", "sub1"))

    assert workspace == tmp_path / "ws" / "sub1"
    assert (workspace / "README.md").exists()
    command, env = calls[0]
    assert command[:4] == ["git", "clone", "--depth", "1"]
    assert "https://github.com/example/project.git" in command
    assert env["GIT_TERMINAL_PROMPT"] == "0"

    asyncio.run(acquirer.release(workspace))
    assert not workspace.exists()


def test_clone_failure_is_classified(tmp_path, monkeypatch):
    async def fake_git(command, cwd=None, timeout_seconds=120, env=None):
        return CommandResult(command=command, exit_code=128, stderr="fatal: Authentication failed for 'https://x'")

    monkeypatch.setattr(acquirer_module, "run_command", fake_git)

    with pytest.raises(AcquisitionFailure) as excinfo:
        asyncio.run(SourceAcquirer(tmp_path).acquire("https://github.com/example/private.git", "sub2"))
    assert excinfo.value.kind == FailureKind.ACCESS_DENIED


def test_clone_timeout(tmp_path, monkeypatch):
    async def fake_git(command, cwd=None, timeout_seconds=120, env=None):
        raise CommandTimeout(command, timeout_seconds)

    monkeypatch.setattr(acquirer_module, "run_command", fake_git)

    with pytest.raises(AcquisitionFailure) as excinfo:
        asyncio.run(SourceAcquirer(tmp_path, timeout_seconds=1).acquire("https://github.com/example/big.git", "sub3"))
    assert excinfo.value.kind == FailureKind.TIMEOUT
