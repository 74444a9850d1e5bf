"""
Source acquisition.

Clones the target repository into a disposable per-submission workspace.
"""

import asyncio
import logging
import re
import shutil
from pathlib import Path

from .config import CLONE_TIMEOUT_SECONDS, DEFAULT_WORKSPACE_ROOT
from .errors import AcquisitionFailure, FailureKind
from .local_runner import CommandTimeout, run_command

logger = logging.getLogger(__name__)

# https://host/owner/repo(.git), git://, ssh://, file:// or scp-like git@host:owner/repo
_URL_PATTERN = re.compile(r"^(?:(?:https?|git|ssh|file)://\S+|[\w.-]+@[\w.-]+:\S+)$")

_ACCESS_DENIED_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "permission denied",
    "terminal prompts disabled",
    "the requested url returned error: 403",
    "access denied",
)


class SourceAcquirer:
    """
    Fetches a repository's working tree with a shallow `git clone`.
    """

    def __init__(
        self,
        workspace_root: Path = DEFAULT_WORKSPACE_ROOT,
        timeout_seconds: int = CLONE_TIMEOUT_SECONDS,
    ) -> None:
        self.workspace_root = workspace_root
        self.timeout_seconds = timeout_seconds

    async def acquire(self, repository_url: str, submission_id: str) -> Path:
        """
        Clone the repository into `<workspace_root>/<submission_id>`.

        Returns:
            Path of the workspace.

        Raises:
            AcquisitionFailure: NotFound for invalid or unreachable URLs,
                AccessDenied for private repositories, Timeout when the clone
                exceeds its time budget.
        """
        url = repository_url.strip()
        if not _URL_PATTERN.match(url):
            raise AcquisitionFailure(f"'{repository_url}' is not a valid repository URL", FailureKind.NOT_FOUND)

        workspace = self.workspace_root / submission_id
        await asyncio.to_thread(self._prepare, workspace)

        command = ["git", "clone", "--depth", "1", "--quiet", url, str(workspace)]
        try:
            result = await run_command(
                command,
                timeout_seconds=self.timeout_seconds,
                env={"GIT_TERMINAL_PROMPT": "0", "GIT_ASKPASS": "true"},
            )
        except CommandTimeout:
            raise AcquisitionFailure(
                f"cloning {url} took longer than {self.timeout_seconds}s", FailureKind.TIMEOUT
            )
        except OSError as e:
            raise AcquisitionFailure(f"could not run git: {e}", FailureKind.NOT_FOUND) from e

        if not result.success:
            message = result.stderr.strip() or result.stdout.strip() or f"git exited with code {result.exit_code}"
            raise AcquisitionFailure(message, classify_clone_error(message))

        logger.info("Cloned %s into %s", url, workspace)
        return workspace

    async def release(self, workspace: Path) -> None:
        """Delete a workspace created by `acquire`."""
        await asyncio.to_thread(shutil.rmtree, workspace, True)

    def _prepare(self, workspace: Path) -> None:
        self.workspace_root.mkdir(parents=True, exist_ok=True)
        if workspace.exists():
            shutil.rmtree(workspace, ignore_errors=True)


def classify_clone_error(stderr: str) -> FailureKind:
    """Map git's error text to an acquisition failure kind; anything not auth related is NotFound."""
    text = stderr.lower()
    if any(marker in text for marker in _ACCESS_DENIED_MARKERS):
        return FailureKind.ACCESS_DENIED
    return FailureKind.NOT_FOUND
