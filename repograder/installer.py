"""
Dependency installation inside a cloned workspace.
"""

import logging
from pathlib import Path

from .config import INSTALL_TIMEOUT_SECONDS
from .errors import FailureKind, InstallationFailure
from .local_runner import CommandTimeout, run_command
from .models import ProjectType
from .toolchains import find_manifest, install_commands, read_declared_dependencies, toolchain_for

logger = logging.getLogger(__name__)

# Characters of installer output kept in failure messages
_OUTPUT_TAIL_CHARS = 2000


class DependencyInstaller:
    """
    Runs the project type's install commands against a workspace.

    The timeout covers all install commands together.
    """

    def __init__(self, timeout_seconds: int = INSTALL_TIMEOUT_SECONDS) -> None:
        self.timeout_seconds = timeout_seconds

    def declared_dependencies(self, workspace: Path, project_type: ProjectType) -> list[str]:
        manifest = find_manifest(workspace, project_type)
        return read_declared_dependencies(manifest) if manifest else []

    async def install(self, workspace: Path, project_type: ProjectType) -> None:
        """
        Install dependencies for the workspace.

        Raises:
            InstallationFailure: ManifestMissing when no manifest is found,
                InstallError when a command fails or cannot be started,
                Timeout when installation exceeds its time budget.
        """
        manifest = find_manifest(workspace, project_type)
        if manifest is None:
            expected = " or ".join(toolchain_for(project_type).manifests)
            raise InstallationFailure(
                f"no {expected} found in the repository root", FailureKind.MANIFEST_MISSING
            )

        remaining = float(self.timeout_seconds)
        for command in install_commands(workspace, manifest):
            try:
                result = await run_command(command, cwd=workspace, timeout_seconds=remaining)
            except CommandTimeout:
                raise InstallationFailure(
                    f"installation took longer than {self.timeout_seconds}s", FailureKind.TIMEOUT
                )
            except OSError as e:
                raise InstallationFailure(f"could not run '{command[0]}': {e}", FailureKind.INSTALL_ERROR) from e

            if not result.success:
                tail = result.output.strip()[-_OUTPUT_TAIL_CHARS:]
                raise InstallationFailure(
                    f"'{' '.join(command)}' exited with code {result.exit_code}\n{tail}",
                    FailureKind.INSTALL_ERROR,
                )

            remaining -= result.duration_seconds
            if remaining <= 0:
                raise InstallationFailure(
                    f"installation took longer than {self.timeout_seconds}s", FailureKind.TIMEOUT
                )

        logger.info("Installed dependencies in %s using %s", workspace, manifest.name)
