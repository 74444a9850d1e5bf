"""
Per project type tooling.

Maps each declared project type to its manifest files, install and test
commands, and the default allowlist of files sent to the quality review.
"""

import json
import logging
import re
import sys
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

from .config import TEST_REPORT_FILENAME
from .models import ProjectType

logger = logging.getLogger(__name__)

VENV_DIRNAME = ".grader-venv"
CMAKE_BUILD_DIRNAME = "build"

_NODE_SOURCE_GLOBS = [
    "README.md", "readme.md", "package.json",
    "index.js", "index.ts", "app.js", "app.ts", "server.js", "server.ts",
    "src/**/*.js", "src/**/*.ts", "src/**/*.jsx", "src/**/*.tsx",
    "routes/**/*.js", "routes/**/*.ts",
    "controllers/**/*.js", "controllers/**/*.ts",
    "middleware/**/*.js", "middleware/**/*.ts",
]

_FULL_STACK_SOURCE_GLOBS = _NODE_SOURCE_GLOBS + [
    "client/package.json", "client/src/**/*.js", "client/src/**/*.jsx", "client/src/**/*.ts", "client/src/**/*.tsx",
    "server/package.json", "server/**/*.js", "server/**/*.ts",
]

_PYTHON_SOURCE_GLOBS = [
    "README.md", "readme.md", "pyproject.toml", "requirements.txt", "setup.py",
    "*.py", "src/**/*.py", "app/**/*.py", "tests/**/*.py",
]

_NATIVE_SOURCE_GLOBS = [
    "README.md", "readme.md", "CMakeLists.txt", "Makefile", "makefile",
    "*.c", "*.h", "*.cpp", "*.hpp", "*.cc",
    "src/**/*.c", "src/**/*.h", "src/**/*.cpp", "src/**/*.hpp",
    "include/**/*.h", "include/**/*.hpp",
    "tests/**/*.c", "tests/**/*.cpp", "test/**/*.c", "test/**/*.cpp",
]


class Toolchain(BaseModel):
    """
    External tooling for one family of projects.

    Attributes:
        name: Family name ("node", "python" or "native").
        manifests: Manifest file names, in order of preference.
        source_globs: Default files included in the quality review.
    """

    name: str
    manifests: list[str]
    source_globs: list[str] = Field(default_factory=list)


NODE = Toolchain(name="node", manifests=["package.json"], source_globs=_NODE_SOURCE_GLOBS)
FULL_STACK_NODE = Toolchain(name="node", manifests=["package.json"], source_globs=_FULL_STACK_SOURCE_GLOBS)
PYTHON = Toolchain(name="python", manifests=["requirements.txt", "pyproject.toml", "setup.py"], source_globs=_PYTHON_SOURCE_GLOBS)
NATIVE = Toolchain(name="native", manifests=["CMakeLists.txt", "Makefile", "makefile"], source_globs=_NATIVE_SOURCE_GLOBS)

TOOLCHAINS: dict[ProjectType, Toolchain] = {
    ProjectType.SERVER_FRAMEWORK: NODE,
    ProjectType.CLIENT_FRAMEWORK: NODE,
    ProjectType.FULL_STACK: FULL_STACK_NODE,
    ProjectType.PYTHON: PYTHON,
    ProjectType.NATIVE_LANGUAGE: NATIVE,
}


def toolchain_for(project_type: ProjectType) -> Toolchain:
    return TOOLCHAINS[project_type]


def find_manifest(workspace: Path, project_type: ProjectType) -> Path | None:
    for name in toolchain_for(project_type).manifests:
        candidate = workspace / name
        if candidate.is_file():
            return candidate
    return None


def _venv_python(workspace: Path) -> Path:
    return workspace / VENV_DIRNAME / "bin" / "python"


def install_commands(workspace: Path, manifest: Path) -> list[list[str]]:
    """
    Commands that resolve the project's dependencies, run in order.

    For native projects "installing" means configuring and building, so the
    test step has binaries to run.
    """
    name = manifest.name

    if name == "package.json":
        if (workspace / "package-lock.json").exists():
            return [["npm", "ci", "--no-audit", "--no-fund"]]
        return [["npm", "install", "--no-audit", "--no-fund"]]

    if name in ("requirements.txt", "pyproject.toml", "setup.py"):
        python = str(_venv_python(workspace))
        commands = [[sys.executable, "-m", "venv", VENV_DIRNAME]]
        if name == "requirements.txt":
            commands.append([python, "-m", "pip", "install", "-r", "requirements.txt"])
        else:
            commands.append([python, "-m", "pip", "install", "-e", "."])
        commands.append([python, "-m", "pip", "install", "pytest"])
        return commands

    if name == "CMakeLists.txt":
        return [
            ["cmake", "-S", ".", "-B", CMAKE_BUILD_DIRNAME],
            ["cmake", "--build", CMAKE_BUILD_DIRNAME],
        ]

    return [["make"]]


def suite_command(workspace: Path, project_type: ProjectType) -> tuple[list[str], dict[str, str]]:
    """
    Command and extra environment used to run the test suite.

    Returns:
        Tuple of (command, environment overrides).
    """
    family = toolchain_for(project_type).name

    if family == "node":
        return ["npm", "test", "--silent"], {"CI": "true", "FORCE_COLOR": "0"}

    if family == "python":
        python = _venv_python(workspace)
        interpreter = str(python) if python.exists() else sys.executable
        return (
            [interpreter, "-m", "pytest", f"--junitxml={TEST_REPORT_FILENAME}", "-q", "--tb=short"],
            {"PYTHONPATH": str(workspace.resolve())},
        )

    if (workspace / CMAKE_BUILD_DIRNAME / "CTestTestfile.cmake").exists():
        return ["ctest", "--test-dir", CMAKE_BUILD_DIRNAME, "--output-on-failure"], {}
    return ["make", "test"], {}


def read_declared_dependencies(manifest: Path) -> list[str]:
    """
    Read dependency names declared in a manifest.

    Unreadable or malformed manifests yield an empty list; the install step
    reports the real problem.
    """
    try:
        if manifest.name == "package.json":
            data = json.loads(manifest.read_text(encoding="utf-8"))
            names: list[str] = []
            for section in ("dependencies", "devDependencies"):
                names.extend((data.get(section) or {}).keys())
            return list(dict.fromkeys(names))

        if manifest.name == "requirements.txt":
            names = []
            for line in manifest.read_text(encoding="utf-8").splitlines():
                line = line.strip()
                if not line or line.startswith(("#", "-")):
                    continue
                match = re.match(r"[A-Za-z0-9][A-Za-z0-9._-]*", line)
                if match:
                    names.append(match.group(0))
            return list(dict.fromkeys(names))

        if manifest.name == "pyproject.toml":
            data = tomllib.loads(manifest.read_text(encoding="utf-8"))
            requirements = data.get("project", {}).get("dependencies", [])
            names = []
            for requirement in requirements:
                match = re.match(r"[A-Za-z0-9][A-Za-z0-9._-]*", requirement.strip())
                if match:
                    names.append(match.group(0))
            return list(dict.fromkeys(names))
    except (OSError, ValueError, AttributeError) as e:
        logger.warning("Could not read dependencies from %s: %s", manifest, e)

    return []
