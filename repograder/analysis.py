"""
LLM-based code quality review using OpenAI.

Collects a bounded, sanitized slice of the repository, combines it with the
test results and rubric into a single prompt, asks the model once and parses
its reply leniently.
"""

import asyncio
import json
import logging
import netrc
import os
import re
import time
from pathlib import Path

from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel

from .config import MAX_FILE_BYTES, MAX_PROMPT_FILES, MAX_TOKENS, OPENAI_MODEL, SKIPPED_DIRECTORIES, TEMPERATURE, TRUNCATION_MARKER
from .errors import AnalysisFailure, FailureKind
from .models import AIAnalysisMetadata, ProjectType, QualityAnalysis, Rubric, TestResults, glob_problem
from .prompts import NATIVE_TEMPLATE, PROJECT_LABELS, SYSTEM_PROMPT, WEB_TEMPLATE
from .registry import NpmRegistryClient
from .response_parser import EmptyResponse, coerce_score, parse_model_response
from .rubric import format_rubric_for_llm
from .toolchains import toolchain_for

logger = logging.getLogger(__name__)

# Tab, carriage return and other control characters; newlines are kept
_CONTROL_CHARS = re.compile(r"[\x00-\x09\x0B-\x1F\x7F]")


class SourceFile(BaseModel):
    path: str
    content: str
    truncated: bool = False


def sanitize_code(code: str) -> str:
    return _CONTROL_CHARS.sub("", code)


def collect_source_files(workspace: Path, file_globs: list[str]) -> list[SourceFile]:
    """
    Read the files matched by `file_globs` for inclusion in the prompt.

    Files are sanitized and capped at MAX_FILE_BYTES with a truncation marker.
    Dependency and build directories are skipped, as are paths that resolve
    outside the workspace. Patterns that are empty, absolute or climb out of
    the workspace are skipped with a warning.

    Args:
        workspace: Root of the cloned repository.
        file_globs: Glob patterns relative to the workspace.

    Returns:
        SourceFile list in match order, at most MAX_PROMPT_FILES long.
    """
    root = workspace.resolve()
    seen: set[Path] = set()
    files: list[SourceFile] = []

    for pattern in file_globs:
        problem = glob_problem(pattern)
        if problem:
            logger.warning("Skipping file glob %r: %s", pattern, problem)
            continue

        try:
            matches = sorted(workspace.glob(pattern))
        except (ValueError, NotImplementedError) as e:
            logger.warning("Skipping file glob %r: %s", pattern, e)
            continue

        for path in matches:
            if len(files) >= MAX_PROMPT_FILES:
                return files

            resolved = path.resolve()
            if resolved in seen or not path.is_file() or not resolved.is_relative_to(root):
                continue
            relative = resolved.relative_to(root)
            if any(part in SKIPPED_DIRECTORIES for part in relative.parts[:-1]):
                continue
            seen.add(resolved)

            try:
                raw = resolved.read_bytes()
            except OSError:
                continue

            truncated = len(raw) > MAX_FILE_BYTES
            content = sanitize_code(raw[:MAX_FILE_BYTES].decode("utf-8", errors="ignore"))
            if truncated:
                content += TRUNCATION_MARKER
            files.append(SourceFile(path=relative.as_posix(), content=content, truncated=truncated))

    return files


def _resolve_api_key(api_key: str | None) -> str | None:
    # Priority: 1. Argument, 2. .netrc (machine OPENAI), 3. Environment variable
    if api_key is None:
        try:
            auth = netrc.netrc().authenticators("OPENAI")
            if auth:
                api_key = auth[0]
        except (OSError, netrc.NetrcParseError):
            pass

    return api_key or os.environ.get("OPENAI_API_KEY")


class QualityAnalyzer:
    """
    Code quality reviewer using OpenAI chat completions.

    Makes exactly one request per submission; any failure is raised as
    AnalysisFailure for the pipeline to degrade.
    """

    def __init__(
        self,
        model: str = OPENAI_MODEL,
        api_key: str | None = None,
        max_tokens: int = MAX_TOKENS,
        client: AsyncOpenAI | None = None,
        registry: NpmRegistryClient | None = None,
    ) -> None:
        """
        Initialize the quality analyzer.

        Args:
            model: OpenAI model to use.
            api_key: OpenAI API key. Falls back to .netrc, then OPENAI_API_KEY.
            max_tokens: Completion token budget.
            client: Pre-built client; skips API key resolution.
            registry: Optional npm registry client for dependency versions.

        Raises:
            ValueError: If no client is given and no API key can be found.
        """
        self.model = model
        self.max_tokens = max_tokens
        self.registry = registry

        if client is None:
            api_key = _resolve_api_key(api_key)
            if not api_key:
                raise ValueError(
                    "OpenAI API key required. Set OPENAI_API_KEY environment variable, "
                    "add machine OPENAI to your .netrc file, or pass api_key parameter."
                )
            client = AsyncOpenAI(api_key=api_key)
        self.client = client

    async def analyze(
        self,
        workspace: Path,
        project_type: ProjectType,
        test_results: TestResults,
        rubric: Rubric,
        file_globs: list[str] | None = None,
        dependencies: list[str] | None = None,
    ) -> QualityAnalysis:
        """
        Review a workspace and score its code quality.

        Args:
            workspace: Root of the cloned repository.
            project_type: Declared project type; selects the template.
            test_results: Parsed test results.
            rubric: Resolved rubric.
            file_globs: Caller allowlist; defaults to the project type's globs.
            dependencies: Declared dependency names, for the registry lookup.

        Returns:
            QualityAnalysis with scores, report and telemetry.

        Raises:
            AnalysisFailure: On service errors or when no JSON object could be
                decoded from the reply.
        """
        globs = file_globs or toolchain_for(project_type).source_globs
        files = await asyncio.to_thread(collect_source_files, workspace, globs)

        registry_versions: dict[str, str] = {}
        if self.registry and dependencies and toolchain_for(project_type).name == "node":
            registry_versions = await self.registry.latest_versions(dependencies)

        prompt = self.build_prompt(files, project_type, test_results, rubric, registry_versions)

        started = time.monotonic()
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=self.max_tokens,
                temperature=TEMPERATURE,
            )
        except OpenAIError as e:
            raise AnalysisFailure(str(e), FailureKind.SERVICE_ERROR) from e
        elapsed = time.monotonic() - started

        content = response.choices[0].message.content if response.choices else None
        parsed = parse_model_response(content)
        if isinstance(parsed, EmptyResponse):
            raise AnalysisFailure(parsed.reason, FailureKind.EMPTY_RESPONSE)

        data = parsed.data
        usage = getattr(response, "usage", None)
        telemetry = AIAnalysisMetadata(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            analysis_time=round(elapsed, 3),
            model_used=getattr(response, "model", None) or self.model,
            reviewer_test_score=None if project_type.is_native else coerce_score(data, "testScore", required=False),
        )

        report = data.get("report")
        if not isinstance(report, str) or not report.strip():
            report = "No analysis provided"

        return QualityAnalysis(
            code_quality_score=coerce_score(data, "codeQualityScore"),
            code_smell_score=coerce_score(data, "codeSmellScore") if project_type.is_native else None,
            report=report,
            telemetry=telemetry,
        )

    def build_prompt(
        self,
        files: list[SourceFile],
        project_type: ProjectType,
        test_results: TestResults,
        rubric: Rubric,
        registry_versions: dict[str, str] | None = None,
    ) -> str:
        """
        Build the review prompt for the LLM.

        Returns:
            Complete prompt string.
        """
        files_text = "\n".join(f"// {f.path}\n{f.content}\n" for f in files) or "NO SOURCE FILES MATCHED"
        results_text = json.dumps(
            {
                "passed": test_results.passed,
                "total": test_results.total,
                "durationSeconds": test_results.duration,
                "details": test_results.details[-3000:],
            },
            indent=2,
        )
        rubric_text = format_rubric_for_llm(rubric, project_type)

        if project_type.is_native:
            return NATIVE_TEMPLATE.format(files=files_text, test_results=results_text, rubric=rubric_text)

        return WEB_TEMPLATE.format(
            project_label=PROJECT_LABELS.get(project_type.value, project_type.value),
            files=files_text,
            test_results=results_text,
            rubric=rubric_text,
            registry=json.dumps(registry_versions or {}, indent=2),
        )
