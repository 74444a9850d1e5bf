"""
YAML configuration for the Repo Grader.

Every setting has a default, so a config file only needs the values it
changes.
"""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from .config import (
    CLONE_TIMEOUT_SECONDS,
    DEFAULT_EXPORT_DIR,
    DEFAULT_MAX_CONCURRENT_JOBS,
    DEFAULT_STORE_DIR,
    DEFAULT_WORKSPACE_ROOT,
    INSTALL_TIMEOUT_SECONDS,
    MAX_TOKENS,
    OPENAI_MODEL,
    PASS_THRESHOLD,
    TEST_TIMEOUT_SECONDS,
)


class GraderConfig(BaseModel):
    """Settings shared by the CLI, the grading service and the dashboard."""

    store_dir: Path = Field(DEFAULT_STORE_DIR, description="Directory holding submission records")
    workspace_root: Path = Field(DEFAULT_WORKSPACE_ROOT, description="Directory for disposable clones")
    export_dir: Path = Field(DEFAULT_EXPORT_DIR, description="Directory for summary exports")

    max_concurrent_jobs: int = Field(DEFAULT_MAX_CONCURRENT_JOBS, ge=1, description="Pipelines allowed to run at once")
    clone_timeout_seconds: int = Field(CLONE_TIMEOUT_SECONDS, gt=0)
    install_timeout_seconds: int = Field(INSTALL_TIMEOUT_SECONDS, gt=0)
    test_timeout_seconds: int = Field(TEST_TIMEOUT_SECONDS, gt=0)

    openai_model: str = Field(OPENAI_MODEL, description="Model used for the quality review")
    max_tokens: int = Field(MAX_TOKENS, gt=0)
    pass_threshold: float = Field(PASS_THRESHOLD, ge=0, le=100)

    skip_analysis: bool = Field(False, description="Skip the AI quality review")
    registry_lookup: bool = Field(True, description="Look up latest npm versions of dependencies")
    keep_workspaces: bool = Field(False, description="Keep cloned workspaces after grading")
    dashboard_port: int = Field(8050, description="Port for the dashboard")
    verbose: bool = Field(False, description="Enable verbose output")

    log_level: str = Field("INFO", description="Root log level")
    log_file: Path | None = Field(None, description="Optional rotating log file")


# Relative values of these keys are taken relative to the config file
PATH_FIELDS = ("store_dir", "workspace_root", "export_dir", "log_file")


def load_config(config_path: Path | None) -> GraderConfig:
    """
    Build the grader settings, from a YAML file when one is given.

    Args:
        config_path: YAML file, or None to use the built-in defaults.

    Raises:
        FileNotFoundError: If `config_path` does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
        ValidationError: If a value is out of range or of the wrong type.
    """
    if config_path is None:
        return GraderConfig()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{config_path} must contain a mapping of settings")

    base_dir = config_path.parent
    for key in PATH_FIELDS:
        value = raw.get(key)
        if value and not Path(value).is_absolute():
            raw[key] = base_dir / value

    return GraderConfig.model_validate(raw)
