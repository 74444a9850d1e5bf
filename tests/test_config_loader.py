from pathlib import Path

import pytest
from pydantic import ValidationError

from repograder.config import DEFAULT_MAX_CONCURRENT_JOBS, PASS_THRESHOLD
from repograder.config_loader import GraderConfig, load_config


def test_defaults_without_file():
    config = load_config(None)
    assert config.max_concurrent_jobs == DEFAULT_MAX_CONCURRENT_JOBS == 10
    assert config.pass_threshold == PASS_THRESHOLD == 60
    assert config.registry_lookup is True
    assert config.skip_analysis is False
    assert config.log_file is None


def test_relative_paths_resolve_against_config_dir(tmp_path):
    config_path = tmp_path / "grader_config.yml"
    config_path.write_text(
        "store_dir: data/submissions\n"
        "workspace_root: /var/tmp/ws\n"
        "log_file: logs/grader.log\n"
        "max_concurrent_jobs: 3\n"
        "skip_analysis: true\n",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.store_dir == tmp_path / "data" / "submissions"
    assert config.workspace_root == Path("/var/tmp/ws")
    assert config.log_file == tmp_path / "logs" / "grader.log"
    assert config.max_concurrent_jobs == 3
    assert config.skip_analysis is True


def test_empty_file_gives_defaults(tmp_path):
    config_path = tmp_path / "empty.yml"
    config_path.write_text("", encoding="utf-8")
    assert load_config(config_path) == GraderConfig()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yml")


def test_invalid_values(tmp_path):
    config_path = tmp_path / "bad.yml"
    config_path.write_text("max_concurrent_jobs: 0\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(config_path)


def test_non_mapping_document(tmp_path):
    config_path = tmp_path / "list.yml"
    config_path.write_text("- store_dir\n- export_dir\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(config_path)
