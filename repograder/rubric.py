"""
Rubric resolution and formatting.

Turns an optional caller-supplied mapping of category name to
``{weight, maxScore}`` into a fully populated `Rubric`, falling back to the
project type defaults for any category the caller leaves out.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import DEFAULT_MAX_SCORE
from .errors import RubricError
from .models import ProjectType, Rubric, RubricCategory

logger = logging.getLogger(__name__)

# Category field name -> display name used in breakdowns and prompts
CATEGORY_LABELS: dict[str, str] = {
    "test_results": "Test Results",
    "code_quality": "Code Quality",
    "code_smell": "Code Smell",
}

# Accepted spellings once lowercased and stripped of non-letters
_CATEGORY_ALIASES: dict[str, str] = {
    "testresults": "test_results",
    "tests": "test_results",
    "test": "test_results",
    "testing": "test_results",
    "codequality": "code_quality",
    "quality": "code_quality",
    "codesmell": "code_smell",
    "codesmells": "code_smell",
    "smell": "code_smell",
}

# Default weights. Web-stack projects split evenly between tests and quality;
# native projects give the quality half to code quality and code smell.
DEFAULT_WEIGHTS: dict[str, dict[str, float]] = {
    "web": {"test_results": 50.0, "code_quality": 50.0, "code_smell": 0.0},
    "native": {"test_results": 50.0, "code_quality": 25.0, "code_smell": 25.0},
}


def default_rubric(project_type: ProjectType) -> Rubric:
    weights = DEFAULT_WEIGHTS["native" if project_type.is_native else "web"]
    return Rubric(**{name: RubricCategory(weight=weight) for name, weight in weights.items()})


def applicable_categories(project_type: ProjectType) -> list[str]:
    """Categories that can be scored for a project type, in breakdown order."""
    if project_type.is_native:
        return ["code_quality", "code_smell", "test_results"]
    return ["code_quality", "test_results"]


def resolve_rubric(raw: dict[str, Any] | None, project_type: ProjectType) -> Rubric:
    """
    Validate a caller rubric and merge it over the project type defaults.

    Each value may be a mapping with ``weight`` and ``maxScore`` (or
    ``max_score``) keys, or a bare number taken as the weight.

    Args:
        raw: Caller-supplied rubric mapping, or None.
        project_type: Declared project type.

    Returns:
        Rubric with every recognized category populated.

    Raises:
        RubricError: On unknown categories, invalid values, or when every
            applicable category ends up with zero weight.
    """
    defaults = default_rubric(project_type)
    if not raw:
        return defaults

    if not isinstance(raw, dict):
        raise RubricError("Rubric must be a mapping of category name to {weight, maxScore}")

    categories: dict[str, RubricCategory] = {
        name: getattr(defaults, name) for name in CATEGORY_LABELS
    }

    for key, value in raw.items():
        name = _CATEGORY_ALIASES.get(re.sub(r"[^a-z]", "", str(key).lower()))
        if name is None:
            known = ", ".join(CATEGORY_LABELS.values())
            raise RubricError(f"Unknown rubric category '{key}'. Known categories: {known}")

        if name not in applicable_categories(project_type):
            logger.warning("Rubric category '%s' does not apply to %s projects; ignoring it", key, project_type.value)
            continue

        categories[name] = _parse_category(key, value, fallback=categories[name])

    if sum(categories[name].weight for name in applicable_categories(project_type)) <= 0:
        raise RubricError("Rubric weights must not all be zero")

    return Rubric(**categories)


def _parse_category(key: str, value: Any, fallback: RubricCategory) -> RubricCategory:
    if isinstance(value, bool):
        raise RubricError(f"Rubric category '{key}' must be a number or a mapping")

    if isinstance(value, (int, float)):
        data: dict[str, Any] = {"weight": value, "max_score": fallback.max_score}
    elif isinstance(value, dict):
        data = {
            "weight": value.get("weight", fallback.weight),
            "max_score": value.get("maxScore", value.get("max_score", fallback.max_score)),
        }
    else:
        raise RubricError(f"Rubric category '{key}' must be a number or a mapping")

    try:
        return RubricCategory(**data)
    except ValidationError as e:
        raise RubricError(f"Invalid rubric category '{key}': {e.errors()[0]['msg']}") from e


def load_rubric_file(rubric_path: Path) -> dict[str, Any]:
    """
    Load a rubric mapping from a YAML or JSON file.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        RubricError: If the file does not hold a mapping.
    """
    if not rubric_path.exists():
        raise FileNotFoundError(f"Rubric not found: {rubric_path}")

    content = rubric_path.read_text(encoding="utf-8")
    if rubric_path.suffix.lower() == ".json":
        data = json.loads(content)
    else:
        data = yaml.safe_load(content)

    if not isinstance(data, dict):
        raise RubricError(f"Rubric file {rubric_path} must contain a mapping")
    return data


def format_rubric_for_llm(rubric: Rubric, project_type: ProjectType) -> str:
    """
    Format the rubric as a string for LLM context.

    Args:
        rubric: Resolved rubric.
        project_type: Declared project type.

    Returns:
        Formatted string representation.
    """
    names = applicable_categories(project_type)
    total_weight = sum(getattr(rubric, name).weight for name in names) or 1.0

    lines = ["## Grading Categories:"]
    for name in names:
        category: RubricCategory = getattr(rubric, name)
        share = 100 * category.weight / total_weight
        max_note = "" if category.max_score == DEFAULT_MAX_SCORE else f", scored out of {category.max_score:g}"
        lines.append(f"- {CATEGORY_LABELS[name]}: {share:.0f}% of the total{max_note}")

    return "\n".join(lines)
