"""
Configuration constants for the Repo Grader system.
"""

from pathlib import Path


# Admission control
DEFAULT_MAX_CONCURRENT_JOBS: int = 10

# External command timeouts
CLONE_TIMEOUT_SECONDS: int = 120
INSTALL_TIMEOUT_SECONDS: int = 600
TEST_TIMEOUT_SECONDS: int = 300

# Grading
PASS_THRESHOLD: float = 60.0
DEFAULT_MAX_SCORE: float = 100.0

# Progress percentage reported when each phase starts
PHASE_PROGRESS: dict[str, int] = {
    "uploading": 10,
    "installing": 30,
    "testing": 50,
    "reviewing": 70,
    "reporting": 90,
    "completed": 100,
}

# Source file collection for the analysis prompt
MAX_FILE_BYTES: int = 10_000
MAX_PROMPT_FILES: int = 60
TRUNCATION_MARKER: str = "\n// ...truncated..."
SKIPPED_DIRECTORIES: list[str] = ["node_modules", ".git", "build", "dist", "__pycache__", ".venv", "venv"]

# Test runner output
TEST_REPORT_FILENAME: str = "test_report.xml"
MAX_DETAIL_CHARS: int = 20_000

# OpenAI configuration
# gpt-4o gives noticeably better reviews than gpt-4o-mini for whole repositories
OPENAI_MODEL: str = "gpt-4o"
MAX_TOKENS: int = 2000
TEMPERATURE: float = 0.2

# npm registry lookup
NPM_REGISTRY_URL: str = "https://registry.npmjs.org"
REGISTRY_TIMEOUT_SECONDS: int = 10
MAX_REGISTRY_LOOKUPS: int = 25

# Default paths (can be overridden via the YAML config)
DEFAULT_STORE_DIR: Path = Path("submissions")
DEFAULT_WORKSPACE_ROOT: Path = Path("workspaces")
DEFAULT_EXPORT_DIR: Path = Path("grades")
GRADES_SUMMARY_FILENAME: str = "grades_summary.json"
GRADES_CSV_FILENAME: str = "grades_summary.csv"

# Logging
LOG_FORMAT: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES: int = 5 * 1024 * 1024
LOG_BACKUP_COUNT: int = 5
