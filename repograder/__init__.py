"""
Repo Grader: Automated grading of remote source repositories.

Clones a repository, installs its dependencies, runs its test suite and
asks an LLM for a code quality review, then combines everything into a
weighted score and a pass/fail grade.
"""

__version__ = "0.2.0"
