"""
Prompt templates for the code quality review.

Native-language projects get a template centred on memory safety and code
smells; web-stack projects get one centred on structure, dependencies and
tests.
"""

SYSTEM_PROMPT = """You are a strict but fair reviewer of student software projects.

Your role is to:
1. Assess the quality of the code you are shown
2. Relate the automated test results to what the code claims to do
3. Produce a constructive markdown report with concrete, actionable advice

Rules:
- Do not claim that a specific dependency version is the "latest"; say a package may be outdated and recommend checking for updates.
- Where it helps the student learn, link to official documentation.
- Reply with a single JSON object and nothing else."""


NATIVE_TEMPLATE = """# REVIEW TASK: C/C++ project

You must output a JSON object with these top-level fields:
- "codeQualityScore": number (0-100)
- "codeSmellScore": number (0-100, higher means fewer and less severe smells)
- "report": string (markdown, newlines escaped as \\n, no code fences around the whole report)

## Report structure
# Code Review Report: <project-name>

## Summary Table
| Metric       | Score |
|--------------|-------|
| Code Quality | <score> |
| Code Smell   | <score> |

## Repository Overview
Purpose, target platform, build system, key headers and sources, current state.

## Code Quality Assessment
### Strengths
3-5 specific strengths (architecture, interfaces, portability, efficiency).
### Weaknesses
3-5 specific weaknesses (memory management, error handling, undefined behaviour, portability).
### Code Quality Score: <score>/100
Correctness 25, Readability 25, Maintainability 25, Performance 25.

## Code Smell Assessment
Memory smells (leaks, double free, use after free, unchecked bounds), C/C++ smells
(globals, magic numbers, unsafe macros and casts, missing const), architectural
smells (tight coupling, god functions, mixed abstraction levels).
### Code Smell Score: <score>/100
Severity 50, Maintainability 50.

## Detailed Code Analysis
Headers, sources, build configuration, documentation, security and performance.
Quote short snippets of problematic code and show the improved version.

## Suggested Fixes
High, medium and low priority, most critical first.

## Conclusion
Overall assessment, production readiness, next steps, learning opportunities.

## Code
{files}

## Test Results
{test_results}

## Rubric
{rubric}

## Output Format
{{ "codeQualityScore": number, "codeSmellScore": number, "report": "..." }}
"""


WEB_TEMPLATE = """# REVIEW TASK: {project_label} project

You must output a JSON object with these top-level fields:
- "codeQualityScore": number (0-100)
- "testScore": number (0-100, your view of the tests and their results; 0 if there are none)
- "report": string (markdown, newlines escaped as \\n, no code fences around the whole report)

## Report structure
# Code Review Report: <project-name>

## Summary Table
| Metric       | Score |
|--------------|-------|
| Code Quality | <score> |
| Test Results | <score> |

## Repository Overview
Purpose, technology stack, repository structure and key files, current state.

## Code Quality Assessment
### Strengths
3-5 specific strengths (architecture, organisation, well implemented features).
### Weaknesses
3-5 specific weaknesses (security, performance, maintainability).
### Code Quality Score: <score>/100
Correctness 25, Readability 25, Maintainability 25, Performance 25.

## Test Results Assessment
Coverage, organisation, missing scenarios, reliability.
### Test Score: <score>/100

## Detailed Code Analysis
Dependencies (possibly outdated, vulnerable, unused or missing packages), scripts,
error handling and input validation, documentation, security, performance.
Quote short snippets of problematic code and show the improved version.

## Suggested Fixes
High, medium and low priority, most critical first.

## Conclusion
Overall assessment, readiness, next steps, learning opportunities.

## Code
{files}

## Test Results
{test_results}

## Rubric
{rubric}

## Latest Published Dependency Versions
{registry}

## Output Format
{{ "codeQualityScore": number, "testScore": number, "report": "..." }}
"""


PROJECT_LABELS = {
    "server-framework": "Node.js server (Express or similar)",
    "client-framework": "JavaScript/TypeScript client (React or similar)",
    "full-stack": "full-stack JavaScript/TypeScript",
    "python": "Python",
}


DEEP_DIVE_TEMPLATE = """Please provide a detailed code review and improvement plan for this repository:
Repository: {repository_url}
Here is the current grading report:
{report}
Focus on code smell, maintainability, and actionable suggestions for the student."""


def build_deep_dive_prompt(repository_url: str, report: str | None) -> str:
    """Follow-up prompt an instructor can paste into a chat assistant."""
    return DEEP_DIVE_TEMPLATE.format(repository_url=repository_url, report=report or "No report available.")
