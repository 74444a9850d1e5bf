"""
Score aggregation: combines the test and quality subscores into a weighted
total, a pass/fail grade and a per-category breakdown.
"""

from .config import PASS_THRESHOLD
from .models import Grade, ProjectType, QualityAnalysis, Rubric, RubricCategory, ScoreBreakdown, Scores, TestResults
from .rubric import CATEGORY_LABELS, applicable_categories


class ScoreAggregator:
    """
    Rubric-weighted scoring.

    Every subscore is on a 0-100 scale. The total is the weighted mean of the
    subscores of the categories that apply to the project type, with weights
    normalized by their sum.
    """

    def __init__(self, pass_threshold: float = PASS_THRESHOLD) -> None:
        self.pass_threshold = pass_threshold

    def aggregate(
        self,
        project_type: ProjectType,
        test_results: TestResults,
        analysis: QualityAnalysis,
        rubric: Rubric,
    ) -> tuple[Scores, Grade]:
        """
        Compute scores and grade for a finished run.

        Args:
            project_type: Declared project type.
            test_results: Parsed test results.
            analysis: Quality review outcome (possibly degraded).
            rubric: Resolved rubric.

        Returns:
            (Scores, Grade). The grade is never PENDING.
        """
        test_score = 100.0 * test_results.pass_ratio
        subscores = {
            "test_results": test_score,
            "code_quality": analysis.code_quality_score,
            "code_smell": analysis.code_smell_score or 0.0,
        }

        names = applicable_categories(project_type)
        total_weight = sum(getattr(rubric, name).weight for name in names)
        total = sum(getattr(rubric, name).weight * subscores[name] for name in names) / total_weight
        total = round(min(max(total, 0.0), 100.0), 2)

        breakdown = [
            self._breakdown_entry(name, getattr(rubric, name), subscores[name], test_results, analysis)
            for name in names
        ]

        grade = Grade.PASS if total >= self.pass_threshold else Grade.FAIL
        scores = Scores(
            total=total,
            test=round(test_score, 2),
            quality=analysis.code_quality_score,
            breakdown=breakdown,
        )
        return scores, grade

    def _breakdown_entry(
        self,
        name: str,
        category: RubricCategory,
        subscore: float,
        test_results: TestResults,
        analysis: QualityAnalysis,
    ) -> ScoreBreakdown:
        if name == "test_results":
            if test_results.total:
                feedback = f"{test_results.passed}/{test_results.total} tests passed"
            else:
                feedback = "No test results could be parsed"
        elif analysis.degraded:
            feedback = "AI analysis unavailable; scored as 0"
        else:
            feedback = f"AI analysis score: {subscore:g}/100"

        return ScoreBreakdown(
            category=CATEGORY_LABELS[name],
            score=round(subscore / 100.0 * category.max_score, 2),
            max_score=category.max_score,
            feedback=feedback,
        )
