"""Combine per-category results into the job's score breakdown."""

from typing import Optional, Sequence

from seo_audit.models import AggregateResult, CategoryResult, ScoreBreakdown

GREEN_THRESHOLD = 0.8
AMBER_THRESHOLD = 0.6


def score_color(score: float, max_score: float) -> str:
    """Presentation color for a score ratio: green >= 80%, amber >= 60%, else red."""
    ratio = score / max_score if max_score else 0.0
    if ratio >= GREEN_THRESHOLD:
        return "green"
    if ratio >= AMBER_THRESHOLD:
        return "amber"
    return "red"


def overall_score(results: Sequence[CategoryResult]) -> Optional[float]:
    """Max-score-weighted mean of ok results, scaled to 100.

    Returns None when no category succeeded.
    """
    ok = [r for r in results if r.is_ok]
    if not ok:
        return None
    total_max = sum(r.max_score for r in ok)
    return round(sum(r.score for r in ok) / total_max * 100, 1)


def aggregate(
    results: Sequence[CategoryResult],
    category_order: Sequence[str] = (),
) -> AggregateResult:
    """Build the breakdown in ``category_order``.

    Categories not named in ``category_order`` follow in alphabetical order,
    so output never depends on completion order.
    """
    rank = {category: index for index, category in enumerate(category_order)}
    ordered = sorted(
        results,
        key=lambda r: (rank.get(r.category, len(rank)), r.category),
    )

    breakdown = [
        ScoreBreakdown(
            category=r.category,
            score=r.score,
            max_score=r.max_score,
            issues=list(r.issues),
            color=score_color(r.score, r.max_score) if r.is_ok else None,
            status=r.status,
            error=r.error,
        )
        for r in ordered
    ]
    return AggregateResult(overall_score=overall_score(results), breakdown=breakdown)
