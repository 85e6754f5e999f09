"""Tests for score aggregation."""

import pytest

from seo_audit.aggregator import aggregate, overall_score, score_color
from seo_audit.models import CategoryResult, CategoryStatus, Issue, Severity


class TestScoreColor:
    """Test cases for score_color thresholds."""

    @pytest.mark.parametrize("score,max_score,expected", [
        (100, 100, "green"),
        (80, 100, "green"),
        (79.9, 100, "amber"),
        (72, 100, "amber"),
        (60, 100, "amber"),
        (59, 100, "red"),
        (0, 100, "red"),
        (8, 10, "green"),
        (3, 5, "amber"),
    ])
    def test_thresholds_use_ratio(self, score, max_score, expected):
        assert score_color(score, max_score) == expected


class TestOverallScore:
    """Test cases for overall_score."""

    def test_single_ok_category(self):
        results = [
            CategoryResult(category="technical", score=72),
            CategoryResult.failed("content", "gave up"),
        ]
        assert overall_score(results) == 72.0

    def test_weighted_by_max_score(self):
        """Test categories with different scales combine by total points."""
        results = [
            CategoryResult(category="technical", score=8, max_score=10),
            CategoryResult(category="content", score=50, max_score=100),
        ]
        # (8 + 50) / (10 + 100) * 100
        assert overall_score(results) == 52.7

    def test_none_when_nothing_succeeded(self):
        results = [
            CategoryResult.failed("technical", "boom"),
            CategoryResult.timed_out("content", "slow"),
        ]
        assert overall_score(results) is None

    def test_empty(self):
        assert overall_score([]) is None


class TestAggregate:
    """Test cases for aggregate."""

    def test_breakdown_follows_category_order(self):
        """Test output order is independent of completion order."""
        results = [
            CategoryResult(category="content", score=90),
            CategoryResult(category="ux", score=40),
            CategoryResult(category="technical", score=72),
        ]

        aggregated = aggregate(results, ("technical", "content", "ux"))

        assert [b.category for b in aggregated.breakdown] == ["technical", "content", "ux"]
        assert [b.color for b in aggregated.breakdown] == ["amber", "green", "red"]

    def test_unknown_categories_sorted_after(self):
        results = [
            CategoryResult(category="zeta", score=10),
            CategoryResult(category="alpha", score=10),
            CategoryResult(category="technical", score=10),
        ]
        aggregated = aggregate(results, ("technical",))
        assert [b.category for b in aggregated.breakdown] == ["technical", "alpha", "zeta"]

    def test_failed_category_has_no_color(self):
        results = [
            CategoryResult(category="technical", score=72),
            CategoryResult.failed("content", "TransientLLMError: gave up"),
        ]

        aggregated = aggregate(results, ("technical", "content"))

        content = aggregated.breakdown[1]
        assert content.color is None
        assert content.status == CategoryStatus.FAILED
        assert content.error == "TransientLLMError: gave up"
        assert aggregated.overall_score == 72.0

    def test_issues_are_copied(self):
        issue = Issue(Severity.WARNING, "Title too long", "title")
        result = CategoryResult(category="technical", score=85, issues=[issue])

        aggregated = aggregate([result])
        aggregated.breakdown[0].issues.append(Issue(Severity.SUGGESTION, "extra"))

        assert result.issues == [issue]

    def test_to_dict(self):
        aggregated = aggregate([CategoryResult(category="ux", score=81)])
        data = aggregated.to_dict()
        assert data["overall_score"] == 81.0
        assert data["breakdown"][0]["color"] == "green"
        assert data["breakdown"][0]["status"] == "ok"
