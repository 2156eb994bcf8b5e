"""Tests for the violation log and learning insights."""

import pytest

from context_verification.learning import LearningFeedback, ViolationLog, violation_type
from context_verification.models import AlignmentResult, AlignmentStatus, ProjectTruth
from context_verification.storage import MemoryStorage


def result(item_id, status=AlignmentStatus.BLOCKED, factor="not_this", category="social",
           title="", message="Context violation detected"):
    return AlignmentResult(
        id=item_id,
        status=status,
        confidence=30 if status == AlignmentStatus.BLOCKED else 60,
        message=message,
        details={},
        title=title or f"Item {item_id}",
        category=category,
        primary_factor=factor,
        truth_version=1,
    )


@pytest.fixture
def flagged():
    return [
        result("s1"), result("s2"), result("s3"),
        result("d1", AlignmentStatus.REVIEW, factor="domain_alignment", category="",
               message="Possible context drift: Item lacks domain-specific terminology"),
    ]


class TestViolationLog:

    def test_only_flagged_results_are_kept(self):
        log = ViolationLog()
        log.record([result("ok", AlignmentStatus.ALLOWED), result("w", AlignmentStatus.WARNING),
                    result("bad")])
        assert [r.id for r in log.results()] == ["bad"]

    def test_latest_result_per_item(self):
        log = ViolationLog()
        log.record([result("a", message="first")])
        log.record([result("a", message="second")])
        assert [r.message for r in log.results()] == ["second"]

    def test_limit_evicts_oldest(self):
        log = ViolationLog(limit=2)
        log.record([result("a"), result("b"), result("c")])
        assert [r.id for r in log.results()] == ["b", "c"]

    def test_persists_across_instances(self):
        storage = MemoryStorage()
        ViolationLog(storage).record([result("a")])
        assert [r.id for r in ViolationLog(storage).results()] == ["a"]

    def test_entries_keep_truth_version(self):
        storage = MemoryStorage()
        ViolationLog(storage).record([result("a")])
        assert ViolationLog(storage).results()[0].truth_version == 1


class TestLearningFeedback:

    def test_violation_type_names(self):
        assert violation_type(result("a")) == "not-this-violation"
        assert violation_type(result("b", factor="competitor_feature")) == "competitor-overlap"

    def test_clusters_sorted_by_occurrences(self, flagged):
        clusters = LearningFeedback(lambda: flagged).common_violations()
        assert [(c.violation_type, c.category, c.occurrences) for c in clusters] == [
            ("not-this-violation", "social", 3),
            ("domain-mismatch", "uncategorized", 1),
        ]
        assert clusters[0].blocked == 3
        assert clusters[0].item_ids == ("s1", "s2", "s3")

    def test_recurring_blocked_cluster_is_high_risk(self, flagged, truth):
        feedback = LearningFeedback(lambda: flagged)
        risks = feedback.risk_factors(truth, feedback.common_violations())
        by_category = {r.category: r.impact for r in risks}
        assert by_category == {"social": "high", "uncategorized": "low"}

    def test_weak_truth_risks(self):
        weak = ProjectTruth.from_dict({
            "whatWereBuilding": "An app",
            "industry": "Tech",
            "targetUsers": {"primary": "everyone"},
        })
        risks = LearningFeedback(lambda: []).risk_factors(weak, [])
        factors = {r.factor: r.impact for r in risks}
        assert factors == {
            "Vague industry definition": "high",
            "Missing NOT THIS definitions": "high",
            "Too broad target user definition": "medium",
            "No domain vocabulary defined": "low",
        }

    def test_strategies_ranked_by_priority(self, flagged):
        feedback = LearningFeedback(lambda: flagged)
        strategies = feedback.prevention_strategies(feedback.common_violations())
        assert [s.name for s in strategies] == [
            "Boundary Enforcement", "Domain Vocabulary Enforcement",
        ]
        assert strategies[0].occurrences == 3

    def test_insights(self, flagged, truth):
        insights = LearningFeedback(lambda: flagged).get_insights(truth)
        assert insights.results_analyzed == 4
        assert len(insights.common_violations) == 2
        priorities = [r["priority"] for r in insights.recommendations]
        assert priorities == sorted(priorities, key=["critical", "high", "medium", "low"].index)
        assert insights.to_dict()["common_violations"][0]["type"] == "not-this-violation"

    def test_patterns_expose_titles(self, flagged):
        patterns = LearningFeedback(lambda: flagged).violation_patterns()
        assert ("s1", "Item s1", 1) in patterns

    def test_no_history_gives_empty_insights(self, truth):
        insights = LearningFeedback(lambda: []).get_insights(truth)
        assert insights.results_analyzed == 0
        assert insights.common_violations == []
        assert insights.prevention_strategies == []
