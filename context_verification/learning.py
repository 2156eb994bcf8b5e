"""Learning Feedback: advisory insights from historical violations.

``ViolationLog`` keeps the flagged (review/blocked) results that verification
passes produce. ``LearningFeedback`` only reads that log: it clusters
recurring violations, derives risk factors and ranks prevention strategies.
It never touches the truth, scores or drift history.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, OrderedDict
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .models import (
    AlignmentResult,
    AlignmentStatus,
    Insights,
    PreventionStrategy,
    ProjectTruth,
    RiskFactor,
    ViolationCluster,
)
from .storage import Storage

logger = logging.getLogger(__name__)

LOG_KEY = "learning/violations"

VIOLATION_TYPES = {
    "not_this": "not-this-violation",
    "domain_alignment": "domain-mismatch",
    "user_alignment": "user-misalignment",
    "competitor_feature": "competitor-overlap",
    "historical_pattern": "repeat-violation",
}

STRATEGIES = {
    "not-this-violation": ("Boundary Enforcement",
                           "Block any items containing NOT THIS terms", "critical"),
    "domain-mismatch": ("Domain Vocabulary Enforcement",
                        "Validate all content against approved domain terminology", "high"),
    "user-misalignment": ("Target User Validation",
                          "Ensure all features explicitly benefit target users", "high"),
    "competitor-overlap": ("Differentiator Review",
                           "Check competitor-inspired items against our differentiators", "medium"),
    "repeat-violation": ("Scope Change Control",
                         "Require approval before re-proposing previously rejected scope", "critical"),
}

PRIORITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}

_BROAD_USER_WORDS = {"everyone", "anyone", "all", "everybody", "users"}


def violation_type(result: AlignmentResult) -> str:
    return VIOLATION_TYPES.get(result.primary_factor, result.primary_factor or "unknown")


class ViolationLog:
    """Bounded log of flagged results, latest result per item id."""

    def __init__(self, storage: Optional[Storage] = None, limit: int = 500):
        self.storage = storage
        self.limit = limit
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, AlignmentResult]" = OrderedDict()
        if storage is not None:
            for entry in storage.get(LOG_KEY) or []:
                result = AlignmentResult.from_dict(entry)
                self._entries[result.id] = result

    def record(self, results: Iterable[AlignmentResult]) -> None:
        flagged = [r for r in results if r.status.is_flagged]
        if not flagged:
            return
        with self._lock:
            for result in flagged:
                self._entries.pop(result.id, None)
                self._entries[result.id] = result
            while len(self._entries) > self.limit:
                self._entries.popitem(last=False)
            entries = [r.to_dict() for r in self._entries.values()]
        if self.storage is not None:
            self.storage.put(LOG_KEY, entries)
        logger.debug("Recorded %d flagged result(s)", len(flagged))

    def results(self) -> List[AlignmentResult]:
        with self._lock:
            return list(self._entries.values())


class LearningFeedback:
    """Read-only aggregator over historical results."""

    def __init__(self, results: Callable[[], Iterable[AlignmentResult]]):
        self._results = results

    def flagged_results(self) -> List[AlignmentResult]:
        return [r for r in self._results() if r.status.is_flagged]

    def violation_patterns(self) -> List[Tuple[str, str, int]]:
        """``(item_id, text, truth_version)`` for the historical pattern sub-scorer."""
        return [(r.id, r.title, r.truth_version) for r in self.flagged_results() if r.title]

    def common_violations(self, results: Optional[List[AlignmentResult]] = None
                          ) -> List[ViolationCluster]:
        results = self.flagged_results() if results is None else results
        groups: Dict[Tuple[str, str], List[AlignmentResult]] = {}
        for result in results:
            key = (violation_type(result), result.category or "uncategorized")
            groups.setdefault(key, []).append(result)

        clusters = []
        for (vtype, category), members in groups.items():
            message = Counter(m.message for m in members).most_common(1)[0][0]
            clusters.append(ViolationCluster(
                violation_type=vtype,
                category=category,
                message=message,
                occurrences=len(members),
                blocked=sum(1 for m in members if m.status == AlignmentStatus.BLOCKED),
                item_ids=tuple(m.id for m in members),
            ))
        clusters.sort(key=lambda c: (-c.occurrences, -c.blocked, c.violation_type, c.category))
        return clusters

    def risk_factors(self, truth: Optional[ProjectTruth],
                     clusters: List[ViolationCluster]) -> List[RiskFactor]:
        risks = []
        if truth is not None:
            if len(truth.industry) < 10:
                risks.append(RiskFactor(
                    factor="Vague industry definition", impact="high",
                    mitigation="Clarify specific industry niche",
                ))
            if not truth.not_this:
                risks.append(RiskFactor(
                    factor="Missing NOT THIS definitions", impact="high",
                    mitigation="Define what the project explicitly is NOT",
                ))
            elif len(truth.not_this) < 3:
                risks.append(RiskFactor(
                    factor="Few NOT THIS boundaries", impact="medium",
                    mitigation="Add at least three explicit boundaries",
                ))
            primary = set(truth.target_users.primary.lower().split())
            if not primary or primary & _BROAD_USER_WORDS:
                risks.append(RiskFactor(
                    factor="Too broad target user definition", impact="medium",
                    mitigation="Narrow down to specific user segments",
                ))
            if not truth.domain_terms:
                risks.append(RiskFactor(
                    factor="No domain vocabulary defined", impact="low",
                    mitigation="Add a domain glossary to the project truth",
                ))

        for cluster in clusters:
            if cluster.blocked or cluster.occurrences >= 5:
                impact = "high"
            elif cluster.occurrences >= 2:
                impact = "medium"
            else:
                impact = "low"
            risks.append(RiskFactor(
                factor=f"Recurring {cluster.violation_type} in {cluster.category} "
                       f"({cluster.occurrences}x)",
                impact=impact,
                mitigation=STRATEGIES.get(cluster.violation_type,
                                          ("", "Review flagged items", ""))[1],
                category=cluster.category,
            ))
        return risks

    def prevention_strategies(self, clusters: List[ViolationCluster]) -> List[PreventionStrategy]:
        occurrences: Counter = Counter()
        for cluster in clusters:
            occurrences[cluster.violation_type] += cluster.occurrences

        strategies = []
        for vtype, count in occurrences.items():
            if vtype not in STRATEGIES:
                continue
            name, description, priority = STRATEGIES[vtype]
            strategies.append(PreventionStrategy(
                name=name, description=description, priority=priority,
                violation_type=vtype, occurrences=count,
            ))
        strategies.sort(key=lambda s: (PRIORITY_ORDER[s.priority], -s.occurrences, s.name))
        return strategies

    def get_insights(self, truth: Optional[ProjectTruth] = None) -> Insights:
        results = self.flagged_results()
        clusters = self.common_violations(results)
        risks = self.risk_factors(truth, clusters)
        strategies = self.prevention_strategies(clusters)

        recommendations = []
        if clusters:
            recommendations.append({
                "priority": "high",
                "action": "Review and address common violation patterns",
                "details": f"Focus on: {clusters[0].violation_type} ({clusters[0].category})",
            })
        for risk in risks:
            if risk.impact == "high" and risk.category == "truth":
                recommendations.append({
                    "priority": "critical",
                    "action": risk.mitigation,
                    "details": risk.factor,
                })
        recommendations.append({
            "priority": "medium",
            "action": "Run context verification before sprint planning",
            "details": "Catch violations before they enter a sprint",
        })
        recommendations.sort(key=lambda r: PRIORITY_ORDER[r["priority"]])

        return Insights(
            common_violations=clusters,
            risk_factors=risks,
            prevention_strategies=strategies,
            recommendations=recommendations,
            results_analyzed=len(results),
        )
