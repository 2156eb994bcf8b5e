"""Backlog and sprint verification.

Scores item sets against one truth snapshot and aggregates the results.
Item scoring may fan out over a thread pool; aggregation only starts once
every item has resolved, and results keep input order.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence

from .models import (
    AlignmentResult,
    BacklogReport,
    ProjectTruth,
    ScorableItem,
    SprintVerification,
)
from .scoring import AlignmentScorer

logger = logging.getLogger(__name__)


class Verifier:
    """Batch-applies the scorer and aggregates purity and sprint gating."""

    def __init__(self, scorer: Optional[AlignmentScorer] = None, max_workers: int = 1,
                 on_results: Optional[Callable[[List[AlignmentResult]], None]] = None):
        self.scorer = scorer or AlignmentScorer()
        self.max_workers = max(1, max_workers)
        self.on_results = on_results

    def score_all(self, items: Sequence[ScorableItem], truth: ProjectTruth,
                  record: bool = True) -> List[AlignmentResult]:
        """Score a batch. ``record=False`` skips the ``on_results`` hook."""
        batch_ids = frozenset(item.id for item in items)
        if self.max_workers == 1 or len(items) < 2:
            results = [self.scorer.score(item, truth, batch_ids) for item in items]
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(
                    lambda item: self.scorer.score(item, truth, batch_ids), items
                ))
        if record and self.on_results is not None:
            self.on_results(results)
        return results

    def verify_backlog(self, items: Sequence[ScorableItem],
                       truth: ProjectTruth) -> BacklogReport:
        report = BacklogReport(truth_version=truth.version, items=self.score_all(items, truth))
        logger.info(
            "Backlog verified against truth v%d: %d items, purity %d%% (%d violations)",
            truth.version, report.total, report.purity_score, report.violations,
        )
        return report

    def verify_sprint_tasks(self, items: Sequence[ScorableItem], truth: ProjectTruth,
                            sprint_name: str = "") -> SprintVerification:
        verification = SprintVerification(
            truth_version=truth.version,
            tasks=self.score_all(items, truth),
            sprint_name=sprint_name,
        )
        if not verification.can_proceed:
            logger.warning(
                "Sprint %s blocked: %d task(s) violate project context",
                sprint_name or "(unnamed)", len(verification.blocked_tasks),
            )
        return verification
