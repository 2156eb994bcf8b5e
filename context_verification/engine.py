"""Context Verification Engine facade.

Wires the truth store, scorer, verifier, drift monitor, learning feedback and
audit generator around one storage collaborator. Every verification takes a
single truth snapshot up front and scores the whole item set against it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .ai_scorer import AIConfig, OpenAIDomainScorer
from .config import Settings
from .errors import NotFoundError
from .learning import LearningFeedback, ViolationLog
from .models import (
    AlignmentStatus,
    BacklogReport,
    DriftSnapshot,
    DriftStatus,
    Insights,
    ProjectTruth,
    ScorableItem,
    SprintVerification,
    TruthWriteResult,
    purity_score,
)
from .monitor import DriftMonitor
from .notifier import EscalationLog, WebhookNotifier
from .report import AuditOptions, AuditReport, AuditReportGenerator, AuditSources
from .scoring import AlignmentScorer, SubScorer, default_sub_scorers
from .storage import JsonFileStorage, Storage
from .truth_store import TruthStore
from .verifier import Verifier

logger = logging.getLogger(__name__)

ItemLike = Union[ScorableItem, Dict[str, Any]]


def to_items(items: Iterable[ItemLike]) -> List[ScorableItem]:
    """Accept ScorableItems or plain dicts (``title``/``description``/...)."""
    return [
        item if isinstance(item, ScorableItem) else ScorableItem.from_dict(item)
        for item in items
    ]


class ContextVerificationEngine:
    """Public operations of the context verification system."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[Storage] = None,
        sub_scorers: Optional[Dict[str, SubScorer]] = None,
        use_ai: bool = False,
        listeners: Optional[List[Callable[[DriftSnapshot], None]]] = None,
    ):
        self.settings = settings or Settings()
        self.storage = storage or JsonFileStorage(self.settings.storage_dir)

        self.truth_store = TruthStore(self.storage)
        self.violations = ViolationLog(self.storage)
        self.learning = LearningFeedback(self.violations.results)

        scorers = default_sub_scorers(self.learning.violation_patterns, self.settings.scoring)
        if use_ai:
            scorers["domain_alignment"] = OpenAIDomainScorer(AIConfig())
        scorers.update(sub_scorers or {})
        self.scorer = AlignmentScorer(self.settings.scoring, scorers)
        self.verifier = Verifier(
            self.scorer,
            max_workers=self.settings.max_workers,
            on_results=self.violations.record,
        )

        if listeners is None:
            listeners = [EscalationLog(self.storage)]
            if self.settings.drift_webhook_url:
                listeners.append(WebhookNotifier(self.settings.drift_webhook_url))
        self.monitor = DriftMonitor(
            self._drift_check,
            config=self.settings.monitor,
            storage=self.storage,
            listeners=listeners,
            source_drift=self._source_drift,
        )

        self.sources = AuditSources()
        self.reports = AuditReportGenerator(
            truth_store=self.truth_store,
            verifier=self.verifier,
            learning=self.learning,
            monitor=self.monitor,
            sources=self.sources,
            config=self.settings.report,
            storage=self.storage,
        )

    @classmethod
    def from_env(cls, **kwargs) -> "ContextVerificationEngine":
        return cls(settings=Settings.from_env(), **kwargs)

    # ========================================================================
    # Truth
    # ========================================================================

    def create_or_update_truth(self, data: Union[ProjectTruth, Dict[str, Any]],
                               change_reason: str = "", author: str = "system"
                               ) -> TruthWriteResult:
        return self.truth_store.create_or_update_truth(data, change_reason, author)

    def load_truth(self) -> Optional[ProjectTruth]:
        return self.truth_store.load()

    def rollback_truth(self, version: int, reason: str = "") -> TruthWriteResult:
        return self.truth_store.rollback_to_version(version, reason)

    # ========================================================================
    # Item sources
    # ========================================================================

    def set_backlog(self, items: Iterable[ItemLike]) -> None:
        """Make ``items`` the backlog the monitor and audits re-verify."""
        backlog = to_items(items)
        self.sources.backlog = lambda: backlog

    def set_sprints(self, sprints: Mapping[str, Iterable[ItemLike]]) -> None:
        converted = {name: to_items(tasks) for name, tasks in sprints.items()}
        self.sources.sprints = lambda: converted

    def set_documents(self, items: Iterable[ItemLike]) -> None:
        documents = to_items(items)
        self.sources.documents = lambda: documents

    def set_decisions(self, items: Iterable[ItemLike]) -> None:
        decisions = to_items(items)
        self.sources.decisions = lambda: decisions

    # ========================================================================
    # Verification
    # ========================================================================

    def verify_backlog(self, items: Optional[Iterable[ItemLike]] = None) -> BacklogReport:
        """Verify ``items`` (or the configured backlog) against the current truth.

        Passing items also makes them the current backlog.
        """
        truth = self.truth_store.require()
        if items is not None:
            self.set_backlog(items)
        if self.sources.backlog is None:
            raise NotFoundError("No backlog to verify; pass items or set a backlog")
        return self.verifier.verify_backlog(list(self.sources.backlog()), truth)

    def verify_sprint_tasks(self, items: Iterable[ItemLike],
                            sprint_name: str = "") -> SprintVerification:
        truth = self.truth_store.require()
        return self.verifier.verify_sprint_tasks(to_items(items), truth, sprint_name)

    def score_items(self, items: Sequence[ItemLike], record: bool = True):
        """Score arbitrary items (decisions, document excerpts) without aggregation.

        ``record=False`` keeps the results out of the violation log.
        """
        truth = self.truth_store.require()
        return self.verifier.score_all(to_items(items), truth, record=record)

    # ========================================================================
    # Drift monitoring
    # ========================================================================

    def _drift_check(self) -> BacklogReport:
        return self.verify_backlog()

    def _secondary_items(self) -> Dict[str, List[ScorableItem]]:
        items: Dict[str, List[ScorableItem]] = {}
        if self.sources.documents is not None:
            items["documents"] = list(self.sources.documents())
        if self.sources.sprints is not None:
            items["sprints"] = [task for tasks in self.sources.sprints().values() for task in tasks]
        if self.sources.decisions is not None:
            items["decisions"] = list(self.sources.decisions())
        return items

    def _source_drift(self, truth_version: int) -> Dict[str, int]:
        """Drift per secondary source, scored against the backlog check's truth version."""
        truth = self.truth_store.get_version(truth_version)
        drift = {}
        for name, items in self._secondary_items().items():
            if not items:
                continue
            results = self.verifier.score_all(items, truth, record=False)
            allowed = sum(1 for r in results if r.status == AlignmentStatus.ALLOWED)
            drift[name] = 100 - purity_score(allowed, len(results))
        return drift

    def start_monitoring(self, interval_minutes: float = 60, strict: bool = False) -> bool:
        return self.monitor.start_monitoring(interval_minutes, strict=strict)

    def stop_monitoring(self, strict: bool = False) -> bool:
        return self.monitor.stop_monitoring(strict=strict)

    def check_now(self) -> DriftSnapshot:
        return self.monitor.check_now()

    def get_drift_status(self) -> DriftStatus:
        return self.monitor.get_drift_status()

    # ========================================================================
    # Audit & learning
    # ========================================================================

    def generate_full_audit(self, options: Union[AuditOptions, Dict[str, Any], None] = None,
                            save: bool = False) -> AuditReport:
        report = self.reports.generate_full_audit(options)
        if save:
            self.reports.save(report)
        return report

    def get_learning_insights(self) -> Insights:
        truth = self.truth_store.require()
        return self.learning.get_insights(truth)
