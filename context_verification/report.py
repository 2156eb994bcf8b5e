"""Audit Report Generator.

Builds one in-memory ``AuditReport`` from the verifier, the drift history,
the truth version history and the learning insights. JSON, markdown and HTML
are all renderings of that single object.

A section whose data source is missing or fails is recorded as
``unavailable``; the remaining sections are still generated. Only a report
with no available section at all raises ``AuditError``.
"""

from __future__ import annotations

import html
import logging
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime
from statistics import mean
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .config import ReportConfig
from .errors import AuditError, ReportSectionError
from .learning import PRIORITY_ORDER, LearningFeedback
from .models import (
    AlignmentResult,
    AlignmentStatus,
    HealthStatus,
    ProjectTruth,
    ScorableItem,
    TruthVersionInfo,
    utcnow,
)
from .monitor import DriftMonitor
from .storage import Storage
from .truth_store import TruthStore
from .verifier import Verifier

logger = logging.getLogger(__name__)

ItemSource = Callable[[], Sequence[ScorableItem]]
SprintSource = Callable[[], Mapping[str, Sequence[ScorableItem]]]


@dataclass
class AuditSources:
    """Item providers for the data-driven sections. None means unavailable."""
    backlog: Optional[ItemSource] = None
    sprints: Optional[SprintSource] = None
    documents: Optional[ItemSource] = None
    decisions: Optional[ItemSource] = None


@dataclass
class AuditOptions:
    backlog: bool = True
    sprints: bool = True
    documents: bool = True
    decisions: bool = True
    history: bool = True
    learnings: bool = True
    recommendations: bool = True

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "AuditOptions":
        data = dict(data or {})
        names = {f.name for f in fields(cls)}
        # Accept the includeBacklog-style names as well.
        normalized = {}
        for key, value in data.items():
            if key.startswith("include") and len(key) > 7:
                key = key[7:].lower()
            if key not in names:
                raise ValueError(f"Unknown audit option: {key}")
            normalized[key] = bool(value)
        return cls(**normalized)


def freeze(value: Any) -> Any:
    """Read-only copy: mappings become mapping proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Plain JSON-ready copy of a frozen value."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


@dataclass(frozen=True)
class AuditSection:
    key: str
    name: str
    status: str = "analyzed"
    score: Optional[int] = None
    findings: Mapping[str, Any] = field(default_factory=dict)
    issues: Sequence[str] = ()
    details: Sequence[Mapping[str, Any]] = ()
    error: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "findings", freeze(self.findings))
        object.__setattr__(self, "issues", freeze(self.issues))
        object.__setattr__(self, "details", freeze(self.details))

    @property
    def available(self) -> bool:
        return self.status != "unavailable"

    def to_dict(self) -> Dict:
        return {
            "key": self.key,
            "name": self.name,
            "status": self.status,
            "score": self.score,
            "findings": thaw(self.findings),
            "issues": thaw(self.issues),
            "details": thaw(self.details),
            "error": self.error,
        }


@dataclass(frozen=True)
class AuditReport:
    """Immutable audit result. Every rendering reads from this object."""
    report_id: str
    generated_at: datetime
    project_name: str
    truth_version: int
    overall_score: int
    health_status: HealthStatus
    sections: Mapping[str, AuditSection]
    critical_findings: Sequence[Mapping[str, Any]]
    recommendations: Sequence[Mapping[str, Any]]

    def __post_init__(self):
        object.__setattr__(self, "sections", MappingProxyType(dict(self.sections)))
        object.__setattr__(self, "critical_findings", freeze(self.critical_findings))
        object.__setattr__(self, "recommendations", freeze(self.recommendations))

    def to_dict(self) -> Dict:
        return {
            "report_id": self.report_id,
            "generated_at": self.generated_at.isoformat(),
            "project_name": self.project_name,
            "truth_version": self.truth_version,
            "overall_score": self.overall_score,
            "health_status": self.health_status.value,
            "sections": {key: s.to_dict() for key, s in self.sections.items()},
            "critical_findings": thaw(self.critical_findings),
            "recommendations": thaw(self.recommendations),
        }

    def to_markdown(self) -> str:
        md = "# Context Verification Audit Report\n\n"
        md += f"Generated: {self.generated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC\n"
        md += f"Project: {self.project_name}\n"
        md += f"Truth Version: v{self.truth_version}\n\n"

        md += "## Executive Summary\n\n"
        md += f"- **Overall Score**: {self.overall_score}% ({self.health_status.value})\n"
        available = sum(1 for s in self.sections.values() if s.available)
        md += f"- **Sections Analyzed**: {available}/{len(self.sections)}\n"
        md += f"- **Critical Findings**: {len(self.critical_findings)}\n\n"
        md += _health_bar(self.overall_score) + "\n\n"

        if self.critical_findings:
            md += "### Critical Findings\n\n"
            for finding in self.critical_findings:
                md += f"- **{finding['section']}** ({finding['score']}%): {finding['finding']}\n"
            md += "\n"

        for section in self.sections.values():
            md += f"## {section.name}\n\n"
            if not section.available:
                md += f"⚠ Unavailable: {section.error}\n\n"
                continue
            score = f"{section.score}%" if section.score is not None else "N/A"
            md += f"**Score**: {score}\n\n"
            if section.findings:
                md += "### Findings\n\n"
                for key, value in section.findings.items():
                    md += f"- **{_format_key(key)}**: {thaw(value)}\n"
                md += "\n"
            if section.issues:
                md += "### Issues\n\n"
                for issue in section.issues:
                    md += f"- {issue}\n"
                md += "\n"
            if section.details:
                md += "### Details\n\n"
                headers = list(section.details[0].keys())
                md += "| " + " | ".join(_format_key(h) for h in headers) + " |\n"
                md += "|" + "---|" * len(headers) + "\n"
                for row in section.details:
                    md += "| " + " | ".join(str(thaw(row.get(h, ""))) for h in headers) + " |\n"
                md += "\n"

        if self.recommendations:
            md += "## Recommendations\n\n"
            for rec in self.recommendations:
                md += f"- **[{rec['priority'].upper()}] {rec['category']}**: {rec['recommendation']}\n"
                for action in rec.get("actions", []):
                    md += f"  - {action}\n"
            md += "\n"

        md += "---\n\n*Generated by the Context Verification Engine.*\n"
        return md

    def to_html(self) -> str:
        e = html.escape
        parts = [
            "<!DOCTYPE html>",
            '<html lang="en">',
            "<head>",
            '<meta charset="UTF-8">',
            f"<title>Context Verification Audit Report - {e(self.project_name)}</title>",
            "<style>",
            "body { font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; max-width: 1100px; margin: 0 auto; padding: 20px; color: #333; }",
            ".health-excellent { background: #E8F5E9; } .health-good { background: #F1F8E9; }",
            ".health-fair { background: #FFF3E0; } .health-poor { background: #FFEBEE; }",
            ".health-status { padding: 20px; border-radius: 8px; text-align: center; }",
            ".section { margin: 24px 0; padding: 16px; background: #f8f8f8; border-radius: 8px; }",
            ".unavailable { border-left: 4px solid #FF9800; }",
            ".recommendation { padding: 10px; margin: 8px 0; border-left: 4px solid #2196F3; }",
            ".priority-critical { border-left-color: #F44336; } .priority-high { border-left-color: #FF9800; }",
            "table { border-collapse: collapse; width: 100%; } th, td { padding: 6px; border-bottom: 1px solid #e0e0e0; text-align: left; }",
            "</style>",
            "</head>",
            "<body>",
            "<h1>Context Verification Audit Report</h1>",
            f'<p class="timestamp">Generated: {e(self.generated_at.isoformat())}</p>',
            f"<p><strong>Project:</strong> {e(self.project_name)} "
            f"(truth v{self.truth_version})</p>",
            f'<div class="health-status health-{self.health_status.value}">',
            f"<h2>Overall Context Health: {e(self.health_status.value.title())}</h2>",
            f'<p class="overall-score" data-score="{self.overall_score}">{self.overall_score}%</p>',
            "</div>",
        ]

        if self.critical_findings:
            parts.append("<h2>Critical Findings</h2><ul>")
            for finding in self.critical_findings:
                parts.append(
                    f"<li><strong>{e(finding['section'])}</strong> ({finding['score']}%): "
                    f"{e(str(finding['finding']))}</li>"
                )
            parts.append("</ul>")

        for section in self.sections.values():
            css = "section" if section.available else "section unavailable"
            parts.append(f'<div class="{css}" id="section-{e(section.key)}">')
            parts.append(f"<h2>{e(section.name)}</h2>")
            if not section.available:
                parts.append(f"<p>Unavailable: {e(str(section.error))}</p></div>")
                continue
            score = f"{section.score}%" if section.score is not None else "N/A"
            parts.append(f"<p><strong>Score:</strong> {score}</p>")
            if section.findings:
                parts.append("<ul>")
                for key, value in section.findings.items():
                    parts.append(f"<li><strong>{e(_format_key(key))}:</strong> {e(str(thaw(value)))}</li>")
                parts.append("</ul>")
            for issue in section.issues:
                parts.append(f'<p class="issue">{e(issue)}</p>')
            if section.details:
                headers = list(section.details[0].keys())
                parts.append("<table><tr>" + "".join(
                    f"<th>{e(_format_key(h))}</th>" for h in headers) + "</tr>")
                for row in section.details:
                    parts.append("<tr>" + "".join(
                        f"<td>{e(str(thaw(row.get(h, ''))))}</td>" for h in headers) + "</tr>")
                parts.append("</table>")
            parts.append("</div>")

        if self.recommendations:
            parts.append("<h2>Recommendations</h2>")
            for rec in self.recommendations:
                parts.append(f'<div class="recommendation priority-{e(rec["priority"])}">')
                parts.append(f"<strong>{e(rec['category'])}:</strong> {e(rec['recommendation'])}")
                if rec.get("actions"):
                    parts.append("<ul>" + "".join(
                        f"<li>{e(a)}</li>" for a in rec["actions"]) + "</ul>")
                parts.append("</div>")

        parts.extend(["</body>", "</html>"])
        return "\n".join(parts)


def _format_key(key: str) -> str:
    return key.replace("_", " ").capitalize()


def _health_bar(score: int) -> str:
    filled = round(score / 10)
    color = "🟢" if score >= 80 else "🟡" if score >= 60 else "🔴"
    return color * filled + "⚪" * (10 - filled) + f" {score}%"


# ============================================================================
# Section scoring rules
# ============================================================================

def truth_completeness(truth: ProjectTruth) -> Tuple[int, List[str]]:
    score, issues = 100, []
    if len(truth.what_were_building) < 20:
        score -= 20
        issues.append("Project description is too vague")
    if len(truth.industry) < 10:
        score -= 15
        issues.append("Industry definition is too vague")
    if not truth.target_users.primary:
        score -= 15
        issues.append("No primary target user defined")
    if not truth.not_this:
        score -= 20
        issues.append('No "NOT THIS" definitions - high risk of scope creep')
    if len(truth.competitors) < 3:
        score -= 15
        issues.append("Insufficient competitor analysis")
    if len(truth.domain_terms) < 5:
        score -= 15
        issues.append("Limited domain terminology defined")
    return max(0, score), issues


def change_frequency(history: Sequence[TruthVersionInfo]) -> str:
    if len(history) < 2:
        return "stable"
    recent = list(history)[-10:]
    spans = [
        (b.timestamp - a.timestamp).total_seconds() for a, b in zip(recent, recent[1:])
    ]
    days = mean(spans) / 86400
    if days < 1:
        return "very frequent"
    if days < 7:
        return "frequent"
    if days < 30:
        return "moderate"
    return "stable"


def stability_score(frequency: str, history: Sequence[TruthVersionInfo]) -> int:
    score = 100
    if frequency == "very frequent":
        score -= 30
    elif frequency == "frequent":
        score -= 15
    score -= 10 * sum(1 for v in history if v.change_type == "major")
    score -= 5 * sum(1 for v in history if v.change_type == "minor")
    return max(0, min(100, score))


def learning_score(insights) -> int:
    score = 50
    score += min(30, len(insights.prevention_strategies) * 10)
    score += min(20, len(insights.recommendations) * 5)
    score -= min(30, len(insights.common_violations) * 5)
    score -= min(20, sum(1 for r in insights.risk_factors if r.impact == "high") * 10)
    return max(0, min(100, score))


def mean_confidence(results: Sequence[AlignmentResult]) -> Optional[int]:
    if not results:
        return None
    return round(mean(r.confidence for r in results))


# ============================================================================
# Generator
# ============================================================================

class AuditReportGenerator:
    """Composes verifier output, drift history and learnings into one report."""

    def __init__(
        self,
        truth_store: TruthStore,
        verifier: Verifier,
        learning: LearningFeedback,
        monitor: Optional[DriftMonitor] = None,
        sources: Optional[AuditSources] = None,
        config: Optional[ReportConfig] = None,
        storage: Optional[Storage] = None,
    ):
        self.truth_store = truth_store
        self.verifier = verifier
        self.learning = learning
        self.monitor = monitor
        self.sources = sources or AuditSources()
        self.config = config or ReportConfig()
        self.storage = storage

    # ------------------------------------------------------------------
    # Sections
    # ------------------------------------------------------------------

    def _require_truth(self, truth: Optional[ProjectTruth], section: str) -> ProjectTruth:
        if truth is None:
            raise ReportSectionError("No project truth loaded", section=section)
        return truth

    def _require_source(self, source, section: str):
        if source is None:
            raise ReportSectionError(f"No data source configured for {section}", section=section)
        return source()

    def audit_truth(self, truth: Optional[ProjectTruth]) -> AuditSection:
        truth = self._require_truth(truth, "truth")
        score, issues = truth_completeness(truth)
        return AuditSection(
            key="truth",
            name="Project Truth Analysis",
            score=score,
            issues=issues,
            findings={
                "version": truth.version,
                "last_verified": truth.last_verified.isoformat(),
                "industry": truth.industry,
                "primary_users": truth.target_users.primary,
                "not_this_count": len(truth.not_this),
                "competitors_count": len(truth.competitors),
                "domain_terms_count": len(truth.domain_terms),
            },
        )

    def audit_backlog(self, truth: Optional[ProjectTruth]) -> AuditSection:
        truth = self._require_truth(truth, "backlog")
        items = self._require_source(self.sources.backlog, "backlog")
        report = self.verifier.verify_backlog(items, truth)

        issues = []
        if report.violations:
            issues.append(f"{report.violations} items violate project context")
        if report.reviews > 5:
            issues.append(f"{report.reviews} items need context review")

        flagged = sorted(
            (r for r in report.items if r.status.is_flagged), key=lambda r: r.confidence
        )[:5]
        return AuditSection(
            key="backlog",
            name="Backlog Alignment",
            score=report.purity_score,
            issues=issues,
            findings={
                "total_items": report.total,
                "aligned": report.aligned,
                "warnings": report.warnings,
                "reviews": report.reviews,
                "violations": report.violations,
                "purity_score": report.purity_score,
            },
            details=[
                {"item": r.title or r.id, "status": r.status.value,
                 "confidence": r.confidence, "message": r.message}
                for r in flagged
            ],
        )

    def audit_sprints(self, truth: Optional[ProjectTruth]) -> AuditSection:
        truth = self._require_truth(truth, "sprints")
        sprints = self._require_source(self.sources.sprints, "sprints")

        rows = []
        for name, tasks in sprints.items():
            verification = self.verifier.verify_sprint_tasks(tasks, truth, sprint_name=name)
            rows.append({
                "sprint": name,
                "tasks": len(verification.tasks),
                "violations": len(verification.blocked_tasks),
                "reviews": sum(1 for t in verification.tasks
                               if t.status == AlignmentStatus.REVIEW),
                "alignment": verification.alignment_score,
                "can_proceed": verification.can_proceed,
            })

        scored = [r["alignment"] for r in rows if r["tasks"]]
        average = round(mean(scored)) if scored else None
        blocked = sum(1 for r in rows if not r["can_proceed"])
        return AuditSection(
            key="sprints",
            name="Sprint Context Alignment",
            score=average,
            issues=[f"{blocked} sprint(s) blocked by context violations"] if blocked else [],
            findings={
                "sprints_analyzed": len(rows),
                "average_alignment": average if average is not None else "N/A",
                "blocked_sprints": blocked,
            },
            details=rows,
        )

    def _audit_items(self, truth, key: str, name: str, source) -> AuditSection:
        truth = self._require_truth(truth, key)
        items = self._require_source(source, key)
        results = self.verifier.score_all(items, truth)
        score = mean_confidence(results)
        flagged = [r for r in results if r.status.is_flagged]
        return AuditSection(
            key=key,
            name=name,
            score=score,
            issues=[f"{len(flagged)} {key} drift from project context"] if flagged else [],
            findings={
                f"{key}_checked": len(results),
                "average_confidence": score if score is not None else "N/A",
                "flagged": len(flagged),
            },
            details=[
                {"item": r.title or r.id, "status": r.status.value, "confidence": r.confidence}
                for r in flagged[:5]
            ],
        )

    def audit_documents(self, truth: Optional[ProjectTruth]) -> AuditSection:
        return self._audit_items(truth, "documents", "Document Drift Analysis",
                                 self.sources.documents)

    def audit_decisions(self, truth: Optional[ProjectTruth]) -> AuditSection:
        return self._audit_items(truth, "decisions", "Decision Alignment",
                                 self.sources.decisions)

    def audit_history(self, truth: Optional[ProjectTruth]) -> AuditSection:
        history = self.truth_store.get_history()
        drift = self.monitor.get_drift_status() if self.monitor is not None else None
        if not history and (drift is None or drift.snapshot is None):
            raise ReportSectionError("No truth versions or drift history recorded",
                                     section="history")

        frequency = change_frequency(history)
        stability = stability_score(frequency, history)
        findings = {
            "total_versions": len(history),
            "change_frequency": frequency,
            "major_changes": sum(1 for v in history if v.change_type == "major"),
            "stability": stability,
        }
        score = stability
        issues = []
        if drift is not None and drift.snapshot is not None:
            latest = drift.snapshot
            score = round((stability + (100 - latest.drift_percentage)) / 2)
            findings.update(
                drift_checks=drift.history_length,
                latest_drift=f"{latest.drift_percentage}%",
                drift_severity=latest.severity.value,
                trend=(f"{drift.trend.rate:+.2f}% per check" if drift.trend.determined
                       else "undetermined"),
            )
            if drift.trend.determined and drift.trend.increasing:
                issues.append(f"Drift increasing at {drift.trend.rate:.2f}% per check")
            if latest.severity.escalates:
                issues.append(f"Latest drift is {latest.severity.value}")

        return AuditSection(
            key="history",
            name="Drift & Version History",
            score=score,
            issues=issues,
            findings=findings,
            details=[
                {"version": f"v{v.version}", "date": v.timestamp.date().isoformat(),
                 "type": v.change_type, "summary": v.change_summary}
                for v in reversed(history[-5:])
            ],
        )

    def audit_learnings(self, truth: Optional[ProjectTruth]) -> AuditSection:
        insights = self.learning.get_insights(truth)
        return AuditSection(
            key="learnings",
            name="Learning Insights",
            # Nothing flagged yet means nothing to learn from; leave it unscored.
            score=learning_score(insights) if insights.results_analyzed else None,
            findings={
                "results_analyzed": insights.results_analyzed,
                "common_violations": len(insights.common_violations),
                "risk_factors": len(insights.risk_factors),
                "prevention_strategies": len(insights.prevention_strategies),
            },
            issues=[r.factor for r in insights.risk_factors if r.impact == "high"],
            details=[
                {"type": c.violation_type, "category": c.category, "occurrences": c.occurrences}
                for c in insights.common_violations[:3]
            ],
        )

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def _run_section(self, key: str, builder, truth) -> AuditSection:
        try:
            return builder(truth)
        except ReportSectionError as e:
            logger.warning("Audit section %s unavailable: %s", key, e.message)
            return AuditSection(key=key, name=_SECTION_TITLES[key], status="unavailable",
                                error=e.message)
        except Exception as e:
            logger.exception("Audit section %s failed", key)
            return AuditSection(key=key, name=_SECTION_TITLES[key], status="unavailable",
                                error=str(e))

    def overall_score(self, sections: Mapping[str, AuditSection]) -> int:
        weighted = [
            (self.config.section_weights.get(key, 0), s.score)
            for key, s in sections.items()
            if s.available and s.score is not None
        ]
        total_weight = sum(w for w, _ in weighted)
        if total_weight <= 0:
            return 0
        return round(sum(w * score for w, score in weighted) / total_weight)

    def generate_full_audit(self, options=None) -> AuditReport:
        if not isinstance(options, AuditOptions):
            options = AuditOptions.from_dict(options)

        # One truth snapshot for every section.
        truth = self.truth_store.load()
        builders = [
            ("truth", True, self.audit_truth),
            ("backlog", options.backlog, self.audit_backlog),
            ("sprints", options.sprints, self.audit_sprints),
            ("documents", options.documents, self.audit_documents),
            ("decisions", options.decisions, self.audit_decisions),
            ("history", options.history, self.audit_history),
            ("learnings", options.learnings, self.audit_learnings),
        ]
        sections: Dict[str, AuditSection] = {}
        for key, enabled, builder in builders:
            if key == "truth" and truth is None:
                continue
            if enabled:
                sections[key] = self._run_section(key, builder, truth)

        if not any(s.available for s in sections.values()):
            raise AuditError(
                "No audit section could be produced",
                sections=",".join(sections) or None,
            )

        overall = self.overall_score(sections)
        critical_findings = [
            {"section": s.name, "score": s.score,
             "finding": s.issues[0] if s.issues else "Low score indicates issues"}
            for s in sections.values()
            if s.available and s.score is not None
            and s.score < self.config.critical_section_score
        ]
        recommendations = (
            self.build_recommendations(overall, sections) if options.recommendations else []
        )

        generated_at = utcnow()
        report = AuditReport(
            report_id=f"audit-{generated_at.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}",
            generated_at=generated_at,
            project_name=(truth.project_name if truth and truth.project_name
                          else "Unknown Project"),
            truth_version=truth.version if truth else 0,
            overall_score=overall,
            health_status=HealthStatus.from_score(overall),
            sections=sections,
            critical_findings=critical_findings,
            recommendations=recommendations,
        )
        logger.info("Audit %s generated: %d%% (%s)", report.report_id, overall,
                    report.health_status.value)
        return report

    def build_recommendations(self, overall: int,
                              sections: Mapping[str, AuditSection]) -> List[Dict[str, Any]]:
        recs: List[Dict[str, Any]] = []
        if overall < 70:
            recs.append({
                "priority": "critical",
                "category": "overall",
                "recommendation": "Immediate intervention required to address context drift",
                "actions": [
                    "Schedule emergency review with Project Manager and stakeholders",
                    "Review and update the project truth",
                    "Gate sprint planning on context verification",
                ],
            })
        elif overall < 85:
            recs.append({
                "priority": "high",
                "category": "overall",
                "recommendation": "Attention needed to prevent further context drift",
                "actions": [
                    "Review flagged items in next sprint planning",
                    "Update team on project context and goals",
                ],
            })

        for section in sections.values():
            if not section.available:
                recs.append({
                    "priority": "low",
                    "category": section.key,
                    "recommendation": f"Restore the data source for {section.name}",
                    "actions": [section.error or "Check the section's data source"],
                })
            elif section.score is not None and section.score < self.config.critical_section_score:
                recs.append({
                    "priority": "critical" if section.score < 50 else "high",
                    "category": section.key,
                    "recommendation": f"Address issues in {section.name}",
                    "actions": _section_actions(section),
                })

        if overall < 80:
            recs.append({
                "priority": "medium",
                "category": "process",
                "recommendation": "Implement regular context verification checkpoints",
                "actions": [
                    "Add context verification to Definition of Done",
                    "Include context check in sprint planning",
                    "Schedule monthly context alignment reviews",
                ],
            })

        recs.sort(key=lambda r: PRIORITY_ORDER[r["priority"]])
        return recs

    def save(self, report: AuditReport) -> Dict[str, str]:
        """Persist the JSON, markdown and HTML renderings of one report."""
        if self.storage is None:
            raise ValueError("No storage configured for audit reports")
        key = f"audits/{report.report_id}"
        paths = {
            "json": self.storage.put(key, report.to_dict()),
            "markdown": self.storage.put_text(f"{key}.md", report.to_markdown()),
            "html": self.storage.put_text(f"{key}.html", report.to_html()),
        }
        logger.info("Audit report saved: %s", paths["json"])
        return paths


_SECTION_TITLES = {
    "truth": "Project Truth Analysis",
    "backlog": "Backlog Alignment",
    "sprints": "Sprint Context Alignment",
    "documents": "Document Drift Analysis",
    "decisions": "Decision Alignment",
    "history": "Drift & Version History",
    "learnings": "Learning Insights",
}


def _section_actions(section: AuditSection) -> List[str]:
    actions = []
    if section.key == "truth":
        actions.extend(f"Fix: {issue}" for issue in section.issues)
    elif section.key == "backlog":
        if section.findings.get("violations"):
            actions.append("Remove or revise items that violate context")
        if section.findings.get("reviews", 0) > 5:
            actions.append("Review flagged items with Product Owner")
    elif section.key == "sprints" and section.findings.get("blocked_sprints"):
        actions.append("Resolve context violations before sprint start")
    return actions or ["Review and address identified issues"]
