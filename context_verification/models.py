"""Data models for the Context Verification Engine."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return utcnow()
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class AlignmentStatus(Enum):
    """Classification of a single scored item."""
    ALLOWED = "allowed"
    WARNING = "warning"
    REVIEW = "review"
    BLOCKED = "blocked"

    @property
    def emoji(self) -> str:
        return {
            AlignmentStatus.ALLOWED: "✓",
            AlignmentStatus.WARNING: "⚠",
            AlignmentStatus.REVIEW: "?",
            AlignmentStatus.BLOCKED: "✗",
        }[self]

    @property
    def is_flagged(self) -> bool:
        """Review and blocked results feed the learning log."""
        return self in (AlignmentStatus.REVIEW, AlignmentStatus.BLOCKED)


class Severity(Enum):
    """Drift severity bands."""
    NONE = "none"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"
    SEVERE = "severe"

    @property
    def emoji(self) -> str:
        return {
            Severity.NONE: "🟢",
            Severity.MODERATE: "🟡",
            Severity.MAJOR: "🟠",
            Severity.CRITICAL: "🔴",
            Severity.SEVERE: "🚨",
        }[self]

    @property
    def escalates(self) -> bool:
        return self in (Severity.MAJOR, Severity.CRITICAL, Severity.SEVERE)


class HealthStatus(Enum):
    """Audit report health buckets."""
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"

    @classmethod
    def from_score(cls, score: int) -> "HealthStatus":
        if score >= 90:
            return cls.EXCELLENT
        if score >= 75:
            return cls.GOOD
        if score >= 60:
            return cls.FAIR
        return cls.POOR


class MonitorState(Enum):
    STOPPED = "stopped"
    MONITORING = "monitoring"


# ============================================================================
# Project Truth
# ============================================================================

# camelCase wire names accepted on input.
_TRUTH_ALIASES = {
    "projectName": "project_name",
    "whatWereBuilding": "what_were_building",
    "targetUsers": "target_users",
    "notThis": "not_this",
    "domainTerms": "domain_terms",
    "lastVerified": "last_verified",
}


@dataclass(frozen=True)
class TargetUsers:
    primary: str = ""
    secondary: str = ""

    def to_dict(self) -> Dict:
        return {"primary": self.primary, "secondary": self.secondary}


@dataclass(frozen=True)
class Competitor:
    name: str
    description: str = ""

    def to_dict(self) -> Dict:
        return {"name": self.name, "description": self.description}


@dataclass(frozen=True)
class DomainTerm:
    term: str
    definition: str = ""

    def to_dict(self) -> Dict:
        return {"term": self.term, "definition": self.definition}


@dataclass(frozen=True)
class ProjectTruth:
    """Canonical project baseline. Immutable: every update is a new version."""
    what_were_building: str
    industry: str = ""
    target_users: TargetUsers = field(default_factory=TargetUsers)
    not_this: Tuple[str, ...] = ()
    competitors: Tuple[Competitor, ...] = ()
    domain_terms: Tuple[DomainTerm, ...] = ()
    project_name: str = ""
    version: int = 0
    last_verified: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectTruth":
        """Build a truth from a dict with camelCase or snake_case keys."""
        if not isinstance(data, dict):
            raise ValidationError("Project truth must be a mapping")
        data = {_TRUTH_ALIASES.get(k, k): v for k, v in data.items()}

        users = data.get("target_users") or {}
        if isinstance(users, str):
            users = {"primary": users}
        if not isinstance(users, dict):
            raise ValidationError("target_users must be a mapping", field="target_users")

        not_this = data.get("not_this") or []
        if isinstance(not_this, str):
            not_this = [not_this]

        try:
            competitors = tuple(
                Competitor(name=c, description="") if isinstance(c, str)
                else Competitor(name=c["name"], description=c.get("description", "") or "")
                for c in data.get("competitors") or []
            )
            domain_terms = tuple(
                DomainTerm(term=t, definition="") if isinstance(t, str)
                else DomainTerm(term=t["term"], definition=t.get("definition", "") or "")
                for t in data.get("domain_terms") or []
            )
        except (KeyError, TypeError) as e:
            raise ValidationError(f"Malformed competitor or domain term entry: {e}")

        return cls(
            what_were_building=str(data.get("what_were_building") or "").strip(),
            industry=str(data.get("industry") or "").strip(),
            target_users=TargetUsers(
                primary=str(users.get("primary") or "").strip(),
                secondary=str(users.get("secondary") or "").strip(),
            ),
            not_this=tuple(str(n).strip() for n in not_this if str(n).strip()),
            competitors=competitors,
            domain_terms=domain_terms,
            project_name=str(data.get("project_name") or "").strip(),
            version=int(data.get("version") or 0),
            last_verified=parse_timestamp(data.get("last_verified")),
        )

    def to_dict(self) -> Dict:
        return {
            "project_name": self.project_name,
            "what_were_building": self.what_were_building,
            "industry": self.industry,
            "target_users": self.target_users.to_dict(),
            "not_this": list(self.not_this),
            "competitors": [c.to_dict() for c in self.competitors],
            "domain_terms": [t.to_dict() for t in self.domain_terms],
            "version": self.version,
            "last_verified": self.last_verified.isoformat(),
        }

    def content_dict(self) -> Dict:
        """Content fields only, without version bookkeeping."""
        data = self.to_dict()
        data.pop("version")
        data.pop("last_verified")
        return data

    def content_hash(self) -> str:
        content = json.dumps(self.content_dict(), sort_keys=True)
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:8]

    def with_version(self, version: int, verified_at: Optional[datetime] = None) -> "ProjectTruth":
        return replace(self, version=version, last_verified=verified_at or utcnow())

    def to_markdown(self) -> str:
        md = f"# PROJECT TRUTH: {self.project_name or 'Project'}\n"
        md += f"Version: {self.version}\n"
        md += f"Last Verified: {self.last_verified.isoformat()}\n\n"
        md += f"## WHAT WE'RE BUILDING\n{self.what_were_building}\n\n"
        md += f"## INDUSTRY/DOMAIN\n{self.industry}\n\n"
        md += "## TARGET USERS\n"
        md += f"- Primary: {self.target_users.primary}\n"
        md += f"- Secondary: {self.target_users.secondary or 'N/A'}\n\n"
        md += "## NOT THIS\nThis project is NOT:\n"
        for item in self.not_this:
            md += f"- ❌ {item}\n"
        md += "\n## COMPETITORS\n"
        for c in self.competitors:
            md += f"- {c.name} - {c.description}\n"
        md += "\n## DOMAIN TERMS\n"
        for t in self.domain_terms:
            md += f"- **{t.term}**: {t.definition}\n"
        md += "\n---\n"
        md += "*This document is the single source of truth for project context.*\n"
        return md

    @classmethod
    def from_markdown(cls, content: str) -> "ProjectTruth":
        """Parse a PROJECT TRUTH markdown document into a truth (version 0)."""
        data: Dict[str, Any] = {"target_users": {}, "not_this": [], "competitors": [],
                                "domain_terms": []}

        title = re.search(r"^#\s+PROJECT TRUTH:\s*(.+)$", content, re.MULTILINE)
        if title:
            data["project_name"] = title.group(1).strip()

        for section in re.split(r"^##\s+", content, flags=re.MULTILINE)[1:]:
            heading, _, body = section.partition("\n")
            heading = heading.strip().upper()
            lines = [l.strip() for l in body.splitlines() if l.strip() and l.strip() != "---"]
            bullets = [re.sub(r"^[-*]\s+", "", l) for l in lines if l.startswith(("- ", "* "))]

            if heading.startswith("WHAT WE"):
                data["what_were_building"] = lines[0] if lines else ""
            elif heading.startswith("INDUSTRY"):
                data["industry"] = lines[0] if lines else ""
            elif heading.startswith("TARGET USERS"):
                for b in bullets:
                    key, _, value = b.partition(":")
                    value = value.strip()
                    if key.strip().lower() in ("primary", "secondary") and value != "N/A":
                        data["target_users"][key.strip().lower()] = value
            elif heading.startswith("NOT THIS"):
                data["not_this"] = [b.replace("❌", "").strip() for b in bullets]
            elif heading.startswith("COMPETITORS"):
                for b in bullets:
                    name, _, description = b.partition(" - ")
                    data["competitors"].append(
                        {"name": name.strip(), "description": description.strip()}
                    )
            elif heading.startswith("DOMAIN TERMS"):
                for b in bullets:
                    term, _, definition = b.partition(":")
                    data["domain_terms"].append(
                        {"term": term.replace("**", "").strip(), "definition": definition.strip()}
                    )

        return cls.from_dict(data)


@dataclass(frozen=True)
class FieldDifference:
    """A single field difference between two truth versions."""
    field: str
    old: Any = None
    new: Any = None
    added: Tuple[str, ...] = ()
    removed: Tuple[str, ...] = ()
    impact: str = "low"

    def to_dict(self) -> Dict:
        data = {"field": self.field, "impact": self.impact}
        if self.added or self.removed:
            data.update(added=list(self.added), removed=list(self.removed))
        else:
            data.update(old=self.old, new=self.new)
        return data


@dataclass(frozen=True)
class TruthVersionInfo:
    """History entry for one truth version."""
    version: int
    timestamp: datetime
    author: str
    change_reason: str
    change_type: str
    change_summary: str
    content_hash: str
    changes: Tuple[FieldDifference, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "version": self.version,
            "timestamp": self.timestamp.isoformat(),
            "author": self.author,
            "change_reason": self.change_reason,
            "change_type": self.change_type,
            "change_summary": self.change_summary,
            "content_hash": self.content_hash,
            "changes": [c.to_dict() for c in self.changes],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TruthVersionInfo":
        return cls(
            version=int(data["version"]),
            timestamp=parse_timestamp(data.get("timestamp")),
            author=data.get("author", "system"),
            change_reason=data.get("change_reason", ""),
            change_type=data.get("change_type", "patch"),
            change_summary=data.get("change_summary", ""),
            content_hash=data.get("content_hash", ""),
            changes=tuple(
                FieldDifference(
                    field=c["field"],
                    old=c.get("old"),
                    new=c.get("new"),
                    added=tuple(c.get("added", ())),
                    removed=tuple(c.get("removed", ())),
                    impact=c.get("impact", "low"),
                )
                for c in data.get("changes", [])
            ),
        )


@dataclass
class TruthWriteResult:
    """Result of create_or_update_truth()."""
    success: bool
    version: int
    path: str
    warnings: List[str] = field(default_factory=list)
    change_type: str = "initial"
    change_summary: str = ""

    def to_dict(self) -> Dict:
        return {
            "success": self.success,
            "version": self.version,
            "path": self.path,
            "warnings": self.warnings,
            "change_type": self.change_type,
            "change_summary": self.change_summary,
        }


# ============================================================================
# Scoring
# ============================================================================

@dataclass(frozen=True)
class ScorableItem:
    """A backlog item, sprint task, decision or document excerpt."""
    id: str
    title: str
    description: str = ""
    category: str = ""
    acceptance_criteria: str = ""

    @property
    def text(self) -> str:
        return " ".join(p for p in (self.title, self.description, self.acceptance_criteria) if p)

    @staticmethod
    def content_id(title: str, description: str = "", category: str = "",
                   acceptance_criteria: str = "") -> str:
        """Stable id for items that arrive without one: same content, same id."""
        content = "\n".join((title, description, category, acceptance_criteria))
        return "item-" + hashlib.sha256(content.encode("utf-8")).hexdigest()[:10]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScorableItem":
        criteria = data.get("acceptance_criteria", data.get("acceptanceCriteria", ""))
        if isinstance(criteria, list):
            criteria = " ".join(str(c) for c in criteria)
        title = str(data.get("title") or data.get("name") or "")
        description = str(data.get("description") or "")
        category = str(data.get("category") or data.get("type") or "")
        criteria = str(criteria or "")
        return cls(
            id=str(data.get("id") or cls.content_id(title, description, category, criteria)),
            title=title,
            description=description,
            category=category,
            acceptance_criteria=criteria,
        )


@dataclass(frozen=True)
class AlignmentResult:
    """Outcome of scoring one item against one truth version."""
    id: str
    status: AlignmentStatus
    confidence: int
    message: str
    details: Dict[str, int]
    recommendation: Optional[str] = None
    title: str = ""
    category: str = ""
    primary_factor: str = ""
    boundary_violation: Optional[str] = None
    truth_version: int = 0

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "status": self.status.value,
            "confidence": self.confidence,
            "message": self.message,
            "recommendation": self.recommendation,
            "details": dict(self.details),
            "primary_factor": self.primary_factor,
            "boundary_violation": self.boundary_violation,
            "truth_version": self.truth_version,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "AlignmentResult":
        return cls(
            id=str(data["id"]),
            status=AlignmentStatus(data["status"]),
            confidence=int(data["confidence"]),
            message=data.get("message", ""),
            details={k: int(v) for k, v in (data.get("details") or {}).items()},
            recommendation=data.get("recommendation"),
            title=data.get("title", ""),
            category=data.get("category", ""),
            primary_factor=data.get("primary_factor", ""),
            boundary_violation=data.get("boundary_violation"),
            truth_version=int(data.get("truth_version", 0)),
        )


def purity_score(allowed: int, total: int) -> int:
    """Share of allowed items as a percentage; 0 for an empty set."""
    if total == 0:
        return 0
    return round(100 * allowed / total)


@dataclass
class BacklogReport:
    """Aggregated verification of a backlog."""
    truth_version: int
    items: List[AlignmentResult] = field(default_factory=list)

    def _count(self, status: AlignmentStatus) -> int:
        return sum(1 for r in self.items if r.status == status)

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def aligned(self) -> int:
        return self._count(AlignmentStatus.ALLOWED)

    @property
    def warnings(self) -> int:
        return self._count(AlignmentStatus.WARNING)

    @property
    def reviews(self) -> int:
        return self._count(AlignmentStatus.REVIEW)

    @property
    def violations(self) -> int:
        return self._count(AlignmentStatus.BLOCKED)

    @property
    def purity_score(self) -> int:
        return purity_score(self.aligned, self.total)

    def to_dict(self) -> Dict:
        return {
            "truth_version": self.truth_version,
            "total": self.total,
            "aligned": self.aligned,
            "warnings": self.warnings,
            "reviews": self.reviews,
            "violations": self.violations,
            "purity_score": self.purity_score,
            "items": [r.to_dict() for r in self.items],
        }

    def to_markdown(self) -> str:
        md = "# Backlog Verification\n\n"
        md += f"**Purity Score:** {self.purity_score}% (truth v{self.truth_version})\n\n"
        md += (f"- Aligned: {self.aligned}\n- Warnings: {self.warnings}\n"
               f"- Reviews: {self.reviews}\n- Violations: {self.violations}\n\n")
        for r in self.items:
            md += f"- {r.status.emoji} **{r.title or r.id}** ({r.confidence}%): {r.message}\n"
            if r.recommendation:
                md += f"  - {r.recommendation}\n"
        return md


@dataclass
class SprintVerification:
    """Sprint gating result."""
    truth_version: int
    tasks: List[AlignmentResult] = field(default_factory=list)
    sprint_name: str = ""

    @property
    def can_proceed(self) -> bool:
        return not any(t.status == AlignmentStatus.BLOCKED for t in self.tasks)

    @property
    def blocked_tasks(self) -> List[AlignmentResult]:
        return [t for t in self.tasks if t.status == AlignmentStatus.BLOCKED]

    @property
    def alignment_score(self) -> int:
        """Share of tasks that are neither blocked nor in review."""
        if not self.tasks:
            return 0
        clean = sum(1 for t in self.tasks if not t.status.is_flagged)
        return round(100 * clean / len(self.tasks))

    def to_dict(self) -> Dict:
        return {
            "sprint_name": self.sprint_name,
            "truth_version": self.truth_version,
            "can_proceed": self.can_proceed,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    def to_markdown(self) -> str:
        verdict = "✓ CAN PROCEED" if self.can_proceed else "✗ BLOCKED"
        md = f"# Sprint Verification: {self.sprint_name or 'current sprint'}\n\n"
        md += f"**Status:** {verdict} (truth v{self.truth_version})\n\n"
        for t in self.tasks:
            md += f"- {t.status.emoji} **{t.title or t.id}** ({t.confidence}%): {t.message}\n"
        return md


# ============================================================================
# Drift
# ============================================================================

@dataclass(frozen=True)
class DriftSnapshot:
    timestamp: datetime
    drift_percentage: int
    severity: Severity
    purity_score: int = 0
    items_checked: int = 0
    truth_version: int = 0
    recommendations: Tuple[str, ...] = ()
    # Drift of documents, sprints and decisions, where those sources are set.
    source_drift: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "drift_percentage": self.drift_percentage,
            "severity": self.severity.value,
            "purity_score": self.purity_score,
            "items_checked": self.items_checked,
            "truth_version": self.truth_version,
            "recommendations": list(self.recommendations),
            "source_drift": dict(self.source_drift),
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "DriftSnapshot":
        return cls(
            timestamp=parse_timestamp(data.get("timestamp")),
            drift_percentage=int(data["drift_percentage"]),
            severity=Severity(data["severity"]),
            purity_score=int(data.get("purity_score", 0)),
            items_checked=int(data.get("items_checked", 0)),
            truth_version=int(data.get("truth_version", 0)),
            recommendations=tuple(data.get("recommendations", ())),
            source_drift={k: int(v) for k, v in (data.get("source_drift") or {}).items()},
        )


@dataclass(frozen=True)
class DriftTrend:
    """Drift trend over the most recent snapshots; rate is None while undetermined."""
    determined: bool
    rate: Optional[float] = None
    increasing: Optional[bool] = None
    window: int = 0

    def to_dict(self) -> Dict:
        return {
            "determined": self.determined,
            "rate": self.rate,
            "increasing": self.increasing,
            "window": self.window,
        }


@dataclass(frozen=True)
class DriftStatus:
    state: MonitorState
    snapshot: Optional[DriftSnapshot]
    trend: DriftTrend
    history_length: int
    last_check: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            "state": self.state.value,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "trend": self.trend.to_dict(),
            "history_length": self.history_length,
            "last_check": self.last_check.isoformat() if self.last_check else None,
        }


# ============================================================================
# Learning insights
# ============================================================================

@dataclass(frozen=True)
class ViolationCluster:
    """A recurring violation: same category and failing factor."""
    violation_type: str
    category: str
    message: str
    occurrences: int
    blocked: int
    item_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict:
        return {
            "type": self.violation_type,
            "category": self.category,
            "message": self.message,
            "occurrences": self.occurrences,
            "blocked": self.blocked,
            "item_ids": list(self.item_ids),
        }


@dataclass(frozen=True)
class RiskFactor:
    factor: str
    impact: str
    mitigation: str
    category: str = "truth"

    def to_dict(self) -> Dict:
        return {
            "factor": self.factor,
            "category": self.category,
            "impact": self.impact,
            "mitigation": self.mitigation,
        }


@dataclass(frozen=True)
class PreventionStrategy:
    name: str
    description: str
    priority: str
    violation_type: str
    occurrences: int = 0

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "description": self.description,
            "priority": self.priority,
            "type": self.violation_type,
            "occurrences": self.occurrences,
        }


@dataclass
class Insights:
    common_violations: List[ViolationCluster] = field(default_factory=list)
    risk_factors: List[RiskFactor] = field(default_factory=list)
    prevention_strategies: List[PreventionStrategy] = field(default_factory=list)
    recommendations: List[Dict[str, str]] = field(default_factory=list)
    results_analyzed: int = 0

    def to_dict(self) -> Dict:
        return {
            "results_analyzed": self.results_analyzed,
            "common_violations": [c.to_dict() for c in self.common_violations],
            "risk_factors": [r.to_dict() for r in self.risk_factors],
            "prevention_strategies": [p.to_dict() for p in self.prevention_strategies],
            "recommendations": list(self.recommendations),
        }
