"""Truth Store: owns the canonical ProjectTruth and its version history.

Single writer, many readers. Writers serialize on a lock and only swap the
current reference once the new frozen snapshot is complete and persisted, so
a concurrent reader always gets a whole version.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Union

from .errors import NotFoundError, ValidationError
from .models import (
    FieldDifference,
    ProjectTruth,
    TruthVersionInfo,
    TruthWriteResult,
    utcnow,
)
from .storage import MemoryStorage, Storage

logger = logging.getLogger(__name__)

HISTORY_KEY = "truth/history"
DOCUMENT_KEY = "truth/project-truth.md"
MIN_QUALITY_BOUNDARIES = 3

# Impact of a change to each truth field.
FIELD_IMPACT = {
    "what_were_building": "critical",
    "industry": "critical",
    "target_users": "high",
    "not_this": "medium",
    "domain_terms": "medium",
    "competitors": "low",
}


def _version_key(version: int) -> str:
    return f"truth/v{version}"


def validate_truth(truth: ProjectTruth) -> List[str]:
    """Raise ValidationError for hard failures; return soft quality warnings."""
    if not truth.what_were_building:
        raise ValidationError("what_were_building is required", field="what_were_building")
    if not truth.target_users.primary and truth.target_users.secondary:
        raise ValidationError("A secondary target user requires a primary one",
                              field="target_users")

    warnings = []
    if len(truth.not_this) < MIN_QUALITY_BOUNDARIES:
        warnings.append(
            f"Only {len(truth.not_this)} NOT THIS boundaries defined; "
            f"at least {MIN_QUALITY_BOUNDARIES} are recommended"
        )
    return warnings


def diff_truths(old: ProjectTruth, new: ProjectTruth) -> List[FieldDifference]:
    """Field-level differences between two truths, tagged with their impact."""
    differences = []
    old_data, new_data = old.content_dict(), new.content_dict()

    for name in ("what_were_building", "industry", "target_users"):
        if old_data[name] != new_data[name]:
            differences.append(FieldDifference(
                field=name, old=old_data[name], new=new_data[name], impact=FIELD_IMPACT[name]
            ))

    list_fields = {
        "not_this": (list(old.not_this), list(new.not_this)),
        "competitors": ([c.name for c in old.competitors], [c.name for c in new.competitors]),
        "domain_terms": ([t.term for t in old.domain_terms], [t.term for t in new.domain_terms]),
    }
    for name, (before, after) in list_fields.items():
        added = tuple(x for x in after if x not in before)
        removed = tuple(x for x in before if x not in after)
        if added or removed:
            differences.append(FieldDifference(
                field=name, added=added, removed=removed, impact=FIELD_IMPACT[name]
            ))
        elif old_data[name] != new_data[name]:
            # Same names, edited descriptions or definitions.
            differences.append(FieldDifference(
                field=name, old=old_data[name], new=new_data[name], impact="low"
            ))

    return differences


def classify_changes(previous: Optional[ProjectTruth],
                     differences: List[FieldDifference]) -> Dict[str, str]:
    if previous is None:
        return {"type": "initial", "summary": "Initial project truth creation"}
    if not differences:
        return {"type": "patch", "summary": "No significant changes detected"}

    critical = sum(1 for d in differences if d.impact == "critical")
    high = sum(1 for d in differences if d.impact == "high")
    if critical:
        return {"type": "major",
                "summary": f"Major changes: {critical} critical field(s) modified"}
    if high:
        return {"type": "minor",
                "summary": f"Minor changes: {high} important field(s) modified"}
    return {"type": "patch",
            "summary": f"Patch changes: {len(differences)} field(s) updated"}


class TruthStore:
    """Versioned storage for the project truth."""

    def __init__(self, storage: Optional[Storage] = None):
        self.storage = storage or MemoryStorage()
        self._write_lock = threading.Lock()
        self._history: List[TruthVersionInfo] = []
        self._current: Optional[ProjectTruth] = None
        self._reload()

    def _reload(self) -> None:
        index = self.storage.get(HISTORY_KEY) or {}
        self._history = [TruthVersionInfo.from_dict(v) for v in index.get("versions", [])]
        current = index.get("current_version")
        if current:
            document = self.storage.get(_version_key(int(current)))
            if document is not None:
                self._current = ProjectTruth.from_dict(document)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self) -> Optional[ProjectTruth]:
        """Current truth snapshot, or None when no truth was ever written."""
        return self._current

    def require(self) -> ProjectTruth:
        truth = self._current
        if truth is None:
            raise NotFoundError("No project truth loaded; create one first")
        return truth

    @property
    def current_version(self) -> int:
        truth = self._current
        return truth.version if truth else 0

    def get_history(self) -> List[TruthVersionInfo]:
        return list(self._history)

    def get_version(self, version: int) -> ProjectTruth:
        document = self.storage.get(_version_key(version))
        if document is None:
            raise NotFoundError(f"Truth version {version} not found", truth_version=version)
        return ProjectTruth.from_dict(document)

    def compare_versions(self, version_a: int, version_b: int) -> List[FieldDifference]:
        return diff_truths(self.get_version(version_a), self.get_version(version_b))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_or_update_truth(
        self,
        data: Union[ProjectTruth, Dict[str, Any]],
        change_reason: str = "",
        author: str = "system",
    ) -> TruthWriteResult:
        """Validate and store a new truth version."""
        candidate = data if isinstance(data, ProjectTruth) else ProjectTruth.from_dict(data)
        warnings = validate_truth(candidate)
        for warning in warnings:
            logger.warning("Project truth quality: %s", warning)

        with self._write_lock:
            previous = self._current
            version = (previous.version if previous else 0) + 1
            truth = candidate.with_version(version, utcnow())

            differences = diff_truths(previous, truth) if previous else []
            changes = classify_changes(previous, differences)
            info = TruthVersionInfo(
                version=version,
                timestamp=truth.last_verified,
                author=author,
                change_reason=change_reason or changes["summary"],
                change_type=changes["type"],
                change_summary=changes["summary"],
                content_hash=truth.content_hash(),
                changes=tuple(differences),
            )
            history = self._history + [info]

            self.storage.put(_version_key(version), truth.to_dict())
            path = self.storage.put_text(DOCUMENT_KEY, truth.to_markdown())
            self.storage.put(HISTORY_KEY, {
                "current_version": version,
                "total_versions": len(history),
                "versions": [v.to_dict() for v in history],
            })

            self._history = history
            self._current = truth

        logger.info("Project truth v%d stored (%s)", version, changes["summary"])
        return TruthWriteResult(
            success=True,
            version=version,
            path=path,
            warnings=warnings,
            change_type=changes["type"],
            change_summary=changes["summary"],
        )

    def rollback_to_version(self, version: int, reason: str = "") -> TruthWriteResult:
        """Re-publish an earlier version's content as a new version."""
        old = self.get_version(version)
        return self.create_or_update_truth(
            old,
            change_reason=f"Rollback to v{version}: {reason}".rstrip(": "),
            author="system-rollback",
        )
