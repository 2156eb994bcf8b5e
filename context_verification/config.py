"""Configuration for the Context Verification Engine.

Values come from the environment (optionally a ``.env`` file) and fall back to
the defaults below. The scoring weights and status thresholds are defaults,
not contractual constants; override them per project.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from dotenv import load_dotenv

from .errors import ValidationError

load_dotenv()

SUB_SCORE_NAMES: Tuple[str, ...] = (
    "domain_alignment",
    "user_alignment",
    "competitor_feature",
    "historical_pattern",
)

SECTION_NAMES: Tuple[str, ...] = (
    "truth",
    "backlog",
    "sprints",
    "documents",
    "decisions",
    "history",
    "learnings",
)

DEFAULT_STORAGE_DIR = Path(".context-verification")


def _parse_numbers(raw: str, expected: int, name: str) -> List[float]:
    parts = [p.strip() for p in raw.split(",") if p.strip()]
    if len(parts) != expected:
        raise ValidationError(
            f"{name} needs {expected} comma-separated numbers, got {raw!r}", field=name
        )
    try:
        return [float(p) for p in parts]
    except ValueError:
        raise ValidationError(f"{name} must be numeric, got {raw!r}", field=name)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}", field=name)


@dataclass
class ScoringConfig:
    """Sub-score weights (any scale, normalized on use) and status thresholds."""
    weights: Dict[str, float] = field(
        default_factory=lambda: {name: 25.0 for name in SUB_SCORE_NAMES}
    )
    allowed_threshold: float = 85
    warning_threshold: float = 70
    review_threshold: float = 50
    # Similarity above which a flagged pattern counts as a historical match.
    pattern_similarity: float = 0.6

    def __post_init__(self):
        unknown = set(self.weights) - set(SUB_SCORE_NAMES)
        if unknown:
            raise ValidationError(f"Unknown sub-score weights: {sorted(unknown)}", field="weights")
        if any(w < 0 for w in self.weights.values()) or sum(self.weights.values()) <= 0:
            raise ValidationError("Sub-score weights must be non-negative and sum above zero",
                                  field="weights")
        if not (100 >= self.allowed_threshold > self.warning_threshold
                > self.review_threshold >= 0):
            raise ValidationError(
                "Thresholds must satisfy 100 >= allowed > warning > review >= 0",
                field="thresholds",
            )

    def normalized_weights(self) -> Dict[str, float]:
        total = sum(self.weights.get(name, 0.0) for name in SUB_SCORE_NAMES)
        return {name: self.weights.get(name, 0.0) / total for name in SUB_SCORE_NAMES}

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        kwargs = {}
        raw_weights = os.environ.get("CV_SCORE_WEIGHTS")
        if raw_weights:
            values = _parse_numbers(raw_weights, len(SUB_SCORE_NAMES), "CV_SCORE_WEIGHTS")
            kwargs["weights"] = dict(zip(SUB_SCORE_NAMES, values))
        raw_thresholds = os.environ.get("CV_STATUS_THRESHOLDS")
        if raw_thresholds:
            allowed, warning, review = _parse_numbers(raw_thresholds, 3, "CV_STATUS_THRESHOLDS")
            kwargs.update(
                allowed_threshold=allowed,
                warning_threshold=warning,
                review_threshold=review,
            )
        return cls(**kwargs)


@dataclass
class MonitorConfig:
    """Drift monitor limits."""
    history_limit: int = 100
    min_interval_minutes: float = 5
    trend_window: int = 5
    # Seconds stop_monitoring waits for the schedule thread to exit.
    stop_timeout: float = 5.0

    def __post_init__(self):
        if self.history_limit < 1:
            raise ValidationError("history_limit must be at least 1", field="history_limit")
        if self.trend_window < 2:
            raise ValidationError("trend_window must be at least 2", field="trend_window")

    @classmethod
    def from_env(cls) -> "MonitorConfig":
        return cls(history_limit=_env_int("CV_HISTORY_LIMIT", 100))


@dataclass
class ReportConfig:
    """Audit section weights used for the overall score."""
    section_weights: Dict[str, float] = field(default_factory=lambda: {
        "truth": 10,
        "backlog": 30,
        "sprints": 20,
        "documents": 10,
        "decisions": 10,
        "history": 10,
        "learnings": 10,
    })
    critical_section_score: int = 70


@dataclass
class Settings:
    """Top-level settings bundle used by the engine and its hosting layers."""
    storage_dir: Path = DEFAULT_STORAGE_DIR
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    max_workers: int = 1
    drift_webhook_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            storage_dir=Path(os.environ.get("CV_STORAGE_DIR", str(DEFAULT_STORAGE_DIR))),
            scoring=ScoringConfig.from_env(),
            monitor=MonitorConfig.from_env(),
            max_workers=max(1, _env_int("CV_MAX_WORKERS", 1)),
            drift_webhook_url=os.environ.get("CV_DRIFT_WEBHOOK_URL") or None,
        )
