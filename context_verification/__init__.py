"""Context Verification Engine - Detects drift between work items and the project truth."""

from .config import MonitorConfig, ReportConfig, ScoringConfig, Settings
from .engine import ContextVerificationEngine
from .errors import (
    AuditError,
    ContextVerificationError,
    MonitorStateError,
    NotFoundError,
    ReportSectionError,
    ValidationError,
)
from .models import (
    AlignmentResult,
    AlignmentStatus,
    BacklogReport,
    DriftSnapshot,
    DriftStatus,
    HealthStatus,
    Insights,
    MonitorState,
    ProjectTruth,
    ScorableItem,
    Severity,
    SprintVerification,
)
from .report import AuditOptions, AuditReport
from .storage import JsonFileStorage, MemoryStorage

__all__ = [
    "ContextVerificationEngine",
    "Settings",
    "ScoringConfig",
    "MonitorConfig",
    "ReportConfig",
    "ContextVerificationError",
    "ValidationError",
    "NotFoundError",
    "MonitorStateError",
    "ReportSectionError",
    "AuditError",
    "AlignmentResult",
    "AlignmentStatus",
    "BacklogReport",
    "DriftSnapshot",
    "DriftStatus",
    "HealthStatus",
    "Insights",
    "MonitorState",
    "ProjectTruth",
    "ScorableItem",
    "Severity",
    "SprintVerification",
    "AuditOptions",
    "AuditReport",
    "JsonFileStorage",
    "MemoryStorage",
]
