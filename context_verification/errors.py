"""Exception hierarchy for the Context Verification Engine.

Every error carries a ``context`` dict (item id, section name, truth version...)
so a hosting layer can decide between retrying and skipping.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ContextVerificationError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "context": self.context,
        }

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{self.message} ({details})"


class ValidationError(ContextVerificationError):
    """Malformed or incomplete input (project truth, monitor interval)."""

    def __init__(self, message: str, field: Optional[str] = None, **context: Any):
        super().__init__(message, field=field, **context)
        self.field = field


class NotFoundError(ContextVerificationError):
    """Verification attempted with no truth loaded, or an unknown truth version."""


class MonitorStateError(ContextVerificationError):
    """Illegal monitor transition. Only raised when the caller asks for strict mode."""


class ReportSectionError(ContextVerificationError):
    """One audit section could not be produced."""

    def __init__(self, message: str, section: str, **context: Any):
        super().__init__(message, section=section, **context)
        self.section = section


class AuditError(ContextVerificationError):
    """No audit section at all could be produced."""
