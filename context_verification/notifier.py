"""Drift escalation notifiers.

Listeners receive every snapshot whose severity is major or worse.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import requests

from .models import DriftSnapshot
from .storage import Storage

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """POSTs drift alerts as JSON to a webhook (Slack-compatible ``text`` field)."""

    def __init__(self, url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_payload(self, snapshot: DriftSnapshot) -> Dict:
        return {
            "text": (
                f"Context drift alert: {snapshot.drift_percentage}% drift "
                f"({snapshot.severity.value.upper()}) against truth v{snapshot.truth_version}"
            ),
            "snapshot": snapshot.to_dict(),
        }

    def __call__(self, snapshot: DriftSnapshot) -> None:
        response = self.session.post(
            self.url,
            json=self.build_payload(snapshot),
            timeout=self.timeout,
        )
        if not response.ok:
            raise RuntimeError(f"Webhook error: {response.status_code} - {response.text}")
        logger.info("Drift alert sent to webhook (%s)", snapshot.severity.value)


class EscalationLog:
    """Appends drift alerts to a markdown log for stakeholders."""

    key = "escalations/stakeholder-escalations.md"

    def __init__(self, storage: Storage):
        self.storage = storage

    def __call__(self, snapshot: DriftSnapshot) -> None:
        existing = self.storage.get_text(self.key) or "# Stakeholder Escalations\n\n"
        entry = f"## Context Drift Alert - {snapshot.timestamp.isoformat()}\n\n"
        entry += f"- **Severity**: {snapshot.severity.value.upper()}\n"
        entry += f"- **Drift**: {snapshot.drift_percentage}%\n"
        entry += f"- **Items Checked**: {snapshot.items_checked}\n"
        entry += f"- **Truth Version**: v{snapshot.truth_version}\n\n"
        if snapshot.recommendations:
            entry += "### Recommendations\n"
            for rec in snapshot.recommendations:
                entry += f"- {rec}\n"
            entry += "\n"
        self.storage.put_text(self.key, existing + entry)
