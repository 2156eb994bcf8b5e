"""Drift Monitor: periodic re-verification with bounded history and trends.

Two states, ``stopped`` and ``monitoring``. While monitoring, a daemon
thread ticks every interval. A tick that comes due while another is still
running is skipped, never run concurrently.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, Dict, List, Mapping, Optional, Sequence

from .config import MonitorConfig
from .errors import MonitorStateError, ValidationError
from .models import (
    BacklogReport,
    DriftSnapshot,
    DriftStatus,
    DriftTrend,
    MonitorState,
    Severity,
    utcnow,
)
from .storage import Storage

logger = logging.getLogger(__name__)

HISTORY_KEY = "drift/history"

# Lower bound (inclusive) of each severity band.
SEVERITY_BANDS = (
    (80, Severity.SEVERE),
    (60, Severity.CRITICAL),
    (40, Severity.MAJOR),
    (20, Severity.MODERATE),
    (0, Severity.NONE),
)

SEVERITY_RECOMMENDATIONS = {
    Severity.SEVERE: (
        "Halt new feature work until alignment is restored",
        "Schedule immediate review with Project Manager and stakeholders",
        "Update the project truth if scope has legitimately changed",
    ),
    Severity.CRITICAL: (
        "Schedule immediate review with Project Manager and stakeholders",
        "Consider updating the project truth if scope has legitimately changed",
        "Pause new feature development until alignment is restored",
    ),
    Severity.MAJOR: (
        "Schedule review session within 24 hours",
        "Audit recent decisions and backlog items",
        "Create action plan to realign with project context",
    ),
    Severity.MODERATE: (
        "Review flagged items in next sprint planning",
        "Update team on project context and goals",
    ),
    Severity.NONE: (),
}

# Added to a snapshot's recommendations when that source drifts past 60%.
SOURCE_RECOMMENDATIONS = {
    "documents": "Ensure documentation aligns with project goals",
    "sprints": "Realign sprint goals with project context",
    "decisions": "Review recent decisions for alignment",
}

SOURCE_DRIFT_ALERT = 60


def classify_severity(drift_percentage: float) -> Severity:
    for lower, severity in SEVERITY_BANDS:
        if drift_percentage >= lower:
            return severity
    return Severity.NONE


def compute_trend(values: Sequence[float], window: int = 5) -> DriftTrend:
    """Average change per check over the last ``window`` values."""
    if len(values) < window:
        return DriftTrend(determined=False, window=len(values))
    recent = list(values)[-window:]
    rate = (recent[-1] - recent[0]) / (len(recent) - 1)
    return DriftTrend(determined=True, rate=rate, increasing=rate > 0, window=len(recent))


class DriftMonitor:
    """Two-state drift scheduler.

    ``check`` runs one backlog verification (against whatever truth is
    current) and returns its report; the monitor turns it into a snapshot.
    ``source_drift``, when given, maps a truth version to the drift of the
    secondary sources (documents, sprints, decisions) against that version.
    """

    def __init__(
        self,
        check: Callable[[], BacklogReport],
        config: Optional[MonitorConfig] = None,
        storage: Optional[Storage] = None,
        listeners: Optional[List[Callable[[DriftSnapshot], None]]] = None,
        source_drift: Optional[Callable[[int], Mapping[str, int]]] = None,
    ):
        self.check = check
        self.source_drift = source_drift
        self.config = config or MonitorConfig()
        self.storage = storage
        self.listeners = list(listeners or [])

        self._state = MonitorState.STOPPED
        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._history_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._interval_seconds = 0.0
        self._last_check = None
        self.skipped_ticks = 0

        self._history: Deque[DriftSnapshot] = deque(maxlen=self.config.history_limit)
        if storage is not None:
            for entry in storage.get(HISTORY_KEY) or []:
                self._history.append(DriftSnapshot.from_dict(entry))

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def history(self) -> List[DriftSnapshot]:
        with self._history_lock:
            return list(self._history)

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def start_monitoring(self, interval_minutes: float, strict: bool = False,
                         run_immediately: bool = True) -> bool:
        """Start periodic checks. Returns False if already monitoring."""
        if interval_minutes < self.config.min_interval_minutes:
            raise ValidationError(
                f"Monitoring interval must be at least "
                f"{self.config.min_interval_minutes:g} minutes",
                field="interval_minutes",
                interval_minutes=interval_minutes,
            )

        with self._state_lock:
            if self._state == MonitorState.MONITORING:
                if strict:
                    raise MonitorStateError("Drift monitoring already running")
                logger.warning("Drift monitoring already running; start ignored")
                return False
            # Each run owns its stop event; a thread from an earlier run
            # still finishing a tick keeps its own (already set) event.
            stop_event = threading.Event()
            self._stop_event = stop_event
            self._state = MonitorState.MONITORING

        if run_immediately:
            try:
                self.check_now()
            except Exception:
                with self._state_lock:
                    if self._stop_event is stop_event:
                        self._state = MonitorState.STOPPED
                raise

        with self._state_lock:
            if stop_event.is_set():
                logger.info("Drift monitoring stopped during the initial check")
                return True
            self._interval_seconds = interval_minutes * 60
            self._thread = threading.Thread(
                target=self._run,
                args=(stop_event, self._interval_seconds),
                name="drift-monitor",
                daemon=True,
            )
            self._thread.start()

        logger.info("Context drift monitoring started (every %g minutes)", interval_minutes)
        return True

    def stop_monitoring(self, strict: bool = False) -> bool:
        """Stop periodic checks. Returns False if already stopped."""
        with self._state_lock:
            if self._state == MonitorState.STOPPED:
                if strict:
                    raise MonitorStateError("Drift monitoring is not running")
                logger.warning("Drift monitoring already stopped; stop ignored")
                return False
            self._state = MonitorState.STOPPED
            self._stop_event.set()
            thread, self._thread = self._thread, None

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.config.stop_timeout)
            if thread.is_alive():
                logger.warning("Drift check still running after stop; it will exit when done")
        logger.info("Context drift monitoring stopped")
        return True

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def _run(self, stop_event: threading.Event, interval_seconds: float) -> None:
        while not stop_event.wait(interval_seconds):
            self._scheduled_tick()

    def _scheduled_tick(self) -> Optional[DriftSnapshot]:
        if not self._tick_lock.acquire(blocking=False):
            self.skipped_ticks += 1
            logger.info("Previous drift check still running; skipping this tick")
            return None
        try:
            return self._tick()
        except Exception:
            logger.exception("Scheduled drift check failed")
            return None
        finally:
            self._tick_lock.release()

    def check_now(self) -> DriftSnapshot:
        """Run one check outside the schedule, waiting for any running tick."""
        with self._tick_lock:
            return self._tick()

    def _tick(self) -> DriftSnapshot:
        report = self.check()
        drift = 100 - report.purity_score
        severity = classify_severity(drift)
        sources = self._source_drift(report.truth_version)
        recommendations = SEVERITY_RECOMMENDATIONS[severity] + tuple(
            f"{SOURCE_RECOMMENDATIONS[name]} ({value}% drift)"
            for name, value in sources.items()
            if name in SOURCE_RECOMMENDATIONS and value > SOURCE_DRIFT_ALERT
        )
        snapshot = DriftSnapshot(
            timestamp=utcnow(),
            drift_percentage=drift,
            severity=severity,
            purity_score=report.purity_score,
            items_checked=report.total,
            truth_version=report.truth_version,
            recommendations=recommendations,
            source_drift=sources,
        )

        with self._history_lock:
            self._history.append(snapshot)
            self._last_check = snapshot.timestamp
            entries = [s.to_dict() for s in self._history]
        if self.storage is not None:
            self.storage.put(HISTORY_KEY, entries)

        logger.info("Drift check: %d%% drift (%s) against truth v%d",
                    drift, severity.value, report.truth_version)

        if severity.escalates:
            self._notify(snapshot)
        return snapshot

    def _source_drift(self, truth_version: int) -> Dict[str, int]:
        # Informational only; drift_percentage always comes from the backlog.
        if self.source_drift is None:
            return {}
        try:
            return dict(self.source_drift(truth_version))
        except Exception:
            logger.exception("Secondary source drift check failed")
            return {}

    def _notify(self, snapshot: DriftSnapshot) -> None:
        for listener in self.listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Drift escalation listener failed")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_drift_status(self) -> DriftStatus:
        history = self.history
        trend = compute_trend([s.drift_percentage for s in history], self.config.trend_window)
        if trend.increasing and trend.rate is not None and trend.rate > 5:
            logger.warning("Drift increasing at %.2f%% per check", trend.rate)
        return DriftStatus(
            state=self._state,
            snapshot=history[-1] if history else None,
            trend=trend,
            history_length=len(history),
            last_check=self._last_check or (history[-1].timestamp if history else None),
        )
