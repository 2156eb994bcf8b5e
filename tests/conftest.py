"""Shared fixtures: a sample project truth, in-memory storage and stub scorers."""

import pytest

from context_verification.config import Settings
from context_verification.engine import ContextVerificationEngine
from context_verification.models import ProjectTruth, ScorableItem
from context_verification.scoring import SubScorer
from context_verification.storage import MemoryStorage
from context_verification.truth_store import TruthStore

TRUTH_DATA = {
    "projectName": "ClinicFlow",
    "whatWereBuilding": "Patient scheduling system for independent physiotherapy clinics",
    "industry": "Healthcare practice management",
    "targetUsers": {"primary": "clinic receptionists", "secondary": "physiotherapists"},
    "notThis": [
        "NOT a social media platform",
        "NOT a general CRM",
        "NOT an accounting package",
    ],
    "competitors": [
        {"name": "Jane App", "description": "General practice software with telehealth video and payroll"},
        {"name": "Cliniko", "description": "Practice software with invoicing"},
        {"name": "Zanda", "description": "Allied health software with marketing campaigns"},
    ],
    "domainTerms": [
        {"term": "appointment", "definition": "A booked treatment slot"},
        {"term": "intake", "definition": "New patient questionnaire"},
        {"term": "waitlist", "definition": "Patients waiting for a cancellation"},
        {"term": "treatment plan", "definition": "Sequence of sessions"},
        {"term": "no-show", "definition": "Missed appointment"},
    ],
}


class FixedScorer(SubScorer):
    """Returns the same value for every item."""

    def __init__(self, name, value=100):
        self.name = name
        self.value = value

    def score(self, item, truth):
        return self.value


class LookupScorer(SubScorer):
    """Returns a per-item value keyed by item id (default 100)."""

    def __init__(self, name, values):
        self.name = name
        self.values = values

    def score(self, item, truth):
        return self.values.get(item.id, 100)


def fixed_scorers(value=100):
    return {
        name: FixedScorer(name, value)
        for name in ("domain_alignment", "user_alignment", "competitor_feature", "historical_pattern")
    }


def lookup_scorers(values):
    return {
        name: LookupScorer(name, values)
        for name in ("domain_alignment", "user_alignment", "competitor_feature", "historical_pattern")
    }


def make_items(count, prefix="task"):
    return [ScorableItem(id=f"{prefix}-{i}", title=f"Ticket number {i}") for i in range(count)]


@pytest.fixture
def truth_data():
    return {k: (list(v) if isinstance(v, list) else v) for k, v in TRUTH_DATA.items()}


@pytest.fixture
def truth(truth_data):
    return ProjectTruth.from_dict(truth_data).with_version(1)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def truth_store(storage):
    return TruthStore(storage)


@pytest.fixture
def engine(storage, truth_data):
    engine = ContextVerificationEngine(settings=Settings(), storage=storage, listeners=[])
    engine.create_or_update_truth(truth_data, change_reason="Initial scope")
    yield engine
    engine.stop_monitoring()
