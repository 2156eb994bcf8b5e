"""Tests for the webhook notifier, escalation log, OpenAI scorer and file storage."""

import json
from types import SimpleNamespace

import pytest

from context_verification.ai_scorer import AIConfig, OpenAIDomainScorer, build_prompt
from context_verification.models import DriftSnapshot, ScorableItem, Severity, utcnow
from context_verification.notifier import EscalationLog, WebhookNotifier
from context_verification.storage import JsonFileStorage, MemoryStorage


def snapshot(drift=65, severity=Severity.CRITICAL):
    return DriftSnapshot(
        timestamp=utcnow(),
        drift_percentage=drift,
        severity=severity,
        purity_score=100 - drift,
        items_checked=20,
        truth_version=3,
        recommendations=("Schedule immediate review",),
    )


# ============================================================================
# Webhook
# ============================================================================

class FakeSession:

    def __init__(self, ok=True, status_code=200, text=""):
        self.calls = []
        self.response = SimpleNamespace(ok=ok, status_code=status_code, text=text)

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        return self.response


class TestWebhookNotifier:

    def test_posts_snapshot(self):
        session = FakeSession()
        WebhookNotifier("https://hooks.example.com/x", session=session)(snapshot())
        call = session.calls[0]
        assert call["url"] == "https://hooks.example.com/x"
        assert "65% drift (CRITICAL)" in call["json"]["text"]
        assert call["json"]["snapshot"]["truth_version"] == 3
        assert call["timeout"] == 10

    def test_error_response_raises(self):
        session = FakeSession(ok=False, status_code=500, text="boom")
        with pytest.raises(RuntimeError, match="500"):
            WebhookNotifier("https://hooks.example.com/x", session=session)(snapshot())


class TestEscalationLog:

    def test_entries_append(self):
        storage = MemoryStorage()
        log = EscalationLog(storage)
        log(snapshot())
        log(snapshot(85, Severity.SEVERE))
        text = storage.get_text(EscalationLog.key)
        assert text.startswith("# Stakeholder Escalations")
        assert text.count("## Context Drift Alert") == 2
        assert "- Schedule immediate review" in text


# ============================================================================
# OpenAI domain scorer
# ============================================================================

class FakeCompletions:

    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


class TestOpenAIDomainScorer:

    def test_uses_model_alignment(self, truth):
        completions = FakeCompletions(json.dumps({"alignment": 92, "explanation": "fits"}))
        scorer = OpenAIDomainScorer(AIConfig(api_key="k"), client=fake_client(completions))
        item = ScorableItem(id="a", title="Rebooking flow for cancelled sessions")
        assert scorer.score(item, truth) == 92
        call = completions.calls[0]
        assert call["response_format"] == {"type": "json_object"}
        assert "NOT a social media platform" in call["messages"][1]["content"]

    def test_out_of_range_is_clamped(self, truth):
        completions = FakeCompletions(json.dumps({"alignment": 140}))
        scorer = OpenAIDomainScorer(AIConfig(api_key="k"), client=fake_client(completions))
        assert scorer.score(ScorableItem(id="a", title="x"), truth) == 100

    def test_api_error_falls_back_to_keywords(self, truth):
        completions = FakeCompletions(error=RuntimeError("rate limited"))
        scorer = OpenAIDomainScorer(AIConfig(api_key="k"), client=fake_client(completions))
        item = ScorableItem(id="a", title="Online appointment booking for clinic receptionists")
        assert scorer.score(item, truth) == 85

    def test_unparseable_reply_falls_back(self, truth):
        completions = FakeCompletions("not json")
        scorer = OpenAIDomainScorer(AIConfig(api_key="k"), client=fake_client(completions))
        assert scorer.score(ScorableItem(id="a", title="Add telehealth video calls"), truth) == 40

    def test_model_from_env(self, monkeypatch):
        monkeypatch.setenv("CV_AI_MODEL", "gpt-4o")
        assert AIConfig(api_key="k").model == "gpt-4o"

    def test_prompt_lists_domain_terms(self, truth):
        prompt = build_prompt(ScorableItem(id="a", title="Intake"), truth)
        assert "appointment, intake, waitlist" in prompt


# ============================================================================
# File storage
# ============================================================================

class TestJsonFileStorage:

    def test_documents_and_text(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        path = storage.put("truth/v1", {"version": 1})
        assert path.endswith("truth/v1.json")
        assert storage.get("truth/v1") == {"version": 1}
        storage.put_text("truth/project-truth.md", "# PROJECT TRUTH")
        assert (tmp_path / "truth" / "project-truth.md").read_text() == "# PROJECT TRUTH"
        assert storage.get("missing") is None

    def test_no_temp_files_left(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.put("drift/history", [1, 2, 3])
        assert not list(tmp_path.rglob("*.tmp"))

    def test_keys(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.put("audits/a1", {})
        storage.put_text("audits/a1.md", "")
        storage.put("truth/v1", {})
        assert storage.keys("audits/") == ["audits/a1", "audits/a1.md"]

    def test_key_cannot_escape_root(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "store")
        with pytest.raises(ValueError):
            storage.put("../outside", {})
