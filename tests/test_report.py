"""Tests for the audit report generator."""

import json
import re

import pytest

from context_verification.config import ReportConfig
from context_verification.engine import ContextVerificationEngine
from context_verification.errors import AuditError
from context_verification.models import HealthStatus
from context_verification.report import AuditOptions, AuditReportGenerator, AuditSources
from context_verification.storage import MemoryStorage

CLEAN_BACKLOG = [
    {"id": "b1", "title": "Online appointment booking for clinic receptionists"},
    {"id": "b2", "title": "Waitlist reminders for clinic receptionists"},
    {"id": "b3", "title": "Intake form for physiotherapists"},
]

MIXED_BACKLOG = CLEAN_BACKLOG + [
    {"id": "b4", "title": "Add public social feed to the platform", "category": "engagement"},
    {"id": "b5", "title": "Add telehealth video calls"},
]


@pytest.fixture
def audited_engine(engine):
    engine.set_backlog(MIXED_BACKLOG)
    engine.set_sprints({
        "Sprint 1": CLEAN_BACKLOG,
        "Sprint 2": [MIXED_BACKLOG[3]],
        "Sprint 3": [],
    })
    return engine


class TestSections:

    def test_missing_sources_are_unavailable(self, engine):
        engine.set_backlog(CLEAN_BACKLOG)
        report = engine.generate_full_audit()
        assert report.sections["backlog"].available
        for key in ("sprints", "documents", "decisions"):
            assert report.sections[key].status == "unavailable"
            assert "No data source" in report.sections[key].error

    def test_failing_source_is_isolated(self, engine):
        def broken():
            raise RuntimeError("tracker timeout")

        engine.set_backlog(CLEAN_BACKLOG)
        engine.sources.documents = broken
        report = engine.generate_full_audit()
        assert report.sections["documents"].status == "unavailable"
        assert report.sections["documents"].error == "tracker timeout"
        assert report.sections["backlog"].score == 100

    def test_backlog_section_matches_verification(self, audited_engine):
        report = audited_engine.generate_full_audit()
        backlog = report.sections["backlog"]
        assert backlog.findings["total_items"] == 5
        assert backlog.findings["violations"] == 1
        assert backlog.score == 60
        assert {d["item"] for d in backlog.details} == {
            "Add public social feed to the platform", "Add telehealth video calls",
        }

    def test_empty_sprint_excluded_from_average(self, audited_engine):
        sprints = audited_engine.generate_full_audit().sections["sprints"]
        assert sprints.findings["sprints_analyzed"] == 3
        assert sprints.findings["blocked_sprints"] == 1
        # Sprint 1 is fully aligned, Sprint 2 fully blocked, Sprint 3 has no tasks.
        assert sprints.score == 50

    def test_history_uses_drift(self, audited_engine):
        audited_engine.check_now()
        history = audited_engine.generate_full_audit().sections["history"]
        # Stability 100, latest drift 40.
        assert history.score == 80
        assert history.findings["drift_severity"] == "major"

    def test_options_skip_sections(self, audited_engine):
        report = audited_engine.generate_full_audit({"includeDocuments": False, "sprints": False})
        assert "documents" not in report.sections
        assert "sprints" not in report.sections
        assert "truth" in report.sections

    def test_unknown_option_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.generate_full_audit({"vibes": True})


class TestOverallScore:

    def test_weighted_mean_of_available_sections(self, audited_engine):
        report = audited_engine.generate_full_audit()
        weights = ReportConfig().section_weights
        scored = [(weights[k], s.score) for k, s in report.sections.items()
                  if s.available and s.score is not None]
        expected = round(sum(w * s for w, s in scored) / sum(w for w, _ in scored))
        assert report.overall_score == expected
        assert report.health_status == HealthStatus.from_score(expected)

    def test_critical_findings_below_seventy(self, audited_engine):
        report = audited_engine.generate_full_audit()
        names = {f["section"] for f in report.critical_findings}
        low = {s.name for s in report.sections.values()
               if s.available and s.score is not None and s.score < 70}
        assert names == low
        assert {"Backlog Alignment", "Sprint Context Alignment"} <= names

    def test_recommendations_sorted_by_priority(self, audited_engine):
        recs = audited_engine.generate_full_audit().recommendations
        order = {"critical": 0, "high": 1, "medium": 2, "low": 3}
        assert [order[r["priority"]] for r in recs] == sorted(order[r["priority"]] for r in recs)

    def test_no_section_raises_audit_error(self):
        engine = ContextVerificationEngine(storage=MemoryStorage(), listeners=[])
        with pytest.raises(AuditError):
            engine.generate_full_audit({"learnings": False})


class TestRenderings:

    def test_formats_agree_on_overall_score(self, audited_engine):
        report = audited_engine.generate_full_audit()
        as_dict = report.to_dict()
        md_score = re.search(r"\*\*Overall Score\*\*: (\d+)%", report.to_markdown()).group(1)
        html_score = re.search(r'data-score="(\d+)"', report.to_html()).group(1)
        assert as_dict["overall_score"] == int(md_score) == int(html_score)
        assert as_dict["health_status"] == report.health_status.value

    def test_html_escapes_content(self, engine, truth_data):
        truth_data["projectName"] = "<script>alert(1)</script>"
        engine.create_or_update_truth(truth_data)
        engine.set_backlog(CLEAN_BACKLOG)
        page = engine.generate_full_audit().to_html()
        assert "<script>" not in page
        assert "&lt;script&gt;" in page

    def test_unavailable_section_rendered(self, engine):
        engine.set_backlog(CLEAN_BACKLOG)
        md = engine.generate_full_audit().to_markdown()
        assert "Unavailable: No data source configured for documents" in md

    def test_save_writes_all_formats(self, storage, audited_engine):
        report = audited_engine.generate_full_audit(save=True)
        keys = storage.keys(f"audits/{report.report_id}")
        assert keys == [
            f"audits/{report.report_id}",
            f"audits/{report.report_id}.html",
            f"audits/{report.report_id}.md",
        ]
        assert storage.get(f"audits/{report.report_id}")["overall_score"] == report.overall_score

    def test_back_to_back_audits_are_saved_separately(self, storage, audited_engine):
        first = audited_engine.generate_full_audit(save=True)
        second = audited_engine.generate_full_audit(save=True)
        assert first.report_id != second.report_id
        assert len(storage.keys("audits/")) == 6


class TestImmutability:

    def test_sections_cannot_be_replaced(self, audited_engine):
        report = audited_engine.generate_full_audit()
        with pytest.raises(TypeError):
            report.sections["backlog"] = report.sections["truth"]

    def test_section_contents_are_read_only(self, audited_engine):
        backlog = audited_engine.generate_full_audit().sections["backlog"]
        with pytest.raises(AttributeError):
            backlog.score = 100
        with pytest.raises(TypeError):
            backlog.findings["violations"] = 0
        with pytest.raises(AttributeError):
            backlog.issues.append("added later")
        with pytest.raises(TypeError):
            backlog.details[0]["status"] = "allowed"

    def test_recommendations_are_read_only(self, audited_engine):
        report = audited_engine.generate_full_audit()
        with pytest.raises(TypeError):
            report.recommendations[0]["priority"] = "low"

    def test_to_dict_returns_plain_json(self, audited_engine):
        as_dict = audited_engine.generate_full_audit().to_dict()
        assert isinstance(as_dict["sections"]["backlog"]["findings"], dict)
        assert isinstance(as_dict["sections"]["backlog"]["details"], list)
        assert isinstance(as_dict["recommendations"][0]["actions"], list)
        json.dumps(as_dict)


class TestGeneratorDirectly:

    def test_sources_default_to_unavailable(self, engine):
        generator = AuditReportGenerator(engine.truth_store, engine.verifier, engine.learning)
        report = generator.generate_full_audit(AuditOptions(history=False, learnings=False))
        assert report.sections["truth"].score == 100
        assert not report.sections["backlog"].available

    def test_save_requires_storage(self, engine):
        generator = AuditReportGenerator(engine.truth_store, engine.verifier, engine.learning,
                                         sources=AuditSources(backlog=lambda: []))
        report = generator.generate_full_audit()
        with pytest.raises(ValueError):
            generator.save(report)
