"""Tests for the versioned truth store."""

import threading

import pytest

from context_verification.errors import NotFoundError, ValidationError
from context_verification.models import ProjectTruth
from context_verification.storage import MemoryStorage
from context_verification.truth_store import TruthStore


class TestCreateOrUpdate:

    def test_first_write_is_version_one(self, truth_store, truth_data):
        result = truth_store.create_or_update_truth(truth_data, change_reason="Kickoff")
        assert result.success
        assert result.version == 1
        assert result.change_type == "initial"
        assert result.warnings == []
        assert truth_store.load().version == 1
        assert truth_store.load().project_name == "ClinicFlow"

    def test_versions_increment(self, truth_store, truth_data):
        truth_store.create_or_update_truth(truth_data)
        truth_data["industry"] = "Physiotherapy clinic operations"
        result = truth_store.create_or_update_truth(truth_data, change_reason="Narrow industry")
        assert result.version == 2
        assert result.change_type == "major"
        assert truth_store.current_version == 2

    def test_few_boundaries_warn_but_store(self, truth_store, truth_data):
        truth_data["notThis"] = ["NOT a social media platform"]
        result = truth_store.create_or_update_truth(truth_data)
        assert result.success
        assert len(result.warnings) == 1
        assert "NOT THIS" in result.warnings[0]

    def test_missing_vision_rejected_without_partial_write(self, storage, truth_data):
        store = TruthStore(storage)
        store.create_or_update_truth(truth_data)
        keys_before = storage.keys()

        truth_data["whatWereBuilding"] = "   "
        with pytest.raises(ValidationError):
            store.create_or_update_truth(truth_data)

        assert storage.keys() == keys_before
        assert store.current_version == 1

    def test_secondary_without_primary_rejected(self, truth_store, truth_data):
        truth_data["targetUsers"] = {"secondary": "physiotherapists"}
        with pytest.raises(ValidationError):
            truth_store.create_or_update_truth(truth_data)
        assert truth_store.load() is None

    def test_malformed_competitor_rejected(self, truth_store, truth_data):
        truth_data["competitors"] = [{"description": "no name"}]
        with pytest.raises(ValidationError):
            truth_store.create_or_update_truth(truth_data)

    def test_concurrent_writers_get_distinct_versions(self, truth_store, truth_data):
        versions = []

        def write(i):
            data = dict(truth_data, industry=f"Healthcare practice management {i}")
            versions.append(truth_store.create_or_update_truth(data).version)

        threads = [threading.Thread(target=write, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(versions) == list(range(1, 9))
        assert [v.version for v in truth_store.get_history()] == list(range(1, 9))


class TestReads:

    def test_require_without_truth(self, truth_store):
        with pytest.raises(NotFoundError):
            truth_store.require()

    def test_old_versions_stay_readable(self, truth_store, truth_data):
        truth_store.create_or_update_truth(truth_data)
        truth_data["notThis"] = truth_data["notThis"] + ["NOT a billing system"]
        truth_store.create_or_update_truth(truth_data)

        v1 = truth_store.get_version(1)
        assert v1.version == 1
        assert "NOT a billing system" not in v1.not_this
        assert "NOT a billing system" in truth_store.load().not_this

    def test_unknown_version(self, truth_store):
        with pytest.raises(NotFoundError):
            truth_store.get_version(42)

    def test_reload_from_storage(self, storage, truth_data):
        TruthStore(storage).create_or_update_truth(truth_data)
        reopened = TruthStore(storage)
        assert reopened.current_version == 1
        assert reopened.load().content_hash() == TruthStore(storage).load().content_hash()
        assert len(reopened.get_history()) == 1

    def test_markdown_document_written(self, storage, truth_store, truth_data):
        truth_store.create_or_update_truth(truth_data)
        document = storage.get_text("truth/project-truth.md")
        assert document.startswith("# PROJECT TRUTH: ClinicFlow")


class TestHistory:

    def test_compare_versions(self, truth_store, truth_data):
        truth_store.create_or_update_truth(truth_data)
        truth_data["notThis"] = truth_data["notThis"][:2]
        truth_store.create_or_update_truth(truth_data)

        changes = truth_store.compare_versions(1, 2)
        assert len(changes) == 1
        assert changes[0].field == "not_this"
        assert changes[0].removed == ("NOT an accounting package",)
        assert changes[0].impact == "medium"

    def test_user_change_is_minor(self, truth_store, truth_data):
        truth_store.create_or_update_truth(truth_data)
        truth_data["targetUsers"] = {"primary": "clinic owners"}
        result = truth_store.create_or_update_truth(truth_data)
        assert result.change_type == "minor"

    def test_rollback_creates_new_version(self, truth_store, truth_data):
        truth_store.create_or_update_truth(truth_data)
        original_hash = truth_store.load().content_hash()
        truth_data["industry"] = "Fitness"
        truth_store.create_or_update_truth(truth_data)

        result = truth_store.rollback_to_version(1, "Pivot cancelled")
        assert result.version == 3
        assert truth_store.load().content_hash() == original_hash
        latest = truth_store.get_history()[-1]
        assert latest.author == "system-rollback"
        assert latest.change_reason == "Rollback to v1: Pivot cancelled"


class TestMarkdown:

    def test_markdown_round_trip_keeps_content(self, truth):
        parsed = ProjectTruth.from_markdown(truth.to_markdown())
        assert parsed.content_dict() == truth.content_dict()


def test_memory_storage_isolates_documents():
    storage = MemoryStorage()
    doc = {"a": [1, 2]}
    storage.put("x", doc)
    doc["a"].append(3)
    assert storage.get("x") == {"a": [1, 2]}
