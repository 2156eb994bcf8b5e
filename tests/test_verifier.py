"""Tests for backlog and sprint verification."""

import time

from context_verification.models import AlignmentStatus, ScorableItem
from context_verification.scoring import AlignmentScorer, SubScorer
from context_verification.verifier import Verifier

from conftest import fixed_scorers, lookup_scorers, make_items


class SlowScorer(SubScorer):
    """Earlier items take longer, so completion order is reversed."""

    def __init__(self, name):
        self.name = name

    def score(self, item, truth):
        index = int(item.id.split("-")[1])
        time.sleep(0.01 * (5 - index))
        return 100


def seven_two_one_verifier(**kwargs):
    values = {"task-7": 60, "task-8": 60, "task-9": 30}
    return Verifier(AlignmentScorer(sub_scorers=lookup_scorers(values)), **kwargs)


class TestVerifyBacklog:

    def test_purity_counts_only_allowed(self, truth):
        report = seven_two_one_verifier().verify_backlog(make_items(10), truth)
        assert report.total == 10
        assert report.aligned == 7
        assert report.reviews == 2
        assert report.violations == 1
        assert report.purity_score == 70
        assert report.truth_version == truth.version

    def test_warnings_do_not_count_as_aligned(self, truth):
        values = {"task-7": 75, "task-8": 75, "task-9": 30}
        verifier = Verifier(AlignmentScorer(sub_scorers=lookup_scorers(values)))
        report = verifier.verify_backlog(make_items(10), truth)
        assert report.aligned == 7
        assert report.warnings == 2
        assert report.reviews == 0
        assert report.violations == 1
        assert report.purity_score == 70

    def test_batch_ids_reach_the_scorer(self, truth):
        seen = []

        class RecordingScorer(AlignmentScorer):
            def score(self, item, truth, batch_ids=frozenset()):
                seen.append(batch_ids)
                return super().score(item, truth, batch_ids)

        Verifier(RecordingScorer(sub_scorers=fixed_scorers(100))).score_all(make_items(3), truth)
        assert seen == [frozenset({"task-0", "task-1", "task-2"})] * 3

    def test_unrecorded_batch_skips_hook(self, truth):
        batches = []
        verifier = seven_two_one_verifier(on_results=batches.append)
        verifier.score_all(make_items(10), truth, record=False)
        assert batches == []

    def test_empty_backlog(self, truth):
        report = Verifier(AlignmentScorer(sub_scorers=fixed_scorers(100))).verify_backlog([], truth)
        assert report.total == 0
        assert report.purity_score == 0

    def test_every_result_records_truth_version(self, truth):
        report = seven_two_one_verifier().verify_backlog(make_items(10), truth)
        assert {r.truth_version for r in report.items} == {truth.version}

    def test_on_results_receives_whole_batch(self, truth):
        batches = []
        verifier = seven_two_one_verifier(on_results=batches.append)
        verifier.verify_backlog(make_items(10), truth)
        assert len(batches) == 1
        assert len(batches[0]) == 10

    def test_markdown_lists_items(self, truth):
        report = seven_two_one_verifier().verify_backlog(make_items(10), truth)
        md = report.to_markdown()
        assert "**Purity Score:** 70%" in md
        assert "Ticket number 9" in md


class TestVerifySprint:

    def test_one_blocked_task_blocks_sprint(self, truth):
        verification = seven_two_one_verifier().verify_sprint_tasks(
            make_items(10), truth, sprint_name="Sprint 12"
        )
        assert not verification.can_proceed
        assert [t.id for t in verification.blocked_tasks] == ["task-9"]
        assert verification.alignment_score == 70

    def test_review_tasks_do_not_block(self, truth):
        values = {"task-0": 60}
        verifier = Verifier(AlignmentScorer(sub_scorers=lookup_scorers(values)))
        verification = verifier.verify_sprint_tasks(make_items(3), truth)
        assert verification.can_proceed
        assert verification.tasks[0].status == AlignmentStatus.REVIEW

    def test_empty_sprint_can_proceed(self, truth):
        verification = Verifier().verify_sprint_tasks([], truth)
        assert verification.can_proceed
        assert verification.alignment_score == 0

    def test_boundary_item_blocks_sprint(self, truth):
        items = make_items(2) + [ScorableItem(id="task-2", title="Add public social feed")]
        verifier = Verifier(AlignmentScorer(sub_scorers=fixed_scorers(100)))
        verification = verifier.verify_sprint_tasks(items, truth)
        assert not verification.can_proceed
        assert verification.blocked_tasks[0].primary_factor == "not_this"


class TestParallelScoring:

    def test_results_keep_input_order(self, truth):
        scorers = fixed_scorers(100)
        scorers["domain_alignment"] = SlowScorer("domain_alignment")
        verifier = Verifier(AlignmentScorer(sub_scorers=scorers), max_workers=4)
        items = make_items(5)
        results = verifier.score_all(items, truth)
        assert [r.id for r in results] == [i.id for i in items]

    def test_parallel_matches_sequential(self, truth):
        items = make_items(10)
        sequential = seven_two_one_verifier().verify_backlog(items, truth)
        parallel = seven_two_one_verifier(max_workers=3).verify_backlog(items, truth)
        assert parallel.to_dict() == sequential.to_dict()
