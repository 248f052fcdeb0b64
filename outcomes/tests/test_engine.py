"""
OutcomeEngine operations: validation, node and mapping management,
reports and conflict retries.
"""
import pytest
from sqlalchemy.exc import OperationalError

from outcomes.logic import (
    DuplicateNode,
    InvalidPriority,
    InvalidScore,
    Level,
    MappingNotFound,
    NodeNotFound,
    OutcomeEngine,
    PriorityTag,
    RecomputeStatus,
    ScopeMismatch,
    ScoreNotFound,
    TransactionConflict,
)
from outcomes.logic.cascade import CascadeCoordinator
from outcomes.logic.unit_of_work import is_write_conflict


def _score(engine, student, node, level):
    return engine.get_score(student, node, level).value


class TestScoreValidation:
    def test_ratio_is_stored(self, outcome_engine, hierarchy):
        result = outcome_engine.set_ac_score("s1", hierarchy.ac2, 15)

        assert result.saved[0].value == pytest.approx(0.75)
        assert result.skipped == []

    def test_explicit_max_marks_overrides_node(self, outcome_engine, hierarchy):
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 15, max_marks=30)

        assert _score(outcome_engine, "s1", hierarchy.ac1, "ac") == pytest.approx(0.5)

    @pytest.mark.parametrize("obtained", [-1, 11, None, float("nan"), "8", True])
    def test_bad_marks_rejected(self, outcome_engine, hierarchy, obtained):
        with pytest.raises(InvalidScore):
            outcome_engine.set_ac_score("s1", hierarchy.ac1, obtained)

        with pytest.raises(ScoreNotFound):
            outcome_engine.get_score("s1", hierarchy.ac1, "ac")

    @pytest.mark.parametrize("max_marks", [0, -5, float("inf")])
    def test_bad_max_marks_rejected(self, outcome_engine, hierarchy, max_marks):
        with pytest.raises(InvalidScore):
            outcome_engine.set_ac_score("s1", hierarchy.ac1, 1, max_marks=max_marks)

    def test_unknown_ac(self, outcome_engine, hierarchy):
        with pytest.raises(NodeNotFound):
            outcome_engine.set_ac_score("s1", 999, 5)

    def test_batch_skips_invalid_entries(self, outcome_engine, hierarchy):
        result = outcome_engine.set_ac_scores(
            hierarchy.ac2,
            [
                {"student_id": "s1", "obtained_marks": 10},
                {"student_id": "s2", "obtained_marks": 25},
                {"student_id": "s3", "obtained_marks": None},
            ],
        )

        assert [r.student_id for r in result.saved] == ["s1"]
        assert {s.student_id for s in result.skipped} == {"s2", "s3"}
        assert _score(outcome_engine, "s1", hierarchy.lo1, "lo") == pytest.approx(0.375 * 0.5)
        with pytest.raises(ScoreNotFound):
            outcome_engine.get_score("s2", hierarchy.ac2, "ac")

    def test_batch_with_nothing_valid_writes_nothing(self, outcome_engine, hierarchy):
        with pytest.raises(InvalidScore, match="s1"):
            outcome_engine.set_ac_scores(hierarchy.ac1, [{"student_id": "s1", "obtained_marks": 50}])

    def test_lo_overwrite_range(self, outcome_engine, hierarchy):
        with pytest.raises(InvalidScore):
            outcome_engine.set_lo_score("s1", hierarchy.lo1, 1.5)

    def test_rewriting_a_score_keeps_one_record(self, outcome_engine, hierarchy):
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 2)
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 9)

        summary = outcome_engine.student_scores("s1", "ac")
        assert len(summary.scores) == 1
        assert summary.scores[0].value == pytest.approx(0.9)


class TestMappings:
    def test_invalid_priority_writes_nothing(self, outcome_engine, hierarchy):
        before = outcome_engine.get_mapping(hierarchy.lo1, "ac_lo")

        with pytest.raises(InvalidPriority):
            outcome_engine.set_mapping_priorities(
                hierarchy.lo1, "ac_lo", {hierarchy.ac1: "low", hierarchy.ac2: "urgent"}
            )

        assert outcome_engine.get_mapping(hierarchy.lo1, "ac_lo") == before

    def test_invalid_lo_priority_writes_nothing(self, outcome_engine, hierarchy):
        before = outcome_engine.get_mapping(hierarchy.ro1, "lo_ro")

        with pytest.raises(InvalidPriority):
            outcome_engine.set_lo_priority(hierarchy.lo2, hierarchy.ro1, "critical")

        assert outcome_engine.get_mapping(hierarchy.ro1, "lo_ro") == before

    def test_weights_reported_after_update(self, outcome_engine, hierarchy):
        result = outcome_engine.set_ac_priority(hierarchy.ac2, hierarchy.lo1, "HIGH")

        assert {e.child_id: e.weight for e in result.edges} == {
            hierarchy.ac1: pytest.approx(0.5),
            hierarchy.ac2: pytest.approx(0.5),
        }
        assert all(e.priority == PriorityTag.HIGH for e in result.edges)

    def test_cross_scope_edge_rejected(self, outcome_engine, hierarchy, other_scope):
        foreign = outcome_engine.create_assessment_criterion(other_scope, "Hypothesis", 10).node

        with pytest.raises(ScopeMismatch):
            outcome_engine.set_ac_priority(foreign.id, hierarchy.lo1, "high")

        assert len(outcome_engine.get_mapping(hierarchy.lo1, "ac_lo")) == 2

    def test_cross_scope_parent_on_create_rejected(self, outcome_engine, hierarchy, other_scope):
        with pytest.raises(ScopeMismatch):
            outcome_engine.create_learning_outcome(other_scope, "Evaluate", {hierarchy.ro1: "low"})

        assert outcome_engine.list_nodes("lo", other_scope) == []

    def test_delete_mapping_recomputes_parent(self, outcome_engine, hierarchy):
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 8)
        outcome_engine.set_ac_score("s1", hierarchy.ac2, 10)

        result = outcome_engine.delete_mapping(hierarchy.ac2, hierarchy.lo1, "ac_lo")

        assert [e.child_id for e in result.edges] == [hierarchy.ac1]
        assert result.edges[0].weight == pytest.approx(1.0)
        assert _score(outcome_engine, "s1", hierarchy.lo1, "lo") == pytest.approx(0.8)

    def test_delete_missing_mapping(self, outcome_engine, hierarchy):
        with pytest.raises(MappingNotFound):
            outcome_engine.delete_mapping(hierarchy.ac3, hierarchy.lo1, "ac_lo")

    def test_recompute_rejects_ac(self, outcome_engine, hierarchy):
        with pytest.raises(ValueError):
            outcome_engine.recompute(hierarchy.ac1, "ac")


class TestNodes:
    def test_duplicate_name_in_scope(self, outcome_engine, hierarchy, scope, other_scope):
        with pytest.raises(DuplicateNode):
            outcome_engine.create_assessment_criterion(scope, "Hypothesis", 10)

        # same name in another class is fine
        outcome_engine.create_assessment_criterion(other_scope, "Hypothesis", 10)

    def test_list_nodes_in_scope(self, outcome_engine, hierarchy, scope):
        names = [n.name for n in outcome_engine.list_nodes(Level.AC, scope)]

        assert sorted(names) == ["Graph", "Hypothesis", "Method"]

    def test_update_assessment_criterion(self, outcome_engine, hierarchy):
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 8)

        node = outcome_engine.update_assessment_criterion(hierarchy.ac1, name="Prediction", max_marks=20)

        assert node.name == "Prediction"
        assert node.max_marks == 20
        # stored ratios are left alone
        assert _score(outcome_engine, "s1", hierarchy.ac1, "ac") == pytest.approx(0.8)
        outcome_engine.set_ac_score("s2", hierarchy.ac1, 10)
        assert _score(outcome_engine, "s2", hierarchy.ac1, "ac") == pytest.approx(0.5)

    def test_rename_to_existing_name(self, outcome_engine, hierarchy):
        with pytest.raises(DuplicateNode):
            outcome_engine.update_assessment_criterion(hierarchy.ac1, name="Method")

    def test_update_lo_replaces_ro_mappings(self, outcome_engine, hierarchy, scope):
        ro2 = outcome_engine.create_report_outcome(scope, "Communication")
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 8)
        outcome_engine.set_ac_score("s1", hierarchy.ac3, 6)

        result = outcome_engine.update_learning_outcome(
            hierarchy.lo1, name="Plan fair tests", ro_priorities={ro2.id: "medium"}
        )

        assert result.node.name == "Plan fair tests"
        assert result.cascade.recomputed_lo_ids == []
        assert result.cascade.recomputed_ro_ids == [hierarchy.ro1, ro2.id]
        assert [e.child_id for e in outcome_engine.get_mapping(hierarchy.ro1, "lo_ro")] == [hierarchy.lo2]
        assert _score(outcome_engine, "s1", hierarchy.ro1, "ro") == pytest.approx(0.6)
        assert _score(outcome_engine, "s1", ro2.id, "ro") == pytest.approx(0.5)

    def test_ro_losing_its_last_lo_keeps_stale_score(self, outcome_engine, hierarchy, scope):
        ro2 = outcome_engine.create_report_outcome(scope, "Communication")
        outcome_engine.set_lo_priority(hierarchy.lo1, ro2.id, "high")
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 8)
        assert _score(outcome_engine, "s1", ro2.id, "ro") == pytest.approx(0.5)

        result = outcome_engine.update_learning_outcome(hierarchy.lo1, ro_priorities={hierarchy.ro1: "high"})

        statuses = {r.node_id: r.status for r in result.cascade.report_outcomes}
        assert statuses[ro2.id] == RecomputeStatus.NO_SIBLINGS
        assert outcome_engine.get_mapping(ro2.id, "lo_ro") == []
        assert _score(outcome_engine, "s1", ro2.id, "ro") == pytest.approx(0.5)

    def test_update_lo_without_mappings_keeps_edges(self, outcome_engine, hierarchy):
        result = outcome_engine.update_learning_outcome(hierarchy.lo2, name="Analyse data")

        assert result.node.name == "Analyse data"
        assert result.cascade.recomputed_ro_ids == []
        assert len(outcome_engine.get_mapping(hierarchy.ro1, "lo_ro")) == 2

    def test_update_lo_rejects_bad_input_before_writing(self, outcome_engine, hierarchy, other_scope):
        foreign = outcome_engine.create_report_outcome(other_scope, "Scientific Enquiry")
        before = outcome_engine.get_mapping(hierarchy.ro1, "lo_ro")

        with pytest.raises(DuplicateNode):
            outcome_engine.update_learning_outcome(hierarchy.lo1, name="Analyse results")
        with pytest.raises(InvalidPriority):
            outcome_engine.update_learning_outcome(hierarchy.lo1, ro_priorities={hierarchy.ro1: "top"})
        with pytest.raises(ScopeMismatch):
            outcome_engine.update_learning_outcome(hierarchy.lo1, ro_priorities={foreign.id: "high"})

        assert outcome_engine.get_mapping(hierarchy.ro1, "lo_ro") == before
        assert outcome_engine.get_node("lo", hierarchy.lo1).name == "Plan investigations"

    def test_update_report_outcome(self, outcome_engine, hierarchy, scope):
        outcome_engine.create_report_outcome(scope, "Communication")

        node = outcome_engine.update_report_outcome(hierarchy.ro1, "Working Scientifically")

        assert node.name == "Working Scientifically"
        with pytest.raises(DuplicateNode):
            outcome_engine.update_report_outcome(hierarchy.ro1, "Communication")
        with pytest.raises(ValueError):
            outcome_engine.update_report_outcome(hierarchy.ro1, "  ")

    def test_delete_ac_recomputes_lo(self, outcome_engine, hierarchy):
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 8)
        outcome_engine.set_ac_score("s1", hierarchy.ac2, 10)

        report = outcome_engine.delete_node("ac", hierarchy.ac1)

        assert report.recomputed_lo_ids == [hierarchy.lo1]
        assert report.recomputed_ro_ids == [hierarchy.ro1]
        assert _score(outcome_engine, "s1", hierarchy.lo1, "lo") == pytest.approx(0.5)
        with pytest.raises(ScoreNotFound):
            outcome_engine.get_score("s1", hierarchy.ac1, "ac")
        with pytest.raises(NodeNotFound):
            outcome_engine.get_node("ac", hierarchy.ac1)

    def test_delete_lo_recomputes_ro(self, outcome_engine, hierarchy):
        outcome_engine.set_lo_score("s1", hierarchy.lo2, 0.6)
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 8)

        report = outcome_engine.delete_node("lo", hierarchy.lo1)

        assert report.recomputed_ro_ids == [hierarchy.ro1]
        assert _score(outcome_engine, "s1", hierarchy.ro1, "ro") == pytest.approx(0.6)
        with pytest.raises(NodeNotFound):
            outcome_engine.get_mapping(hierarchy.lo1, "ac_lo")


class TestReports:
    def test_student_scores(self, outcome_engine, hierarchy):
        outcome_engine.set_ac_score("s1", hierarchy.ac1, 8)
        outcome_engine.set_ac_score("s1", hierarchy.ac3, 6)

        summary = outcome_engine.student_scores("s1", "ac")
        single = outcome_engine.student_scores("s1", "ac", node_id=hierarchy.ac1)
        empty = outcome_engine.student_scores("nobody", "ac")

        assert summary.average_score == pytest.approx(0.7)
        assert single.average_score == pytest.approx(0.8)
        assert empty.scores == []
        assert empty.average_score is None

    def test_class_averages(self, outcome_engine, hierarchy, scope):
        outcome_engine.set_ac_scores(
            hierarchy.ac1,
            [{"student_id": "s1", "obtained_marks": 8}, {"student_id": "s2", "obtained_marks": 6}],
        )

        everyone = outcome_engine.class_averages(scope, "ac")
        section = outcome_engine.class_averages(scope, "ac", student_ids=["s1"])

        assert [(a.node_id, a.students_counted) for a in everyone] == [(hierarchy.ac1, 2)]
        assert everyone[0].average_score == pytest.approx(0.7)
        assert section[0].average_score == pytest.approx(0.8)


class TestRetries:
    def _flaky_run(self, monkeypatch, failures):
        calls = {"count": 0}
        original = CascadeCoordinator.run

        def run(coordinator, events):
            calls["count"] += 1
            if calls["count"] <= failures:
                raise OperationalError("UPDATE outcome_scores", {}, Exception("database is locked"))
            return original(coordinator, events)

        monkeypatch.setattr(CascadeCoordinator, "run", run)
        return calls

    def test_conflict_is_retried(self, session_factory, hierarchy, monkeypatch):
        calls = self._flaky_run(monkeypatch, failures=1)
        engine = OutcomeEngine(session_factory, max_retries=1)

        result = engine.set_ac_score("s1", hierarchy.ac1, 8)

        assert calls["count"] == 2
        assert result.cascade.recomputed_lo_ids == [hierarchy.lo1]
        assert _score(engine, "s1", hierarchy.lo1, "lo") == pytest.approx(0.5)

    def test_conflict_surfaces_when_retries_run_out(self, outcome_engine, hierarchy, monkeypatch):
        self._flaky_run(monkeypatch, failures=1)

        with pytest.raises(TransactionConflict):
            outcome_engine.set_ac_score("s1", hierarchy.ac1, 8)

        with pytest.raises(ScoreNotFound):
            outcome_engine.get_score("s1", hierarchy.ac1, "ac")

    def test_broken_store_is_not_retried(self, session_factory, hierarchy, monkeypatch):
        calls = {"count": 0}

        def run(coordinator, events):
            calls["count"] += 1
            raise OperationalError("SELECT", {}, Exception("no such table: outcome_scores"))

        monkeypatch.setattr(CascadeCoordinator, "run", run)
        engine = OutcomeEngine(session_factory, max_retries=2)

        with pytest.raises(OperationalError):
            engine.set_ac_score("s1", hierarchy.ac1, 8)

        assert calls["count"] == 1


class FakeDriverError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


@pytest.mark.parametrize(
    "orig, conflict",
    [
        (FakeDriverError("could not serialize access", "40001"), True),
        (FakeDriverError("deadlock detected", "40P01"), True),
        (FakeDriverError("duplicate key value", "23505"), True),
        (FakeDriverError("server closed the connection", "08006"), False),
        (FakeDriverError("null value in column", "23502"), False),
        (FakeDriverError("database is locked"), True),
        (FakeDriverError("UNIQUE constraint failed: outcome_scores.level"), True),
        (FakeDriverError("no such table: outcome_scores"), False),
    ],
)
def test_write_conflict_classification(orig, conflict):
    assert is_write_conflict(OperationalError("UPDATE", {}, orig)) is conflict


def test_production_engine_is_serializable():
    import db

    assert db.ISOLATION_LEVEL == "SERIALIZABLE"
    with db.engine.connect() as conn:
        assert conn.get_isolation_level() == "SERIALIZABLE"
