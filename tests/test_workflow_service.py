"""
Tests - Workflow service: initialization, advancement, reset, reconcile.

Covers:
    1. initialize_workflow (tracker at first item, first alert, idempotence)
    2. The LEAD/PROSPECT walk-through incl. out-of-order completion
    3. Idempotent completion + invariant preservation after every step
    4. Phase gating (incomplete items / readiness)
    5. Reconcile convergence and no-op second pass
    6. Administrative reset followed by reconcile
    7. Optimistic-lock retries, exhausted retries, store outages
    8. Multiple runs per project
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from workflow_engine.core.exceptions import (
    ConcurrentModificationError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)
from workflow_engine.models import db
from workflow_engine.models.audit import AuditLog
from workflow_engine.models.workflow import (
    OPEN_ALERT_STATUSES,
    ProjectWorkflowTracker,
    WorkflowAlert,
    WorkflowRun,
)
from workflow_engine.services import completion_ledger as ledger
from workflow_engine.services import workflow_service as svc


def _open_alerts(run_id):
    return (
        WorkflowAlert.query
        .filter(WorkflowAlert.run_id == run_id, WorkflowAlert.status.in_(OPEN_ALERT_STATUSES))
        .order_by(WorkflowAlert.id)
        .all()
    )


def _items(catalog):
    return [li.id for li in catalog.ordered_line_items]


def _tracker(run_id):
    return ProjectWorkflowTracker.query.filter_by(run_id=run_id).one()


# ═══════════════════════════════════════════════════════════════════════════
#  Initialization
# ═══════════════════════════════════════════════════════════════════════════


class TestInitializeWorkflow:

    def test_creates_tracker_at_first_item(self, project, roofing, users):
        result = svc.initialize_workflow(project.id, "ROOFING", actor="test")
        assert result["created"] is True
        first = roofing.ordered_line_items[0]
        assert result["position"]["line_item_id"] == first.id
        assert result["position"]["phase_type"] == "LEAD"

        tracker = _tracker(result["run"]["id"])
        assert tracker.pointer() == (first.phase_id, first.section_id, first.id)
        assert tracker.is_complete is False
        assert tracker.version == 1

    def test_first_alert_goes_to_role_holder(self, run, roofing, users):
        alerts = _open_alerts(run.id)
        assert len(alerts) == 1
        assert alerts[0].line_item_id == roofing.ordered_line_items[0].id
        assert alerts[0].responsible_role == "OFFICE"
        assert alerts[0].assigned_to == users["office"].id
        assert alerts[0].title.endswith("Smith Residence Re-roof")

    def test_is_idempotent(self, run, project):
        again = svc.initialize_workflow(project.id, "ROOFING")
        assert again["created"] is False
        assert again["run"]["id"] == run.id
        assert WorkflowRun.query.count() == 1
        assert len(_open_alerts(run.id)) == 1

    def test_audited(self, run):
        assert AuditLog.query.filter_by(action="workflow.initialize", entity_id=str(run.id)).count() == 1

    def test_default_kind(self, project, roofing):
        assert svc.initialize_workflow(project.id)["run"]["workflow_kind"] == "ROOFING"

    def test_unknown_kind_404(self, project, roofing):
        with pytest.raises(NotFoundError):
            svc.initialize_workflow(project.id, "PLUMBING")

    def test_unknown_project_404(self, roofing):
        with pytest.raises(NotFoundError):
            svc.initialize_workflow(9999, "ROOFING")


# ═══════════════════════════════════════════════════════════════════════════
#  Advancement
# ═══════════════════════════════════════════════════════════════════════════


class TestExampleWalkthrough:
    """LEAD {A: item1, item2}, PROSPECT {B: item3}."""

    def test_complete_item1_moves_to_item2(self, mini_run, mini, project, users):
        i1, i2, _i3 = _items(mini)
        result = svc.complete_line_item(project.id, i1, users["office"].id)

        assert result["already_completed"] is False
        assert result["previous_position"]["line_item_id"] == i1
        assert result["position"]["line_item_id"] == i2
        assert _tracker(mini_run.id).last_completed_item_id == i1

        alerts = _open_alerts(mini_run.id)
        assert [a.line_item_id for a in alerts] == [i2]
        assert alerts[0].assigned_to == users["pm"].id
        assert alerts[0].due_date - alerts[0].created_at == timedelta(days=2)
        resolved = WorkflowAlert.query.filter_by(line_item_id=i1).one()
        assert resolved.status == "RESOLVED"
        assert resolved.resolved_at is not None

    def test_out_of_order_completion_keeps_gap(self, mini_run, mini, project, users):
        i1, i2, i3 = _items(mini)
        svc.complete_line_item(project.id, i1, users["office"].id)
        result = svc.complete_line_item(project.id, i3, users["admin"].id)

        assert result["already_completed"] is False
        assert result["position"]["line_item_id"] == i2
        assert ledger.completed_set(mini_run.id) == {i1, i3}
        assert [a.line_item_id for a in _open_alerts(mini_run.id)] == [i2]
        assert WorkflowAlert.query.filter_by(line_item_id=i3).count() == 0

    def test_closing_the_gap_completes_the_run(self, mini_run, mini, project, users):
        i1, i2, i3 = _items(mini)
        svc.complete_line_item(project.id, i1, users["office"].id)
        svc.complete_line_item(project.id, i3, users["admin"].id)
        result = svc.complete_line_item(project.id, i2, users["pm"].id)

        assert result["is_complete"] is True
        assert result["position"]["is_complete"] is True
        tracker = _tracker(mini_run.id)
        assert tracker.is_complete is True
        assert tracker.pointer() == (None, None, None)
        assert _open_alerts(mini_run.id) == []

    def test_invariants_hold_after_every_step(self, mini_run, mini, project, users):
        for item_id in reversed(_items(mini)):
            svc.complete_line_item(project.id, item_id, users["office"].id)
            assert svc.check_integrity()["ok"] is True
            assert len(_open_alerts(mini_run.id)) <= 1


class TestIdempotentCompletion:

    def test_second_completion_is_flagged(self, mini_run, mini, project, users):
        i1 = _items(mini)[0]
        first = svc.complete_line_item(project.id, i1, users["office"].id, notes="done")
        second = svc.complete_line_item(project.id, i1, users["pm"].id, notes="again")

        assert second["already_completed"] is True
        assert second["position"] == first["position"]
        assert second["completion"]["completed_by"] == users["office"].id
        assert second["completion"]["completed_at"] == first["completion"]["completed_at"]
        assert ledger.count(mini_run.id) == 1
        assert len(_open_alerts(mini_run.id)) == 1

    def test_replay_repairs_drifted_tracker(self, mini_run, mini, project, users):
        i1, i2, _i3 = _items(mini)
        svc.complete_line_item(project.id, i1, users["office"].id)
        tracker = _tracker(mini_run.id)
        tracker.current_line_item_id = i1
        db.session.commit()

        result = svc.complete_line_item(project.id, i1, users["office"].id)
        assert result["already_completed"] is True
        assert result["position"]["line_item_id"] == i2
        assert _tracker(mini_run.id).current_line_item_id == i2

    def test_completion_retires_alert_off_the_new_position(self, mini_run, mini, project, users):
        i1, i2, i3 = _items(mini)
        db.session.add(WorkflowAlert(
            run_id=mini_run.id,
            project_id=project.id,
            line_item_id=i3,
            responsible_role="ADMINISTRATION",
            assigned_to=users["admin"].id,
            status="ACTIVE",
            title="Left over from an earlier failure",
            due_date=datetime.now(timezone.utc) + timedelta(days=1),
        ))
        db.session.commit()

        svc.complete_line_item(project.id, i1, users["office"].id)

        assert [a.line_item_id for a in _open_alerts(mini_run.id)] == [i2]
        assert WorkflowAlert.query.filter_by(line_item_id=i3).one().status == "RESOLVED"

    def test_unknown_line_item_404(self, mini_run, project, users):
        with pytest.raises(NotFoundError):
            svc.complete_line_item(project.id, 9999, users["office"].id)

    def test_unknown_user_404(self, mini_run, mini, project):
        with pytest.raises(NotFoundError):
            svc.complete_line_item(project.id, _items(mini)[0], 9999)
        assert ledger.count(mini_run.id) == 0

    def test_project_without_run_404(self, project, users):
        with pytest.raises(NotFoundError):
            svc.complete_line_item(project.id, 1, users["office"].id)


# ═══════════════════════════════════════════════════════════════════════════
#  Phase gating
# ═══════════════════════════════════════════════════════════════════════════


class TestPhaseGating:

    def test_incomplete_items_in_order(self, run, roofing, project, users):
        lead = roofing.items_in_phase("LEAD")
        svc.complete_line_item(project.id, lead[0].id, users["office"].id)
        items = svc.get_incomplete_items(project.id, "LEAD")
        assert [i["id"] for i in items] == [li.id for li in lead[1:]]

    def test_readiness_reports_first_blocker(self, run, roofing, project):
        lead = roofing.items_in_phase("LEAD")
        out = svc.can_advance_phase(project.id, "LEAD")
        assert out["ready"] is False
        assert out["blocker"]["id"] == lead[0].id
        assert out["remaining"] == len(lead)

    def test_phase_ready_after_all_items(self, run, roofing, project, users):
        for li in roofing.items_in_phase("LEAD"):
            svc.complete_line_item(project.id, li.id, users["office"].id)
        assert svc.can_advance_phase(project.id, "LEAD")["ready"] is True
        pos = svc.get_current_position(project.id)
        assert pos["phase_type"] == "PROSPECT"

    def test_unknown_phase_type_rejected(self, run, project):
        with pytest.raises(ValidationError):
            svc.get_incomplete_items(project.id, "DEMOLITION")

    def test_phase_missing_from_catalog_404(self, mini_run, project):
        with pytest.raises(NotFoundError):
            svc.get_incomplete_items(project.id, "COMPLETION")


# ═══════════════════════════════════════════════════════════════════════════
#  Reconcile
# ═══════════════════════════════════════════════════════════════════════════


class TestReconcile:

    def test_converged_run_is_noop(self, mini_run, project):
        result = svc.reconcile(project.id)
        assert result["changed"] is False
        assert result["corrections"] == []
        assert AuditLog.query.filter_by(action="workflow.reconcile").count() == 0

    def test_drifted_pointer_is_overwritten(self, mini_run, mini, project):
        i1, _i2, i3 = _items(mini)
        item3 = mini.line_item(i3)
        tracker = _tracker(mini_run.id)
        tracker.current_phase_id = item3.phase_id
        tracker.current_section_id = item3.section_id
        tracker.current_line_item_id = item3.id
        db.session.commit()
        assert svc.check_integrity()["ok"] is False

        result = svc.reconcile(project.id, actor="ops")
        assert result["changed"] is True
        fields = {c["field"] for c in result["corrections"] if c["type"] == "tracker_field"}
        assert fields == {"current_phase_id", "current_section_id", "current_line_item_id"}
        assert _tracker(mini_run.id).current_line_item_id == i1
        assert svc.check_integrity()["ok"] is True

        assert svc.reconcile(project.id)["changed"] is False

    def test_missing_tracker_is_rebuilt(self, mini_run, mini, project, users):
        i1, i2, _i3 = _items(mini)
        svc.complete_line_item(project.id, i1, users["office"].id)
        db.session.delete(_tracker(mini_run.id))
        db.session.commit()

        result = svc.reconcile(project.id)
        assert {"type": "missing_tracker"} in result["corrections"]
        tracker = _tracker(mini_run.id)
        assert tracker.current_line_item_id == i2
        assert tracker.last_completed_item_id == i1

    def test_alert_set_converges(self, mini_run, mini, project, users):
        i1, i2, _i3 = _items(mini)
        for alert in _open_alerts(mini_run.id):
            alert.resolve()
        db.session.add(WorkflowAlert(
            run_id=mini_run.id, project_id=project.id, line_item_id=i2,
            responsible_role="PROJECT_MANAGER", assigned_to=users["pm"].id,
            status="ACTIVE", title="stray", due_date=mini_run.created_at,
        ))
        db.session.commit()

        result = svc.reconcile(project.id)
        types = sorted(c["type"] for c in result["corrections"])
        assert types == ["missing_alert", "stale_alert"]
        assert [a.line_item_id for a in _open_alerts(mini_run.id)] == [i1]
        assert svc.reconcile(project.id)["changed"] is False

    def test_reconcile_all_summary(self, mini_run, run, mini, project):
        tracker = _tracker(mini_run.id)
        tracker.current_line_item_id = None
        db.session.commit()

        summary = svc.reconcile_all(actor="test")
        assert summary["runs"] == 2
        assert summary["changed"] == 1
        assert summary["unchanged"] == 1
        assert summary["failed"] == 0


# ═══════════════════════════════════════════════════════════════════════════
#  Administrative reset
# ═══════════════════════════════════════════════════════════════════════════


class TestResetLineItem:

    def test_reset_moves_position_back(self, mini_run, mini, project, users):
        i1, i2, i3 = _items(mini)
        svc.complete_line_item(project.id, i1, users["office"].id)
        svc.complete_line_item(project.id, i2, users["pm"].id)
        assert svc.get_current_position(project.id)["line_item_id"] == i3

        result = svc.reset_line_item(project.id, i1, actor="admin")
        assert result["removed"]["line_item_id"] == i1
        assert result["changed"] is True
        assert result["position"]["line_item_id"] == i1
        assert [a.line_item_id for a in _open_alerts(mini_run.id)] == [i1]
        assert svc.check_integrity()["ok"] is True

    def test_reset_uncompleted_item_404(self, mini_run, mini, project):
        with pytest.raises(NotFoundError):
            svc.reset_line_item(project.id, _items(mini)[0])


# ═══════════════════════════════════════════════════════════════════════════
#  Concurrency / store failures
# ═══════════════════════════════════════════════════════════════════════════


class TestRetries:

    def test_lost_version_race_is_retried(self, mini_run, mini, project, users):
        i1, i2, _i3 = _items(mini)
        tracker = mini_run.tracker
        assert tracker.version == 1
        # Another writer bumps the version behind this session's back.
        db.session.execute(
            db.text("UPDATE project_workflow_trackers SET version = version + 1 WHERE id = :id"),
            {"id": tracker.id},
        )

        result = svc.complete_line_item(project.id, i1, users["office"].id)
        assert result["position"]["line_item_id"] == i2
        assert ledger.count(mini_run.id) == 1

    def test_exhausted_retries_leave_position_unchanged(self, monkeypatch, mini_run, mini,
                                                        project, users):
        i1 = _items(mini)[0]
        calls = []

        def _always_stale():
            calls.append(1)
            raise StaleDataError("tracker version changed")

        monkeypatch.setattr(db.session, "commit", _always_stale)
        with pytest.raises(ConcurrentModificationError):
            svc.complete_line_item(project.id, i1, users["office"].id)
        monkeypatch.undo()

        assert len(calls) == 4
        assert ledger.count(mini_run.id) == 0
        assert svc.get_current_position(project.id)["line_item_id"] == i1

    def test_transient_commit_failure_succeeds_on_retry(self, monkeypatch, mini_run, mini,
                                                        project, users):
        i1, i2, _i3 = _items(mini)
        real_commit = db.session.commit
        calls = []

        def _flaky():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("tracker version changed")
            return real_commit()

        monkeypatch.setattr(db.session, "commit", _flaky)
        result = svc.complete_line_item(project.id, i1, users["office"].id)
        monkeypatch.undo()

        assert len(calls) == 2
        assert result["position"]["line_item_id"] == i2
        assert ledger.count(mini_run.id) == 1

    def test_store_outage_surfaces_as_transient(self, monkeypatch, mini_run, mini, project, users):
        i1 = _items(mini)[0]

        def _locked():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db.session, "commit", _locked)
        with pytest.raises(TransientStoreError):
            svc.complete_line_item(project.id, i1, users["office"].id)
        monkeypatch.undo()

        assert ledger.count(mini_run.id) == 0

    def test_run_locks_are_a_fixed_set(self):
        first = svc._run_lock(7)
        assert svc._run_lock(7) is first
        assert svc._run_lock(7 + svc.RUN_LOCK_STRIPES) is first
        for run_id in range(10_000):
            svc._run_lock(run_id)
        assert len(svc._run_locks) == svc.RUN_LOCK_STRIPES


# ═══════════════════════════════════════════════════════════════════════════
#  Multiple runs / queries
# ═══════════════════════════════════════════════════════════════════════════


class TestMultipleRuns:

    def test_kind_required_with_several_runs(self, run, mini_run, project):
        with pytest.raises(ValidationError):
            svc.get_current_position(project.id)

    def test_runs_progress_independently(self, run, mini_run, mini, roofing, project, users):
        i1 = _items(mini)[0]
        svc.complete_line_item(project.id, i1, users["office"].id, workflow_kind="MINI")
        assert svc.get_current_position(project.id, "MINI")["line_item_id"] == _items(mini)[1]
        assert svc.get_current_position(project.id, "ROOFING")["line_item_id"] == _items(roofing)[0]


class TestQueries:

    def test_history_in_completion_order(self, mini_run, mini, project, users):
        i1, _i2, i3 = _items(mini)
        svc.complete_line_item(project.id, i3, users["admin"].id)
        svc.complete_line_item(project.id, i1, users["office"].id)
        history = svc.get_history(project.id)
        assert [h["line_item_id"] for h in history] == [i3, i1]
        assert history[0]["line_item_name"] == "item3"

    def test_status_projection(self, mini_run, mini, project, users):
        svc.complete_line_item(project.id, _items(mini)[0], users["office"].id)
        status = svc.get_workflow_status(project.id)
        assert status["progress"] == {"completed": 1, "total": 3, "percent": 33.3}
        assert [p["phase_type"] for p in status["phases"]] == ["LEAD", "PROSPECT"]
        assert status["phases"][0]["ready"] is False
        assert status["open_alerts"] == 1
        assert status["position"]["line_item_name"] == "item2"

    def test_position_falls_back_to_ledger(self, mini_run, mini, project):
        tracker = _tracker(mini_run.id)
        tracker.current_section_id = None
        db.session.commit()
        assert svc.get_current_position(project.id)["line_item_id"] == _items(mini)[0]
