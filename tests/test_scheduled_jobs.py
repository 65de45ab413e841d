"""
Tests - Scheduled jobs + SchedulerService + CLI.

Covers:
    1. Job registry
    2. workflow_reconcile_all / workflow_integrity_check / workflow_alert_overdue_scan
    3. SchedulerService.run_job run history, disabled jobs, unknown jobs
    4. Scheduler API
    5. Flask CLI commands

SchedulerService.run_job pushes its own app context (and therefore its own
DB session): state is committed before the call and the outer session is
expired afterwards.
"""

from datetime import datetime, timedelta, timezone

from workflow_engine.models import db
from workflow_engine.models.catalog import WorkflowLineItem
from workflow_engine.models.notification import Notification
from workflow_engine.models.scheduling import ScheduledJob
from workflow_engine.models.workflow import ProjectWorkflowTracker, WorkflowAlert
from workflow_engine.services import alert_manager
from workflow_engine.services.scheduled_jobs import (
    check_workflow_integrity,
    reconcile_all_runs,
    scan_overdue_alerts,
)
from workflow_engine.services.scheduler_service import SchedulerService, get_registered_jobs

JOB_NAMES = {"workflow_reconcile_all", "workflow_integrity_check", "workflow_alert_overdue_scan"}


def _break_tracker(run_id):
    tracker = ProjectWorkflowTracker.query.filter_by(run_id=run_id).one()
    tracker.current_line_item_id = None
    db.session.commit()


class TestJobRegistry:

    def test_all_jobs_registered(self):
        assert JOB_NAMES <= set(get_registered_jobs())

    def test_ensure_jobs_registered_creates_records(self):
        SchedulerService.ensure_jobs_registered()
        db.session.expire_all()
        jobs = {j.job_name: j for j in ScheduledJob.query.all()}
        assert JOB_NAMES <= set(jobs)
        assert jobs["workflow_integrity_check"].schedule_config["minute"] == "15"


class TestWorkflowJobs:

    def test_reconcile_job_repairs(self, app, mini_run):
        _break_tracker(mini_run.id)
        result = reconcile_all_runs(app)
        assert result["runs"] == 1
        assert result["changed"] == 1
        tracker = ProjectWorkflowTracker.query.filter_by(run_id=mini_run.id).one()
        assert tracker.current_line_item_id is not None

    def test_integrity_job_notifies_without_repair(self, app, mini_run):
        _break_tracker(mini_run.id)
        result = check_workflow_integrity(app)
        assert result["violations"] >= 1
        assert "null_pointer_on_active_project" in result["codes"]
        assert result["notifications_created"] == 1

        notif = Notification.query.filter_by(event_type="integrity.violation").one()
        assert notif.recipient_id is None
        assert notif.category == "system"
        tracker = ProjectWorkflowTracker.query.filter_by(run_id=mini_run.id).one()
        assert tracker.current_line_item_id is None

    def test_integrity_job_quiet_when_clean(self, app, mini_run):
        result = check_workflow_integrity(app)
        assert result["violations"] == 0
        assert Notification.query.filter_by(event_type="integrity.violation").count() == 0

    def test_overdue_scan_job(self, app, mini_run):
        alert = WorkflowAlert.query.filter_by(run_id=mini_run.id, status="ACTIVE").one()
        alert.due_date = datetime.now(timezone.utc) - timedelta(hours=1)
        db.session.commit()

        assert scan_overdue_alerts(app)["notifications_created"] == 1
        assert scan_overdue_alerts(app)["notifications_created"] == 0

    def test_overdue_scan_job_refreshes_cached_alert_lists(self, app, mini_run, project):
        assert [a["priority"] for a in alert_manager.alerts_for_project(project.id)] == ["MEDIUM"]
        alert = WorkflowAlert.query.filter_by(run_id=mini_run.id, status="ACTIVE").one()
        alert.due_date = datetime.now(timezone.utc) - timedelta(days=1)
        db.session.commit()

        assert scan_overdue_alerts(app)["escalated"] == 1
        assert [a["priority"] for a in alert_manager.alerts_for_project(project.id)] == ["HIGH"]


class TestSchedulerService:

    def test_run_job_records_history(self, mini_run):
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job("workflow_integrity_check")
        assert result["status"] == "success"
        assert result["result"]["violations"] == 0

        db.session.expire_all()
        job = ScheduledJob.query.filter_by(job_name="workflow_integrity_check").one()
        assert job.run_count == 1
        assert job.last_run_status == "success"

    def test_disabled_job_skipped(self):
        SchedulerService.ensure_jobs_registered()
        db.session.expire_all()
        SchedulerService.toggle_job("workflow_reconcile_all", False)

        result = SchedulerService.run_job("workflow_reconcile_all")
        assert result["status"] == "skipped"

    def test_unknown_job(self):
        result = SchedulerService.run_job("nope")
        assert result["status"] == "error"


class TestSchedulerAPI:

    def test_list_jobs(self, client):
        res = client.get("/api/v1/scheduler/jobs")
        assert res.status_code == 200
        assert JOB_NAMES <= {j["job_name"] for j in res.get_json()["items"]}

    def test_run_unknown_job_404(self, client):
        assert client.post("/api/v1/scheduler/jobs/nope/run").status_code == 404

    def test_toggle_requires_bool(self, client):
        res = client.patch("/api/v1/scheduler/jobs/workflow_reconcile_all", json={"is_enabled": "no"})
        assert res.status_code == 400

    def test_toggle_job(self, client):
        res = client.patch("/api/v1/scheduler/jobs/workflow_reconcile_all", json={"is_enabled": False})
        assert res.status_code == 200
        assert res.get_json()["status"] == "paused"


class TestCLI:

    def test_seed_catalog_command(self, app):
        result = app.test_cli_runner().invoke(args=["seed-catalog"])
        assert result.exit_code == 0
        assert WorkflowLineItem.query.count() > 0

    def test_reconcile_all_command(self, app, mini_run):
        result = app.test_cli_runner().invoke(args=["reconcile-all"])
        assert result.exit_code == 0
        assert "runs=1" in result.output
