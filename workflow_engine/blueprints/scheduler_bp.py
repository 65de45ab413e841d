"""
Scheduled job Blueprint.

Endpoints:
    GET    /api/v1/scheduler/jobs
    POST   /api/v1/scheduler/jobs/<job_name>/run
    PATCH  /api/v1/scheduler/jobs/<job_name>        Body: {"is_enabled": bool}
"""

import logging

from flask import Blueprint, jsonify, request

from workflow_engine.services.scheduler_service import SchedulerService, get_registered_jobs
from workflow_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

scheduler_bp = Blueprint("scheduler", __name__, url_prefix="/api/v1/scheduler")


@scheduler_bp.route("/jobs", methods=["GET"])
def list_jobs():
    SchedulerService.ensure_jobs_registered()
    jobs = SchedulerService.list_jobs()
    return jsonify({"items": jobs, "total": len(jobs)}), 200


@scheduler_bp.route("/jobs/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Trigger a job now (cron entry point and manual runs)."""
    if job_name not in get_registered_jobs():
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    SchedulerService.ensure_jobs_registered()
    result = SchedulerService.run_job(job_name)
    status = 200 if result["status"] in ("success", "skipped") else 500
    return jsonify(result), status


@scheduler_bp.route("/jobs/<job_name>", methods=["PATCH"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    if not isinstance(data.get("is_enabled"), bool):
        return api_error(E.VALIDATION_REQUIRED, "Field 'is_enabled' (bool) is required.")
    SchedulerService.ensure_jobs_registered()
    job = SchedulerService.toggle_job(job_name, data["is_enabled"])
    if job is None:
        return api_error(E.NOT_FOUND, f"Unknown job: {job_name}")
    return jsonify(job), 200
