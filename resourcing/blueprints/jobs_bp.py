"""
Scheduler Blueprint.

Routes:
  POST   /cron/detect-expired-allocations   – external scheduler hook (Bearer CRON_SECRET)
  GET    /jobs                              – registered jobs with last-run status (Growth Team)
  POST   /jobs/<name>/run                   – run a job now (Growth Team)
  PATCH  /jobs/<name>                       – enable / disable a job (Growth Team)
"""

from flask import Blueprint, jsonify

from resourcing.auth import require_cron_secret, require_role
from resourcing.blueprints import json_body
from resourcing.core.exceptions import NotFoundError, ValidationError
from resourcing.models.user import UserRole
from resourcing.services.scheduler_service import SchedulerService, get_registered_jobs

jobs_bp = Blueprint("jobs_bp", __name__, url_prefix="/api/v1")


def _run(job_name):
    if job_name not in get_registered_jobs():
        raise NotFoundError("ScheduledJob", resource_id=job_name)
    result = SchedulerService.run_job(job_name)
    status = 500 if result["status"] == "failed" else 200
    return jsonify(result), status


@jobs_bp.route("/cron/detect-expired-allocations", methods=["POST"])
@require_cron_secret
def cron_detect_expired():
    return _run("expired_allocation_detector")


@jobs_bp.route("/jobs", methods=["GET"])
@require_role(UserRole.GROWTH_TEAM)
def list_jobs():
    return jsonify({"items": SchedulerService.list_jobs()})


@jobs_bp.route("/jobs/<job_name>/run", methods=["POST"])
@require_role(UserRole.GROWTH_TEAM)
def run_job(job_name):
    return _run(job_name)


@jobs_bp.route("/jobs/<job_name>", methods=["PATCH"])
@require_role(UserRole.GROWTH_TEAM)
def toggle_job(job_name):
    """Body: { is_enabled: bool }"""
    data = json_body()
    if not isinstance(data.get("is_enabled"), bool):
        raise ValidationError("is_enabled must be a boolean", details={"is_enabled": "required"})
    SchedulerService.ensure_jobs_registered()
    record = SchedulerService.toggle_job(job_name, data["is_enabled"])
    if record is None:
        raise NotFoundError("ScheduledJob", resource_id=job_name)
    return jsonify(record)
