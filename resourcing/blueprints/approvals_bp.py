"""
Approvals Blueprint.

Routes:
  GET    /approvals/summary      – pending counts for the Growth Team dashboard
  GET    /phases/<id>/lock       – whether the acting user may still edit the phase
  GET    /phases/ending-soon     – phases ending within PHASE_END_WARNING_DAYS
"""

from flask import Blueprint, jsonify

from resourcing.auth import require_actor, require_role
from resourcing.blueprints import current_actor, int_arg
from resourcing.models.user import UserRole
from resourcing.services import approvals_service

approvals_bp = Blueprint("approvals_bp", __name__, url_prefix="/api/v1")


@approvals_bp.route("/approvals/summary", methods=["GET"])
@require_role(UserRole.GROWTH_TEAM)
def summary():
    return jsonify(approvals_service.pending_summary())


@approvals_bp.route("/phases/<int:phase_id>/lock", methods=["GET"])
@require_actor
def phase_lock(phase_id):
    return jsonify(approvals_service.phase_lock(phase_id, current_actor()))


@approvals_bp.route("/phases/ending-soon", methods=["GET"])
@require_actor
def ending_soon():
    """Query: days (default PHASE_END_WARNING_DAYS)"""
    return jsonify(approvals_service.phases_ending_soon(days=int_arg("days")))
