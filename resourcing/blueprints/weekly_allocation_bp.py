"""
Weekly Allocation Blueprint.

Routes:
  POST   /weekly-allocations                    – submit / update a week's plan (owning consultant)
  GET    /weekly-allocations/pending            – PENDING weeks, scoped to the actor
  POST   /weekly-allocations/<id>/decision      – approve / modify / reject one week (Growth Team)
  POST   /weekly-allocations/batch-decision     – decide many weeks atomically (Growth Team)
"""

from flask import Blueprint, jsonify

from resourcing.auth import require_actor, require_role
from resourcing.blueprints import current_actor, int_arg, json_body
from resourcing.core.exceptions import ValidationError
from resourcing.models.user import UserRole
from resourcing.services import weekly_allocation_service as svc

weekly_allocation_bp = Blueprint("weekly_allocation_bp", __name__, url_prefix="/api/v1")


@weekly_allocation_bp.route("/weekly-allocations", methods=["POST"])
@require_actor
def submit_week():
    """Body: { phase_allocation_id, week_start_date, proposed_hours }"""
    data = json_body()
    if not isinstance(data.get("phase_allocation_id"), int):
        raise ValidationError("phase_allocation_id is required",
                              details={"phase_allocation_id": "required"})
    week = svc.submit(
        current_actor(),
        phase_allocation_id=data["phase_allocation_id"],
        week_start=data.get("week_start_date"),
        proposed_hours=data.get("proposed_hours"),
    )
    return jsonify(week.to_dict()), 201


@weekly_allocation_bp.route("/weekly-allocations/pending", methods=["GET"])
@require_actor
def list_pending():
    weeks = svc.list_pending(current_actor(), phase_allocation_id=int_arg("phase_allocation_id"))
    return jsonify({"items": [w.to_dict() for w in weeks], "total": len(weeks)})


@weekly_allocation_bp.route("/weekly-allocations/<int:weekly_id>/decision", methods=["POST"])
@require_role(UserRole.GROWTH_TEAM)
def decide_week(weekly_id):
    """Body: { action: approve|modify|reject, approved_hours?, rejection_reason? }"""
    data = json_body()
    result = svc.decide(
        weekly_id,
        current_actor(),
        data.get("action"),
        approved_hours=data.get("approved_hours"),
        rejection_reason=data.get("rejection_reason"),
    )
    return jsonify(result)


@weekly_allocation_bp.route("/weekly-allocations/batch-decision", methods=["POST"])
@require_role(UserRole.GROWTH_TEAM)
def batch_decide():
    """Body: { items: [{id, action?, approved_hours?, rejection_reason?}], default_action: approve|reject }"""
    data = json_body()
    result = svc.batch_decide(data.get("items"), data.get("default_action", "approve"), current_actor())
    return jsonify(result)
