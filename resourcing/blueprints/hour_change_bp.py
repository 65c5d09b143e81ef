"""
Hour Change Blueprint.

Routes:
  POST   /hour-changes                  – request an adjustment or shift
  GET    /hour-changes/pending          – PENDING requests, scoped to the actor
  GET    /hour-changes/overdue          – requests pending beyond the approval SLA (Growth Team)
  POST   /hour-changes/<id>/decision    – approve / reject (Growth Team)
"""

from flask import Blueprint, jsonify

from resourcing.auth import require_actor, require_role
from resourcing.blueprints import current_actor, int_arg, json_body
from resourcing.core.exceptions import ValidationError
from resourcing.models.user import UserRole
from resourcing.services import hour_change_service as svc

hour_change_bp = Blueprint("hour_change_bp", __name__, url_prefix="/api/v1")


@hour_change_bp.route("/hour-changes", methods=["POST"])
@require_actor
def create_request():
    """Body: { phase_allocation_id, change_type, reason, request_type?, requested_hours?,
    from_consultant_id?, to_consultant_id?, shift_hours? }"""
    data = json_body()
    if not isinstance(data.get("phase_allocation_id"), int):
        raise ValidationError("phase_allocation_id is required",
                              details={"phase_allocation_id": "required"})
    req = svc.create_request(
        current_actor(),
        phase_allocation_id=data["phase_allocation_id"],
        change_type=data.get("change_type"),
        reason=data.get("reason"),
        request_type=data.get("request_type"),
        requested_hours=data.get("requested_hours"),
        from_consultant_id=data.get("from_consultant_id"),
        to_consultant_id=data.get("to_consultant_id"),
        shift_hours=data.get("shift_hours"),
    )
    return jsonify(req.to_dict()), 201


@hour_change_bp.route("/hour-changes/pending", methods=["GET"])
@require_actor
def list_pending():
    requests = svc.list_pending(current_actor())
    return jsonify({"items": [r.to_dict() for r in requests], "total": len(requests)})


@hour_change_bp.route("/hour-changes/overdue", methods=["GET"])
@require_role(UserRole.GROWTH_TEAM)
def list_overdue():
    overdue = svc.list_overdue(threshold_hours=int_arg("hours"))
    return jsonify({"items": overdue, "total": len(overdue)})


@hour_change_bp.route("/hour-changes/<int:request_id>/decision", methods=["POST"])
@require_role(UserRole.GROWTH_TEAM)
def decide_request(request_id):
    """Body: { action: approve|reject, rejection_reason? }"""
    data = json_body()
    req, effect = svc.decide(request_id, current_actor(), data.get("action"),
                             rejection_reason=data.get("rejection_reason"))
    return jsonify({"request": req.to_dict(), "effect": effect})
