"""
Phase Allocation Blueprint.

Routes:
  POST   /phase-allocations                          – propose an allocation (PM / Growth Team)
  GET    /phase-allocations                          – list, scoped to the actor
  GET    /phase-allocations/<id>                     – detail with weeks and ledger
  POST   /phase-allocations/<id>/decision            – approve / modify / reject (Growth Team)
  POST   /phase-allocations/<id>/deletion-request    – ask for removal (PM / Growth Team)
  POST   /phase-allocations/<id>/deletion-decision   – approve / reject removal (Growth Team)
  POST   /phase-allocations/<id>/expire              – expire now (Growth Team)
  PATCH  /phase-allocations/<id>/unplanned           – forfeit / reallocate expired hours (PM)
  POST   /phase-allocations/<id>/merge               – fold an approved child into its parent (Growth Team)
"""

from flask import Blueprint, jsonify, request

from resourcing.auth import require_actor, require_role
from resourcing.blueprints import current_actor, int_arg, json_body
from resourcing.core.exceptions import PermissionDeniedError, ValidationError
from resourcing.models.allocation import AllocationStatus
from resourcing.models.user import UserRole
from resourcing.services import phase_allocation_service as svc
from resourcing.services.helpers.scoped_queries import AllocationScope
from resourcing.services.helpers.validation import parse_enum

phase_allocation_bp = Blueprint("phase_allocation_bp", __name__, url_prefix="/api/v1")


def _detail(alloc):
    d = alloc.to_dict(include_weeks=True)
    d["ledger"] = svc.allocation_ledger(alloc)
    d["unplanned_record"] = alloc.unplanned_record.to_dict() if alloc.unplanned_record else None
    return d


@phase_allocation_bp.route("/phase-allocations", methods=["POST"])
@require_actor
def create_allocation():
    """Body: { consultant_id, phase_id, total_hours }"""
    data = json_body()
    for field in ("consultant_id", "phase_id"):
        if not isinstance(data.get(field), int):
            raise ValidationError(f"{field} is required", details={field: "required"})
    alloc = svc.create_allocation(
        current_actor(),
        consultant_id=data["consultant_id"],
        phase_id=data["phase_id"],
        total_hours=data.get("total_hours"),
    )
    return jsonify(alloc.to_dict()), 201


@phase_allocation_bp.route("/phase-allocations", methods=["GET"])
@require_actor
def list_allocations():
    """Query: status, phase_id, project_id"""
    status = request.args.get("status")
    allocations = svc.list_allocations(
        current_actor(),
        status=parse_enum(AllocationStatus, status, "status") if status else None,
        phase_id=int_arg("phase_id"),
        project_id=int_arg("project_id"),
    )
    return jsonify({"items": [a.to_dict() for a in allocations], "total": len(allocations)})


@phase_allocation_bp.route("/phase-allocations/<int:allocation_id>", methods=["GET"])
@require_actor
def get_allocation(allocation_id):
    alloc = svc.get_allocation(allocation_id)
    if not AllocationScope.for_actor(current_actor()).allows(alloc.consultant_id, alloc.phase.project_id):
        raise PermissionDeniedError("Not allowed to view this allocation")
    return jsonify(_detail(alloc))


@phase_allocation_bp.route("/phase-allocations/<int:allocation_id>/decision", methods=["POST"])
@require_role(UserRole.GROWTH_TEAM)
def decide_allocation(allocation_id):
    """Body: { action: approve|modify|reject, modified_hours?, rejection_reason? }"""
    data = json_body()
    action = str(data.get("action") or "").lower()
    if action == "approve":
        alloc = svc.approve(allocation_id, current_actor())
    elif action == "modify":
        if data.get("modified_hours") is None:
            raise ValidationError("modified_hours is required to modify",
                                  details={"modified_hours": "required"})
        alloc = svc.approve(allocation_id, current_actor(), modified_hours=data["modified_hours"])
    elif action == "reject":
        alloc = svc.reject(allocation_id, current_actor(), data.get("rejection_reason"))
    else:
        raise ValidationError("action must be one of approve, modify, reject",
                              details={"action": "invalid"})
    return jsonify(alloc.to_dict())


@phase_allocation_bp.route("/phase-allocations/<int:allocation_id>/deletion-request", methods=["POST"])
@require_actor
def request_deletion(allocation_id):
    alloc = svc.request_deletion(allocation_id, current_actor())
    return jsonify(alloc.to_dict())


@phase_allocation_bp.route("/phase-allocations/<int:allocation_id>/deletion-decision", methods=["POST"])
@require_role(UserRole.GROWTH_TEAM)
def decide_deletion(allocation_id):
    """Body: { approve: bool }"""
    data = json_body()
    if not isinstance(data.get("approve"), bool):
        raise ValidationError("approve must be a boolean", details={"approve": "required"})
    alloc = svc.decide_deletion(allocation_id, current_actor(), data["approve"])
    if alloc is None:
        return jsonify({"deleted": True, "id": allocation_id})
    return jsonify({"deleted": False, "allocation": alloc.to_dict()})


@phase_allocation_bp.route("/phase-allocations/<int:allocation_id>/expire", methods=["POST"])
@require_role(UserRole.GROWTH_TEAM)
def expire_allocation(allocation_id):
    alloc, record = svc.expire(allocation_id)
    return jsonify({
        "allocation": alloc.to_dict(),
        "unplanned_record": record.to_dict() if record else None,
    })


@phase_allocation_bp.route("/phase-allocations/<int:allocation_id>/unplanned", methods=["PATCH"])
@require_actor
def handle_unplanned(allocation_id):
    """Body: { action: forfeit|reallocate, target_phase_id?, notes? }"""
    data = json_body()
    action = str(data.get("action") or "").lower()
    if action == "forfeit":
        alloc = svc.forfeit(allocation_id, current_actor(), data.get("notes"))
        return jsonify(_detail(alloc))
    if action == "reallocate":
        if not isinstance(data.get("target_phase_id"), int):
            raise ValidationError("target_phase_id is required to reallocate",
                                  details={"target_phase_id": "required"})
        child = svc.reallocate(allocation_id, data["target_phase_id"], current_actor(), data.get("notes"))
        return jsonify({"source_allocation_id": allocation_id, "allocation": child.to_dict()}), 201
    raise ValidationError("action must be forfeit or reallocate", details={"action": "invalid"})


@phase_allocation_bp.route("/phase-allocations/<int:allocation_id>/merge", methods=["POST"])
@require_role(UserRole.GROWTH_TEAM)
def merge_child(allocation_id):
    parent = svc.merge_approved_child(allocation_id)
    return jsonify(_detail(parent))
