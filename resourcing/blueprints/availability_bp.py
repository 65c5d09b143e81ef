"""
Availability Blueprint.

Routes:
  GET    /availability/consultants/<id>   – one consultant's workload over the next weeks
  GET    /availability                    – every consultant, least loaded first (Growth Team)

Query: start (ISO date, default today), weeks (1-26, default 4)
"""

from flask import Blueprint, jsonify

from resourcing.auth import require_actor, require_role
from resourcing.blueprints import current_actor, date_arg, int_arg
from resourcing.core.exceptions import PermissionDeniedError, ValidationError
from resourcing.models.user import UserRole
from resourcing.services import availability
from resourcing.services.helpers.scoped_queries import managed_project_ids

availability_bp = Blueprint("availability_bp", __name__, url_prefix="/api/v1")

MAX_WEEKS = 26


def _window():
    weeks = int_arg("weeks", 4)
    if not 1 <= weeks <= MAX_WEEKS:
        raise ValidationError(f"weeks must be between 1 and {MAX_WEEKS}", details={"weeks": "invalid"})
    return date_arg("start"), weeks


@availability_bp.route("/availability/consultants/<int:consultant_id>", methods=["GET"])
@require_actor
def consultant_availability(consultant_id):
    actor = current_actor()
    if actor.role == UserRole.CONSULTANT and actor.user_id != consultant_id:
        if not managed_project_ids(actor.user_id):
            raise PermissionDeniedError("Consultants can only view their own availability")
    start, weeks = _window()
    return jsonify(availability.consultant_availability(consultant_id, start=start, weeks=weeks))


@availability_bp.route("/availability", methods=["GET"])
@require_role(UserRole.GROWTH_TEAM)
def roster_availability():
    start, weeks = _window()
    roster = availability.roster_availability(start=start, weeks=weeks)
    return jsonify({"items": roster, "total": len(roster)})
