"""
Resource Allocation Platform
Blueprint registry and shared request helpers.
"""

from datetime import date

from flask import g, request

from resourcing.core.exceptions import ValidationError


def current_actor():
    """The Actor resolved by ``resourcing.auth`` for this request."""
    return g.actor


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def int_arg(name: str, default=None):
    """Optional integer query parameter; malformed values are a 400."""
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={name: "invalid"}) from None


def date_arg(name: str, default=None):
    raw = request.args.get(name)
    if raw in (None, ""):
        return default
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO date (YYYY-MM-DD)", details={name: "invalid"}) from None


def page_args(default_limit=50, max_limit=200) -> tuple[int, int]:
    """(limit, offset) from the query string, clamped."""
    limit = int_arg("limit", default_limit)
    offset = int_arg("offset", 0)
    return max(1, min(limit, max_limit)), max(offset, 0)


def register_blueprints(app):
    from resourcing.blueprints.approvals_bp import approvals_bp
    from resourcing.blueprints.availability_bp import availability_bp
    from resourcing.blueprints.health_bp import health_bp
    from resourcing.blueprints.hour_change_bp import hour_change_bp
    from resourcing.blueprints.jobs_bp import jobs_bp
    from resourcing.blueprints.notification_bp import notification_bp
    from resourcing.blueprints.phase_allocation_bp import phase_allocation_bp
    from resourcing.blueprints.weekly_allocation_bp import weekly_allocation_bp

    for bp in (
        phase_allocation_bp,
        weekly_allocation_bp,
        hour_change_bp,
        availability_bp,
        approvals_bp,
        notification_bp,
        jobs_bp,
        health_bp,
    ):
        app.register_blueprint(bp)
