"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in resourcing/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from resourcing.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"
JOBS_LIMIT = "10/minute"

_WRITE_BLUEPRINTS = ("phase_allocation_bp", "weekly_allocation_bp", "hour_change_bp")
_READ_BLUEPRINTS = ("availability_bp", "approvals_bp", "notification_bp")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow endpoints:  60/minute
        - Read endpoints:      200/minute
        - Jobs / cron:         10/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for bp_name in _WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in _READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("jobs_bp")
    if bp:
        limiter.limit(JOBS_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: write=%s read=%s jobs=%s",
                    WRITE_LIMIT, READ_LIMIT, JOBS_LIMIT)
