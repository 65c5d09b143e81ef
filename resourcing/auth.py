"""
Resource Allocation Platform
Actor resolution & role checks.

Provides:
    - ``init_auth``: before_request hook resolving ``X-User-Id`` to a User
      and storing an ``Actor`` on ``g.actor``
    - ``require_actor`` / ``require_role`` decorators (401 / 403)
    - ``require_cron_secret`` decorator for scheduler-triggered endpoints

Security model:
    - /api/v1/* endpoints need an acting user, except /api/v1/health and
      /api/v1/cron/*, the latter guarded by ``Authorization: Bearer <CRON_SECRET>``
    - Project-level ownership (Product Manager) is enforced in the services

Configuration:
    API_AUTH_ENABLED  set to "false" to fall back to the first Growth Team
                      user when no X-User-Id is sent (development only)
    CRON_SECRET       shared secret of the external scheduler
"""

import functools
import hmac
import logging
import os

from flask import current_app, g, request
from sqlalchemy import select

from resourcing.core.actor import Actor
from resourcing.models import db
from resourcing.models.user import User, UserRole
from resourcing.utils.errors import E, api_error

logger = logging.getLogger(__name__)

_PUBLIC_PREFIXES = ("/api/v1/health", "/api/v1/cron/")


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in ("false", "0", "no", "off")


def _dev_fallback_user():
    return db.session.execute(
        select(User).where(User.role == UserRole.GROWTH_TEAM).order_by(User.id).limit(1)
    ).scalar_one_or_none()


def init_auth(app):
    """Register the actor-resolving before_request hook."""

    @app.before_request
    def _resolve_actor():
        g.actor = None
        g.current_user = None
        if not request.path.startswith("/api/v1") or request.path.startswith(_PUBLIC_PREFIXES):
            return None

        raw = request.headers.get("X-User-Id", "").strip()
        if not raw:
            if not _is_auth_enabled():
                user = _dev_fallback_user()
                if user is not None:
                    g.current_user = user
                    g.actor = Actor.from_user(user)
            return None

        try:
            user_id = int(raw)
        except ValueError:
            return api_error(E.UNAUTHORIZED, "X-User-Id must be an integer")

        user = db.session.get(User, user_id)
        if user is None:
            logger.warning("Unknown acting user %s on %s", user_id, request.path)
            return api_error(E.UNAUTHORIZED, "Unknown user")

        g.current_user = user
        g.actor = Actor.from_user(user)
        return None


# ── Decorators ───────────────────────────────────────────────────────────────

def require_actor(f):
    """Decorator: the request must carry a resolved acting user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "actor", None) is None:
            return api_error(E.UNAUTHORIZED, "Authentication required. Provide X-User-Id header.")
        return f(*args, **kwargs)
    return decorated


def require_role(*roles: UserRole):
    """
    Decorator: the acting user must hold one of ``roles``.

    Usage:
        @require_role(UserRole.GROWTH_TEAM)
        def approve(allocation_id): ...
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")
            if actor.role not in roles:
                logger.warning(
                    "Access denied: role '%s' tried to access %s",
                    actor.role.value, request.path,
                    extra={"user_id": actor.user_id},
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator


def require_cron_secret(f):
    """Decorator: ``Authorization: Bearer <CRON_SECRET>`` must match."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        secret = current_app.config.get("CRON_SECRET")
        if not secret:
            logger.error("CRON_SECRET is not configured")
            return api_error(E.INTERNAL, "Cron authentication not configured")
        header = request.headers.get("Authorization", "")
        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), secret):
            logger.warning("Rejected cron call on %s", request.path)
            return api_error(E.UNAUTHORIZED, "Invalid cron secret")
        return f(*args, **kwargs)
    return decorated
