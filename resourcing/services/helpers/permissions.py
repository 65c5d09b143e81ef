"""Role guards used by the workflow services before any state is mutated."""

import logging

from resourcing.core.exceptions import PermissionDeniedError

logger = logging.getLogger(__name__)


def require_growth_team(actor, action: str) -> None:
    if actor is None or not actor.is_growth_team:
        logger.warning(
            "Denied %s: growth team role required",
            action,
            extra={"user_id": getattr(actor, "user_id", None)},
        )
        raise PermissionDeniedError(f"Only the Growth Team can {action}")


def require_product_manager(actor, project, action: str, *, allow_growth_team: bool = False) -> None:
    if actor is None:
        raise PermissionDeniedError(f"Only the project's Product Manager can {action}")
    if allow_growth_team and actor.is_growth_team:
        return
    if not project.is_product_manager(actor.user_id):
        logger.warning(
            "Denied %s: user is not PM of project",
            action,
            extra={"user_id": actor.user_id, "project_id": project.id},
        )
        raise PermissionDeniedError(f"Only the project's Product Manager can {action}")
